"""
Environment variable loading and validation for the Defipoly indexer.

- SOLANA_NETWORK: devnet | mainnet (default: devnet)
- SOLANA_RPC_URL: HTTP RPC endpoint (read from .env)
- SOLANA_WS_URL: websocket endpoint; derived from the RPC URL when unset
- HELIUS_API_KEY: Helius API key (fallback for RPC URL when SOLANA_RPC_URL is unset)
- PROGRAM_ID: deployed Defipoly program id
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_defipoly/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_PROGRAM_ID = "H1zzYzWPReWJ4W2JNiBrYbsrHDxFDGJ9n9jAyYG2VhLQ"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"
HELIUS_DEVNET_URL_TEMPLATE = "https://devnet.helius-rpc.com/?api-key={key}"


def load_defipoly_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides real env."""
    load_dotenv(_ENV_PATH, override=False)


def get_solana_network() -> str:
    """
    Return SOLANA_NETWORK from env: devnet | mainnet.
    Default: devnet.
    """
    load_defipoly_env()
    raw = (os.getenv("SOLANA_NETWORK") or os.getenv("SOLANA_CLUSTER") or "devnet").strip().lower()
    if raw in ("mainnet", "mainnet-beta"):
        return "mainnet"
    return "devnet"


def get_solana_rpc_url() -> str:
    """
    Resolve Solana RPC URL from env.
    Order: SOLANA_RPC_URL > HELIUS_API_KEY (network-specific) > devnet/mainnet default.
    """
    load_defipoly_env()
    url = (os.getenv("SOLANA_RPC_URL") or "").strip()
    if url:
        return url
    key = (os.getenv("HELIUS_API_KEY") or "").strip()
    network = get_solana_network()
    if key:
        if network == "devnet":
            return HELIUS_DEVNET_URL_TEMPLATE.format(key=key)
        return HELIUS_MAINNET_URL_TEMPLATE.format(key=key)
    return DEVNET_RPC_URL if network == "devnet" else MAINNET_RPC_URL


def http_to_ws(url: str) -> str:
    """Convert https:// or http:// to wss:// or ws:// for the subscription endpoint."""
    s = url.strip()
    if s.startswith("https://"):
        return "wss://" + s[8:]
    if s.startswith("http://"):
        return "ws://" + s[7:]
    return s


def get_solana_ws_url() -> str:
    """Return SOLANA_WS_URL, or the RPC URL with its scheme switched to ws(s)."""
    load_defipoly_env()
    url = (os.getenv("SOLANA_WS_URL") or "").strip()
    if url:
        return url
    return http_to_ws(get_solana_rpc_url())


def get_program_id() -> str:
    """Return PROGRAM_ID from env, or the default deployment."""
    load_defipoly_env()
    pid = (os.getenv("PROGRAM_ID") or "").strip()
    return pid or DEFAULT_PROGRAM_ID


def mask_rpc_url(url: str) -> str:
    """Mask an API key embedded in an RPC URL for log output."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url
