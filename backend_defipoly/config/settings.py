"""
Application settings and environment configuration.

Loads typed settings from environment variables (and .env via config.env) with
defaults for everything optional. Exposes a single cached Settings object used by
the listener, gap reconciler, worker, and API server.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from backend_defipoly.config.env import (
    get_program_id,
    get_solana_rpc_url,
    get_solana_ws_url,
    load_defipoly_env,
)

DEFAULT_FETCH_RETRY_DELAYS = (0.5, 1.0, 2.0, 3.0, 5.0)


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_delays(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return tuple(float(part) for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    """Typed runtime configuration."""

    rpc_url: str
    ws_url: str
    program_id: str
    db_path: Path = Path("defipoly.db")
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    commitment: str = "confirmed"
    rpc_timeout_sec: float = 15.0
    # Live subscriber
    fetch_retry_delays: tuple[float, ...] = DEFAULT_FETCH_RETRY_DELAYS
    fetch_max_attempts: int = 5
    fetch_workers: int = 4
    notification_queue_maxsize: int = 4096
    health_check_interval_sec: float = 30.0
    reconnect_delay_sec: float = 5.0
    max_reconnect_attempts: int = 10
    # Gap reconciler
    gap_check_interval_sec: float = 600.0
    gap_initial_delay_sec: float = 5.0
    gap_signature_limit: int = 100
    gap_initial_backfill_limit: int = 10
    gap_backfill_delay_sec: float = 0.1
    catalog_path: Path | None = None

    def __post_init__(self) -> None:
        if not self.rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        if not self.program_id.strip():
            raise ValueError("program_id must be non-empty")
        if self.fetch_max_attempts < 1:
            raise ValueError("fetch_max_attempts must be >= 1")
        if not (1 <= self.gap_signature_limit <= 1000):
            raise ValueError("gap_signature_limit must be between 1 and 1000")


def load_settings() -> Settings:
    """Build Settings from the environment (no caching)."""
    load_defipoly_env()
    catalog_raw = (os.getenv("PROPERTY_CATALOG_PATH") or "").strip()
    return Settings(
        rpc_url=get_solana_rpc_url(),
        ws_url=get_solana_ws_url(),
        program_id=get_program_id(),
        db_path=Path((os.getenv("DB_PATH") or "defipoly.db").strip() or "defipoly.db"),
        api_host=(os.getenv("API_HOST") or "0.0.0.0").strip(),
        api_port=_env_int("API_PORT", 3001),
        commitment=(os.getenv("COMMITMENT") or "confirmed").strip(),
        rpc_timeout_sec=_env_float("RPC_TIMEOUT_SEC", 15.0),
        fetch_retry_delays=_env_delays("FETCH_RETRY_DELAYS", DEFAULT_FETCH_RETRY_DELAYS),
        fetch_max_attempts=_env_int("FETCH_MAX_ATTEMPTS", 5),
        fetch_workers=_env_int("FETCH_WORKERS", 4),
        notification_queue_maxsize=_env_int("NOTIFICATION_QUEUE_MAXSIZE", 4096),
        health_check_interval_sec=_env_float("HEALTH_CHECK_INTERVAL_SEC", 30.0),
        reconnect_delay_sec=_env_float("RECONNECT_DELAY_SEC", 5.0),
        max_reconnect_attempts=_env_int("MAX_RECONNECT_ATTEMPTS", 10),
        gap_check_interval_sec=_env_float("GAP_CHECK_INTERVAL_SEC", 600.0),
        gap_initial_delay_sec=_env_float("GAP_INITIAL_DELAY_SEC", 5.0),
        gap_signature_limit=_env_int("GAP_SIGNATURE_LIMIT", 100),
        gap_initial_backfill_limit=_env_int("GAP_INITIAL_BACKFILL_LIMIT", 10),
        gap_backfill_delay_sec=_env_float("GAP_BACKFILL_DELAY_SEC", 0.1),
        catalog_path=Path(catalog_raw) if catalog_raw else None,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the current application settings.

    Cached for the process lifetime; tests call get_settings.cache_clear()
    after changing the environment.
    """
    return load_settings()
