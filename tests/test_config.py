"""
Tests for settings resolution and property catalog loading.
"""

from __future__ import annotations

import json

import pytest

from backend_defipoly.config.catalog import catalog_from_dict, load_catalog
from backend_defipoly.config.env import DEFAULT_PROGRAM_ID, http_to_ws, mask_rpc_url
from backend_defipoly.config.settings import Settings, get_settings
from backend_defipoly.core.exceptions import CatalogError, UnknownPropertyError


def test_defaults(isolated_env):
    s = get_settings()
    assert s.rpc_url == "https://api.devnet.solana.com"
    assert s.ws_url == "wss://api.devnet.solana.com"
    assert s.program_id == DEFAULT_PROGRAM_ID
    assert s.fetch_retry_delays == (0.5, 1.0, 2.0, 3.0, 5.0)
    assert s.gap_signature_limit == 100
    assert s.catalog_path is None


def test_env_overrides(isolated_env):
    isolated_env.setenv("HELIUS_API_KEY", "secret")
    isolated_env.setenv("SOLANA_NETWORK", "mainnet")
    isolated_env.setenv("FETCH_RETRY_DELAYS", "1, 2")
    isolated_env.setenv("GAP_SIGNATURE_LIMIT", "250")
    s = get_settings()
    assert s.rpc_url == "https://mainnet.helius-rpc.com/?api-key=secret"
    assert s.ws_url.startswith("wss://mainnet.helius-rpc.com")
    assert s.fetch_retry_delays == (1.0, 2.0)
    assert s.gap_signature_limit == 250
    assert mask_rpc_url(s.rpc_url).endswith("api-key=***")


def test_settings_validation():
    with pytest.raises(ValueError):
        Settings(rpc_url="https://x", ws_url="wss://x", program_id="p", gap_signature_limit=5000)
    with pytest.raises(ValueError):
        Settings(rpc_url=" ", ws_url="wss://x", program_id="p")


def test_http_to_ws():
    assert http_to_ws("http://localhost:8899") == "ws://localhost:8899"
    assert http_to_ws("wss://already") == "wss://already"


def test_catalog_rejects_bad_entries():
    with pytest.raises(CatalogError):
        catalog_from_dict({"properties": [{"id": 0, "setId": 0}]})
    with pytest.raises(CatalogError):
        catalog_from_dict({
            "properties": [
                {"id": 0, "setId": 0, "price": 1, "yieldBps": 1},
                {"id": 0, "setId": 0, "price": 1, "yieldBps": 1},
            ]
        })


def test_catalog_from_file(tmp_path, catalog):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({
        "properties": [{"id": 7, "setId": 2, "price": 500, "yieldBps": 200, "cooldownHours": 4}],
        "sets": [{"id": 2, "bonusBps": 2500}],
    }))
    loaded = load_catalog(path)
    assert len(loaded) == 1
    assert loaded.get_set(2).bonus_bps == 2500
    assert loaded.get(7).steal_cooldown_seconds == 2 * 3600
    with pytest.raises(CatalogError):
        load_catalog(tmp_path / "missing.json")


def test_catalog_lookup(catalog):
    assert catalog.set_of(4).id == 1
    assert catalog.set_cooldown_seconds(1) == 8 * 3600
    with pytest.raises(UnknownPropertyError):
        catalog.get(77)
