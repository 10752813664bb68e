"""
Pytest fixtures for Defipoly indexer tests. Uses a temporary SQLite DB per test
and a small property catalog whose incomes are easy to compute by hand.
"""

from __future__ import annotations

from typing import Any

import pytest

from backend_defipoly.config.catalog import catalog_from_dict
from backend_defipoly.database import get_database
from backend_defipoly.decoder import TransactionDecoder, encode_event_log
from backend_defipoly.ingestion.pipeline import IngestionPipeline
from backend_defipoly.projector import AggregateProjector, ScoreRecalculator

PROGRAM_ID = "H1zzYzWPReWJ4W2JNiBrYbsrHDxFDGJ9n9jAyYG2VhLQ"
OTHER_PROGRAM = "11111111111111111111111111111111"

# Valid Solana pubkeys (base58, 32 bytes)
ALICE = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
BOB = "7F1WzVNQ1Qpurqxxdyv3UrFQR3uoNepULVW9A4bAJ5nZ"
CAROL = "So11111111111111111111111111111111111111112"

# Set 0: three properties at 100/day per slot, 40% bonus. Set 1: two properties at 60/day per slot.
TEST_CATALOG = {
    "properties": [
        {"id": 0, "setId": 0, "price": 1000, "yieldBps": 1000, "cooldownHours": 6, "name": "A0"},
        {"id": 1, "setId": 0, "price": 1000, "yieldBps": 1000, "cooldownHours": 6, "name": "A1"},
        {"id": 2, "setId": 0, "price": 1000, "yieldBps": 1000, "cooldownHours": 6, "name": "A2"},
        {"id": 3, "setId": 1, "price": 1000, "yieldBps": 600, "cooldownHours": 8, "name": "B0"},
        {"id": 4, "setId": 1, "price": 1000, "yieldBps": 600, "cooldownHours": 8, "name": "B1"},
    ],
    "sets": [
        {"id": 0, "bonusBps": 4000, "name": "Test Brown"},
        {"id": 1, "bonusBps": 3000, "name": "Test Blue"},
    ],
}


def make_tx(
    signature: str,
    block_time: int | None,
    events: list[tuple[str, dict[str, Any]]],
    *,
    err: Any = None,
    program_id: str = PROGRAM_ID,
    slot: int = 1000,
) -> dict[str, Any]:
    """getTransaction-shaped payload whose logs carry the given program events."""
    logs = [f"Program {program_id} invoke [1]", "Program log: Instruction: Play"]
    logs += [encode_event_log(name, data) for name, data in events]
    logs.append(f"Program {program_id} success")
    return {
        "slot": slot,
        "blockTime": block_time,
        "transaction": {"signatures": [signature], "message": {}},
        "meta": {"err": err, "logMessages": logs},
    }


def buy(player: str, property_id: int, slots: int, cost: int = 0) -> tuple[str, dict[str, Any]]:
    return (
        "PropertyBoughtEvent",
        {
            "player": player,
            "property_id": property_id,
            "price": 1000,
            "slots": slots,
            "total_cost": cost,
            "slots_owned": slots,
            "total_slots_owned": slots,
        },
    )


def sell(player: str, property_id: int, slots: int, received: int = 0) -> tuple[str, dict[str, Any]]:
    return (
        "PropertySoldEvent",
        {
            "player": player,
            "property_id": property_id,
            "slots": slots,
            "received": received,
            "sell_value_percent": 15,
            "days_held": 1,
        },
    )


def steal(attacker: str, target: str, property_id: int, slots: int = 1, cost: int = 0) -> tuple[str, dict[str, Any]]:
    return (
        "StealSuccessEvent",
        {
            "attacker": attacker,
            "target": target,
            "property_id": property_id,
            "slots_stolen": slots,
            "steal_cost": cost,
            "targeted": True,
            "vrf_result": 42,
        },
    )


def steal_failed(attacker: str, target: str, property_id: int, cost: int = 0) -> tuple[str, dict[str, Any]]:
    return (
        "StealFailedEvent",
        {
            "attacker": attacker,
            "target": target,
            "property_id": property_id,
            "steal_cost": cost,
            "targeted": False,
            "vrf_result": 7,
        },
    )


def claim(player: str, amount: int) -> tuple[str, dict[str, Any]]:
    return ("RewardsClaimedEvent", {"player": player, "amount": amount, "hours_elapsed": 24})


def shield(player: str, property_id: int, slots: int, cost: int = 0) -> tuple[str, dict[str, Any]]:
    return (
        "ShieldActivatedEvent",
        {"player": player, "property_id": property_id, "slots_shielded": slots, "cost": cost, "expiry": 0},
    )


@pytest.fixture
def catalog():
    return catalog_from_dict(TEST_CATALOG)


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database with schema."""
    return get_database(tmp_path / "defipoly_test.db")


@pytest.fixture
def pipeline(db, catalog):
    p = IngestionPipeline(db, TransactionDecoder(PROGRAM_ID), AggregateProjector(catalog), ScoreRecalculator())
    yield p
    p.close()


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    """Clear indexer env vars so settings fall back to defaults."""
    for name in (
        "SOLANA_RPC_URL",
        "SOLANA_WS_URL",
        "HELIUS_API_KEY",
        "SOLANA_NETWORK",
        "SOLANA_CLUSTER",
        "PROGRAM_ID",
        "DB_PATH",
        "API_PORT",
        "FETCH_RETRY_DELAYS",
        "GAP_SIGNATURE_LIMIT",
        "PROPERTY_CATALOG_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("backend_defipoly.config.env._ENV_PATH", tmp_path / "missing.env")
    from backend_defipoly.config.settings import get_settings

    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


@pytest.fixture
def worker(db, catalog, tmp_path):
    """Indexer worker with background producers disabled and an RPC node that knows no transactions."""
    import httpx

    from backend_defipoly.agent_worker import IndexerWorker
    from backend_defipoly.config.settings import Settings
    from backend_defipoly.solana_listener.rpc import SolanaRpcClient

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": []})

    settings = Settings(
        rpc_url="https://rpc.test",
        ws_url="wss://ws.test",
        program_id=PROGRAM_ID,
        db_path=tmp_path / "defipoly_test.db",
    )
    rpc = SolanaRpcClient(settings.rpc_url, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return IndexerWorker(settings, db=db, catalog=catalog, rpc=rpc, enable_live=False, enable_reconciler=False)


@pytest.fixture
def client(worker):
    """FastAPI TestClient; the context manager runs the app lifespan (worker start/stop)."""
    from fastapi.testclient import TestClient

    from backend_defipoly.api_server import create_app

    with TestClient(create_app(worker)) as c:
        yield c
