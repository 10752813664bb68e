"""
Tests for the gap reconciler against a fake RPC node and a real pipeline.
"""

from __future__ import annotations

import asyncio

import pytest

from backend_defipoly.core.exceptions import GapCheckInProgressError, RpcError
from backend_defipoly.ingestion import GapReconciler
from backend_defipoly.solana_listener import LiveSubscriber, LogNotification
from backend_defipoly.solana_listener.models import SignatureInfo

from conftest import ALICE, BOB, PROGRAM_ID, buy, claim, make_tx


class FakeNode:
    """Holds transactions by signature; lists them newest first."""

    def __init__(self, txs):
        self.txs = {tx["transaction"]["signatures"][0]: tx for tx in txs}
        self.order = [tx["transaction"]["signatures"][0] for tx in txs]
        self.errors: dict[str, object] = {}
        self.limits: list[int] = []
        self.fetched: list[str] = []

    async def get_signatures_for_address(self, address, *, limit=100, before=None):
        assert address == PROGRAM_ID
        self.limits.append(limit)
        newest_first = list(reversed(self.order))[:limit]
        return [
            SignatureInfo(signature=s, slot=i, err=self.errors.get(s), block_time=self.txs[s]["blockTime"])
            for i, s in enumerate(newest_first)
        ]

    async def get_transaction(self, signature):
        self.fetched.append(signature)
        return self.txs.get(signature)


def _reconciler(pipeline, node, **kw):
    async def sleep(delay):
        return None

    kw.setdefault("initial_backfill_limit", 10)
    return GapReconciler(pipeline.db, node, pipeline.ingest, PROGRAM_ID, sleep=sleep, **kw)


def _txs():
    return [
        make_tx("g1", 100, [buy(ALICE, 0, 1)]),
        make_tx("g2", 200, [buy(BOB, 1, 2)]),
        make_tx("g3", 300, [claim(ALICE, 50)]),
    ]


def test_backfills_missing_oldest_first(pipeline, db):
    node = FakeNode(_txs())
    pipeline.ingest_sync(node.txs["g1"])

    async def run():
        rec = _reconciler(pipeline, node)
        first = await rec.check_for_gaps()
        second = await rec.check_for_gaps()
        return first, second

    first, second = asyncio.run(run())
    assert node.fetched == ["g2", "g3"]
    assert first["totalGapsFound"] == 2
    assert first["totalBackfilled"] == 2
    assert first["lastHighWaterMark"] == 100
    assert second["totalGapsFound"] == 2
    assert second["totalBackfilled"] == 2
    assert second["totalChecks"] == 2
    assert db.exists("g2") and db.exists("g3")
    assert db.get_player(ALICE).rewards_claimed == 1


def test_empty_store_uses_initial_limit(pipeline):
    node = FakeNode(_txs())

    async def run():
        rec = _reconciler(pipeline, node, initial_backfill_limit=2, signature_limit=50)
        await rec.check_for_gaps()
        await rec.check_for_gaps()

    asyncio.run(run())
    assert node.limits == [2, 50]
    assert node.fetched == ["g2", "g3", "g1"]


def test_failed_signatures_are_skipped(pipeline, db):
    node = FakeNode(_txs())
    node.errors["g2"] = {"InstructionError": [0, "Custom"]}

    async def run():
        await _reconciler(pipeline, node).check_for_gaps()

    asyncio.run(run())
    assert "g2" not in node.fetched
    assert not db.exists("g2")


def test_non_game_signature_is_remembered(pipeline):
    node = FakeNode([make_tx("noop", 50, []), *_txs()])

    async def run():
        rec = _reconciler(pipeline, node)
        await rec.check_for_gaps()
        await rec.check_for_gaps()
        return rec

    rec = asyncio.run(run())
    assert node.fetched.count("noop") == 1
    assert rec.total_backfilled == 3


def test_unfetchable_transaction_counts_failed(pipeline):
    class Node(FakeNode):
        async def get_signatures_for_address(self, address, *, limit=100, before=None):
            return [SignatureInfo(signature="ghost", slot=1, err=None, block_time=1)]

    ghost = Node([])

    async def run():
        rec = _reconciler(pipeline, ghost)
        return await rec.check_for_gaps()

    stats = asyncio.run(run())
    assert stats["totalFailed"] == 1
    assert stats["totalBackfilled"] == 0


def test_rpc_failure_recorded_not_raised(pipeline):
    class Down(FakeNode):
        async def get_signatures_for_address(self, address, *, limit=100, before=None):
            raise RpcError("node unreachable")

    async def run():
        return await _reconciler(pipeline, Down([])).check_for_gaps()

    stats = asyncio.run(run())
    assert stats["lastError"] == "node unreachable"
    assert stats["totalChecks"] == 1


def test_manual_trigger_is_not_reentrant(pipeline):
    node = FakeNode(_txs())

    async def run():
        rec = _reconciler(pipeline, node)
        async with rec._lock:
            with pytest.raises(GapCheckInProgressError):
                await rec.trigger_check()
        return await rec.trigger_check()

    stats = asyncio.run(run())
    assert stats["totalChecks"] == 1
    assert stats["checkInProgress"] is False


def test_start_runs_initial_check_and_stops(pipeline, db):
    node = FakeNode(_txs())

    async def run():
        rec = _reconciler(pipeline, node, initial_delay_sec=0, check_interval_sec=3600)
        rec.start()
        assert rec.is_running
        for _ in range(100):
            if rec.total_checks:
                break
            await asyncio.sleep(0.01)
        await rec.stop()
        return rec

    rec = asyncio.run(run())
    assert rec.total_checks == 1
    assert rec.is_running is False
    assert db.exists("g3")


def test_live_and_backfill_racing_on_one_signature_apply_once(pipeline, db, tmp_path, catalog):
    from backend_defipoly.database import get_database
    from backend_defipoly.decoder import TransactionDecoder
    from backend_defipoly.ingestion.pipeline import IngestionPipeline
    from backend_defipoly.projector import AggregateProjector, ScoreRecalculator

    node = FakeNode(_txs())

    async def no_wait(delay):
        await asyncio.sleep(0)

    async def run():
        live = LiveSubscriber("wss://ws.test", PROGRAM_ID, node, pipeline.ingest, sleep=no_wait)
        rec = _reconciler(pipeline, node)
        ok, _ = await asyncio.gather(
            live.handle_notification(LogNotification("g2", 1000)),
            rec.check_for_gaps(),
        )
        return ok

    assert asyncio.run(run()) is True
    assert len(db.range_by_actor(BOB)) == 1
    bob = db.get_player(BOB)
    assert bob.properties_bought == 1
    assert bob.total_slots_owned == 2

    single_db = get_database(tmp_path / "single.db")
    single = IngestionPipeline(single_db, TransactionDecoder(), AggregateProjector(catalog), ScoreRecalculator())
    try:
        for tx in _txs():
            single.ingest_sync(tx)
    finally:
        single.close()
    assert db.snapshot() == single_db.snapshot()
