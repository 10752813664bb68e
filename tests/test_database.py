"""
Tests for the SQLite action store: idempotent insert, high-water mark, ordered reads.
"""

from __future__ import annotations

import pytest

from backend_defipoly.core.exceptions import StorageError
from backend_defipoly.database import Action, ActionKind, PlayerAggregate

from conftest import ALICE, BOB


def _action(tx_id: str, observed_at: int, kind: ActionKind = ActionKind.BUY, **kw) -> Action:
    return Action(transaction_id=tx_id, kind=kind, actor=kw.pop("actor", ALICE), observed_at=observed_at, **kw)


def test_try_insert_is_idempotent(db):
    a = _action("sig1", 10, asset_id=0, quantity=1, value=5, extra={"vrfResult": 3})
    assert db.try_insert(a) is True
    assert db.try_insert(a) is False
    assert db.exists("sig1") is True
    assert db.exists("sig2") is False
    stored = db.all_actions()
    assert stored == [a]


def test_latest_uses_observed_at_not_insert_order(db):
    assert db.latest() is None
    db.try_insert(_action("late", 300))
    db.try_insert(_action("early", 100))
    assert db.latest().transaction_id == "late"


def test_range_queries_are_newest_first(db):
    db.try_insert(_action("a1", 1, asset_id=0))
    db.try_insert(_action("a2", 2, asset_id=1))
    db.try_insert(_action("b1", 3, kind=ActionKind.STEAL_SUCCESS, actor=BOB, counterparty=ALICE, asset_id=0))
    assert [a.transaction_id for a in db.range_by_actor(ALICE)] == ["b1", "a2", "a1"]
    assert [a.transaction_id for a in db.range_by_actor(ALICE, include_counterparty=False)] == ["a2", "a1"]
    assert [a.transaction_id for a in db.range_by_asset(0)] == ["b1", "a1"]
    assert [a.transaction_id for a in db.recent(ActionKind.BUY, limit=1)] == ["a2"]
    assert [a.transaction_id for a in db.recent(limit=2, offset=1)] == ["a2", "a1"]


def test_replay_order_breaks_ties_by_insertion(db):
    db.try_insert(_action("x", 5))
    db.try_insert(_action("y", 5))
    db.try_insert(_action("z", 1))
    assert [a.transaction_id for a in db.all_actions()] == ["z", "x", "y"]


def test_last_action_times_per_asset(db):
    db.try_insert(_action("s1", 10, kind=ActionKind.STEAL_FAILED, asset_id=3))
    db.try_insert(_action("s2", 20, kind=ActionKind.STEAL_SUCCESS, asset_id=3))
    db.try_insert(_action("s3", 15, kind=ActionKind.STEAL_FAILED, asset_id=4))
    db.try_insert(_action("b1", 30, asset_id=3))
    times = db.last_action_times(ALICE, [ActionKind.STEAL_SUCCESS, ActionKind.STEAL_FAILED])
    assert times == {3: 20, 4: 15}


def test_holding_history_covers_both_sides_in_replay_order(db):
    db.try_insert(_action("h3", 30, kind=ActionKind.SELL, asset_id=0, quantity=1))
    db.try_insert(_action("h1", 10, asset_id=0, quantity=2))
    db.try_insert(_action("h2", 20, kind=ActionKind.STEAL_SUCCESS, actor=BOB, counterparty=ALICE, asset_id=0, quantity=1))
    db.try_insert(_action("h4", 20, kind=ActionKind.STEAL_FAILED, actor=BOB, counterparty=ALICE, asset_id=0))
    db.try_insert(_action("other", 5, asset_id=1, quantity=9))
    db.try_insert(_action("claim", 15, kind=ActionKind.CLAIM, value=4))
    with db.session() as s:
        assert [a.transaction_id for a in s.holding_history(ALICE, 0)] == ["h1", "h2", "h3"]
        assert [a.transaction_id for a in s.holding_history(BOB, 0)] == ["h2"]
        assert s.get_holding(ALICE, 0) is None
        s.set_slots(ALICE, 0, 2, 30)
    held = db.get_holding(ALICE, 0)
    assert (held.slots_owned, held.updated_at) == (2, 30)


def test_session_rolls_back_on_error(db):
    with pytest.raises(RuntimeError):
        with db.session() as s:
            s.try_insert(_action("rolled", 1))
            s.save_player(PlayerAggregate(wallet=ALICE, total_actions=1))
            raise RuntimeError("boom")
    assert db.exists("rolled") is False
    assert db.get_player(ALICE) is None


def test_leaderboard_and_ranks(db):
    with db.session() as s:
        s.save_player(PlayerAggregate(wallet=ALICE, total_actions=1, leaderboard_score=50, total_earned=1))
        s.save_player(PlayerAggregate(wallet=BOB, total_actions=2, leaderboard_score=80, total_earned=0))
        s.save_player(PlayerAggregate(wallet="idle", total_actions=0, leaderboard_score=999))
    assert [p.wallet for p in db.leaderboard("overall")] == [BOB, ALICE]
    assert [p.wallet for p in db.leaderboard("wealth")] == [ALICE, BOB]
    ranks = db.player_ranks(ALICE)
    assert ranks["overall"] == 2
    assert ranks["wealth"] == 1
    assert db.player_ranks("idle")["overall"] is None
    with pytest.raises(ValueError):
        db.leaderboard("nonsense")


def test_storage_failure_is_wrapped(tmp_path):
    from backend_defipoly.database import get_database

    database = get_database(tmp_path / "broken.db")
    (tmp_path / "broken.db").unlink()
    (tmp_path / "broken.db").mkdir()
    with pytest.raises(StorageError):
        database.exists("sig")
