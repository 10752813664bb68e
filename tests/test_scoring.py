"""
Tests for leaderboard scoring: ratio edge cases, monotonicity, and batch recompute.
"""

from __future__ import annotations

from unittest.mock import MagicMock

from backend_defipoly.database.models import PlayerAggregate
from backend_defipoly.projector.scoring import (
    ScoreRecalculator,
    apply_scores,
    defense_rating,
    leaderboard_score,
    roi,
    steal_win_rate,
)


def test_zero_denominators_are_zero():
    agg = PlayerAggregate(wallet="w")
    assert roi(agg) == 0.0
    assert steal_win_rate(agg) == 0.0
    assert defense_rating(agg) == 1.0


def test_defense_rating_is_clamped():
    agg = PlayerAggregate(wallet="w", times_stolen=5, total_slots_owned=2)
    assert defense_rating(agg) == 0.0


def test_score_components():
    agg = PlayerAggregate(
        wallet="w",
        total_earned=2_000_000_000,
        total_spent=1_000_000_000,
        properties_bought=3,
        complete_sets=1,
        successful_steals=1,
        failed_steals=1,
        shields_activated=2,
        total_slots_owned=4,
    )
    # 0.6 + 300 + 5000 + 500 + 2500 + 50000 + 200 + 10000
    assert leaderboard_score(agg) == 68500


def test_efficiency_is_capped():
    agg = PlayerAggregate(wallet="w", total_earned=100, total_spent=1)
    assert leaderboard_score(agg) == 50000 + 10000


def test_score_non_decreasing_in_earnings():
    base = PlayerAggregate(wallet="w", total_spent=1_000_000_000, properties_bought=1)
    scores = []
    for earned in (0, 10**8, 10**9, 10**10, 10**12):
        base.total_earned = earned
        scores.append(leaderboard_score(base))
    assert scores == sorted(scores)


def test_apply_scores_fills_derived_fields():
    agg = apply_scores(PlayerAggregate(wallet="w", successful_steals=3, failed_steals=1))
    assert agg.steal_win_rate == 0.75
    assert agg.leaderboard_score > 0


def test_recompute_all_skips_failing_player():
    good = PlayerAggregate(wallet="good", properties_bought=1)
    session = MagicMock()
    session.list_wallets.return_value = ["good", "bad"]

    def get_player(wallet):
        if wallet == "bad":
            raise RuntimeError("corrupt row")
        return good

    session.get_player.side_effect = get_player
    ok, failed = ScoreRecalculator().recompute_all(session)
    assert (ok, failed) == (1, 1)
    session.save_player.assert_called_once_with(good)
    assert good.leaderboard_score > 0


def test_recompute_missing_player_returns_none():
    session = MagicMock()
    session.get_player.return_value = None
    assert ScoreRecalculator().recompute(session, "nobody") is None
    session.save_player.assert_not_called()
