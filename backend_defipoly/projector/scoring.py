"""
Score recalculator: composite leaderboard metrics from aggregate counters.

Weights and caps are policy, kept in ScoreWeights. Every component is
non-decreasing in the counters it reads, so more earnings never lowers a score.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from backend_defipoly.database.database import StoreSession
from backend_defipoly.database.models import PlayerAggregate
from backend_defipoly.defipoly_logging import get_logger, short

logger = get_logger(__name__)

LAMPORTS_PER_TOKEN = 1_000_000_000


@dataclass(frozen=True)
class ScoreWeights:
    """Leaderboard score policy: five weighted components."""

    wealth_per_token: float = 0.3
    activity_per_property: float = 100.0
    activity_per_complete_set: float = 5000.0
    combat_per_steal: float = 500.0
    combat_win_rate_bonus: float = 5000.0
    efficiency_per_roi: float = 25000.0
    efficiency_cap: float = 50000.0
    defense_per_shield: float = 100.0
    defense_rating_bonus: float = 10000.0


DEFAULT_WEIGHTS = ScoreWeights()


def roi(agg: PlayerAggregate) -> float:
    return agg.total_earned / agg.total_spent if agg.total_spent > 0 else 0.0


def steal_win_rate(agg: PlayerAggregate) -> float:
    attempts = agg.successful_steals + agg.failed_steals
    return agg.successful_steals / attempts if attempts > 0 else 0.0


def defense_rating(agg: PlayerAggregate) -> float:
    rating = 1.0 - agg.times_stolen / max(agg.total_slots_owned, 1)
    return min(max(rating, 0.0), 1.0)


def leaderboard_score(agg: PlayerAggregate, weights: ScoreWeights = DEFAULT_WEIGHTS) -> int:
    """Weighted sum of wealth, activity, combat, efficiency and defense; floored."""
    wealth = agg.total_earned / LAMPORTS_PER_TOKEN * weights.wealth_per_token
    activity = (
        agg.properties_bought * weights.activity_per_property
        + agg.complete_sets * weights.activity_per_complete_set
    )
    combat = (
        agg.successful_steals * weights.combat_per_steal
        + steal_win_rate(agg) * weights.combat_win_rate_bonus
    )
    efficiency = min(roi(agg) * weights.efficiency_per_roi, weights.efficiency_cap)
    defense = (
        agg.shields_activated * weights.defense_per_shield
        + defense_rating(agg) * weights.defense_rating_bonus
    )
    return math.floor(wealth + activity + combat + efficiency + defense)


def apply_scores(agg: PlayerAggregate, weights: ScoreWeights = DEFAULT_WEIGHTS) -> PlayerAggregate:
    """Fill the derived score fields of agg in place and return it."""
    agg.roi = roi(agg)
    agg.steal_win_rate = steal_win_rate(agg)
    agg.defense_rating = defense_rating(agg)
    agg.leaderboard_score = leaderboard_score(agg, weights)
    return agg


class ScoreRecalculator:
    """Recomputes stored score fields for one player or all players."""

    def __init__(self, weights: ScoreWeights = DEFAULT_WEIGHTS) -> None:
        self.weights = weights

    def recompute(self, session: StoreSession, wallet: str) -> PlayerAggregate | None:
        agg = session.get_player(wallet)
        if agg is None:
            return None
        apply_scores(agg, self.weights)
        session.save_player(agg)
        return agg

    def recompute_all(self, session: StoreSession) -> tuple[int, int]:
        """Recompute every player; a single player's failure is logged and skipped. Returns (ok, failed)."""
        ok = failed = 0
        for wallet in session.list_wallets():
            try:
                self.recompute(session, wallet)
                ok += 1
            except Exception as e:
                failed += 1
                logger.error("score_recompute_failed", wallet_id=short(wallet), error=str(e))
        logger.info("scores_recomputed", players=ok, failed=failed)
        return ok, failed
