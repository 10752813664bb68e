"""
Aggregate projection: ownership, player counters, daily income, leaderboard scores.
"""

from backend_defipoly.projector.aggregates import AggregateProjector
from backend_defipoly.projector.income import IncomeBreakdown, compute_daily_income
from backend_defipoly.projector.scoring import (
    DEFAULT_WEIGHTS,
    ScoreRecalculator,
    ScoreWeights,
    apply_scores,
    leaderboard_score,
)

__all__ = [
    "AggregateProjector",
    "DEFAULT_WEIGHTS",
    "IncomeBreakdown",
    "ScoreRecalculator",
    "ScoreWeights",
    "apply_scores",
    "compute_daily_income",
    "leaderboard_score",
]
