"""
Domain models for the action log and derived aggregates.

Actions are immutable facts decoded from program events; ownership rows and
player aggregates are derived state owned by the projector. No ORM coupling
so backends stay swappable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionKind(str, Enum):
    BUY = "buy"
    SELL = "sell"
    STEAL_SUCCESS = "steal_success"
    STEAL_FAILED = "steal_failed"
    CLAIM = "claim"
    SHIELD_ACTIVATE = "shield_activate"


@dataclass(frozen=True)
class Action:
    """One decoded game event; transaction_id is the idempotency key for the whole pipeline."""

    transaction_id: str
    kind: ActionKind
    actor: str
    observed_at: int
    """Chain block time (unix seconds); authoritative for cooldowns and replay order."""
    counterparty: str | None = None
    asset_id: int | None = None
    quantity: int | None = None
    value: int | None = None
    outcome: bool = True
    extra: dict[str, Any] = field(default_factory=dict)
    slot: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "kind": self.kind.value,
            "actor": self.actor,
            "counterparty": self.counterparty,
            "assetId": self.asset_id,
            "quantity": self.quantity,
            "value": self.value,
            "outcome": self.outcome,
            "extra": dict(self.extra),
            "observedAt": self.observed_at,
            "slot": self.slot,
        }


@dataclass(frozen=True)
class OwnershipRecord:
    """(player, property) -> slots owned."""

    wallet: str
    property_id: int
    slots_owned: int
    updated_at: int | None = None


@dataclass
class PlayerAggregate:
    """Per-player counters, totals, and derived scores."""

    wallet: str
    total_actions: int = 0
    properties_bought: int = 0
    properties_sold: int = 0
    successful_steals: int = 0
    failed_steals: int = 0
    times_stolen: int = 0
    shields_activated: int = 0
    rewards_claimed: int = 0
    total_spent: int = 0
    total_earned: int = 0
    total_slots_owned: int = 0
    """Always equal to the sum of the player's ownership rows."""
    daily_income: int = 0
    complete_sets: int = 0
    roi: float = 0.0
    steal_win_rate: float = 0.0
    defense_rating: float = 0.0
    leaderboard_score: int = 0
    last_action_time: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet": self.wallet,
            "totalActions": self.total_actions,
            "propertiesBought": self.properties_bought,
            "propertiesSold": self.properties_sold,
            "successfulSteals": self.successful_steals,
            "failedSteals": self.failed_steals,
            "timesStolen": self.times_stolen,
            "shieldsActivated": self.shields_activated,
            "rewardsClaimed": self.rewards_claimed,
            "totalSpent": self.total_spent,
            "totalEarned": self.total_earned,
            "totalSlotsOwned": self.total_slots_owned,
            "dailyIncome": self.daily_income,
            "completeSets": self.complete_sets,
            "roi": self.roi,
            "stealWinRate": self.steal_win_rate,
            "defenseRating": self.defense_rating,
            "leaderboardScore": self.leaderboard_score,
            "lastActionTime": self.last_action_time,
        }
