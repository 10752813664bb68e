"""
Cooldown read models derived from the action log.

Buy cooldowns are per set (any buy in the set starts it); steal cooldowns are
per property and last half the property's buy cooldown, started by any steal
attempt. All time math uses the actions' chain timestamps against an injected
clock.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from backend_defipoly.config.catalog import PropertyCatalog
from backend_defipoly.database.database import Database
from backend_defipoly.database.models import ActionKind


@dataclass(frozen=True)
class BuyCooldown:
    set_id: int
    cooldown_duration: int
    cooldown_remaining: int
    last_purchase_timestamp: int | None
    last_purchased_property_id: int | None
    affected_property_ids: tuple[int, ...]

    @property
    def is_on_cooldown(self) -> bool:
        return self.cooldown_remaining > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "setId": self.set_id,
            "isOnCooldown": self.is_on_cooldown,
            "cooldownRemaining": self.cooldown_remaining,
            "cooldownDuration": self.cooldown_duration,
            "lastPurchaseTimestamp": self.last_purchase_timestamp,
            "lastPurchasedPropertyId": self.last_purchased_property_id,
            "affectedPropertyIds": list(self.affected_property_ids),
        }


@dataclass(frozen=True)
class StealCooldown:
    property_id: int
    property_name: str
    cooldown_duration: int
    cooldown_remaining: int
    last_steal_timestamp: int | None

    @property
    def is_on_cooldown(self) -> bool:
        return self.cooldown_remaining > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "propertyId": self.property_id,
            "propertyName": self.property_name,
            "isOnCooldown": self.is_on_cooldown,
            "cooldownRemaining": self.cooldown_remaining,
            "cooldownDuration": self.cooldown_duration,
            "lastStealTimestamp": self.last_steal_timestamp,
        }


def _remaining(duration: int, last_at: int | None, now: int) -> int:
    if last_at is None:
        return 0
    return max(0, duration - (now - last_at))


class CooldownService:
    def __init__(self, db: Database, catalog: PropertyCatalog, *, clock: Callable[[], float] = time.time) -> None:
        self._db = db
        self._catalog = catalog
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def buy_cooldowns(self, wallet: str) -> list[BuyCooldown]:
        """Buy cooldown status for every set (active or not)."""
        last_buys = self._db.last_action_times(wallet, [ActionKind.BUY])
        now = self._now()
        out = []
        for pset in self._catalog.sets:
            in_set = [(last_buys[pid], pid) for pid in pset.property_ids if pid in last_buys]
            last_at, last_pid = max(in_set) if in_set else (None, None)
            duration = self._catalog.set_cooldown_seconds(pset.id)
            out.append(
                BuyCooldown(
                    set_id=pset.id,
                    cooldown_duration=duration,
                    cooldown_remaining=_remaining(duration, last_at, now),
                    last_purchase_timestamp=last_at,
                    last_purchased_property_id=last_pid,
                    affected_property_ids=pset.property_ids,
                )
            )
        return out

    def buy_cooldown_for_set(self, wallet: str, set_id: int) -> BuyCooldown:
        self._catalog.get_set(set_id)
        return next(c for c in self.buy_cooldowns(wallet) if c.set_id == set_id)

    def active_buy_cooldowns(self, wallet: str) -> list[BuyCooldown]:
        return [c for c in self.buy_cooldowns(wallet) if c.is_on_cooldown]

    def steal_cooldown_for_property(self, wallet: str, property_id: int) -> StealCooldown:
        prop = self._catalog.get(property_id)
        last = self._db.last_action_times(wallet, [ActionKind.STEAL_SUCCESS, ActionKind.STEAL_FAILED])
        last_at = last.get(property_id)
        return StealCooldown(
            property_id=prop.id,
            property_name=prop.name,
            cooldown_duration=prop.steal_cooldown_seconds,
            cooldown_remaining=_remaining(prop.steal_cooldown_seconds, last_at, self._now()),
            last_steal_timestamp=last_at,
        )

    def active_steal_cooldowns(self, wallet: str) -> list[StealCooldown]:
        last = self._db.last_action_times(wallet, [ActionKind.STEAL_SUCCESS, ActionKind.STEAL_FAILED])
        now = self._now()
        out = []
        for pid, last_at in sorted(last.items()):
            if pid not in self._catalog:
                continue
            prop = self._catalog.get(pid)
            remaining = _remaining(prop.steal_cooldown_seconds, last_at, now)
            if remaining > 0:
                out.append(
                    StealCooldown(
                        property_id=pid,
                        property_name=prop.name,
                        cooldown_duration=prop.steal_cooldown_seconds,
                        cooldown_remaining=remaining,
                        last_steal_timestamp=last_at,
                    )
                )
        return out
