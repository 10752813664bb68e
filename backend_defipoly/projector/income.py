"""
Daily income from current holdings and the static catalog.

Pure functions: income is always derived from the full ownership snapshot,
never from incremental deltas, so replay and partial failure cannot drift it.
Arithmetic stays in integers (scaled by BPS_DENOMINATOR twice) and is floored once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from backend_defipoly.config.catalog import BPS_DENOMINATOR, PropertyCatalog
from backend_defipoly.defipoly_logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IncomeBreakdown:
    daily_income: int
    complete_sets: int
    complete_set_ids: tuple[int, ...] = ()


def complete_set_ids(holdings: Mapping[int, int], catalog: PropertyCatalog) -> list[int]:
    """Sets in which every member property has at least one owned slot."""
    owned = {pid for pid, slots in holdings.items() if slots > 0}
    return [s.id for s in catalog.sets if s.property_ids and all(pid in owned for pid in s.property_ids)]


def compute_daily_income(holdings: Mapping[int, int], catalog: PropertyCatalog) -> IncomeBreakdown:
    """
    Daily income for one player's holdings (property_id -> slots owned).

    Complete set: the minimum slot count across the set earns the set bonus on
    every member; slots above that minimum earn base yield. Incomplete sets earn
    base yield only.
    """
    by_set: dict[int, dict[int, int]] = {}
    for pid, slots in holdings.items():
        if slots <= 0:
            continue
        if pid not in catalog:
            logger.warning("income_unknown_property", property_id=pid, slots=slots)
            continue
        by_set.setdefault(catalog.get(pid).set_id, {})[pid] = slots

    complete = []
    numerator = 0  # income * BPS_DENOMINATOR**2
    for set_id, owned in by_set.items():
        pset = catalog.get_set(set_id)
        is_complete = len(owned) >= pset.member_count
        min_slots = min(owned.values()) if is_complete else 0
        if is_complete:
            complete.append(set_id)
        for pid, slots in owned.items():
            prop = catalog.get(pid)
            per_slot = prop.price * prop.yield_bps  # * 1/BPS
            bonus_slots = min(slots, min_slots)
            base_slots = slots - bonus_slots
            numerator += base_slots * per_slot * BPS_DENOMINATOR
            numerator += bonus_slots * per_slot * (BPS_DENOMINATOR + pset.bonus_bps)

    return IncomeBreakdown(
        daily_income=numerator // (BPS_DENOMINATOR * BPS_DENOMINATOR),
        complete_sets=len(complete),
        complete_set_ids=tuple(sorted(complete)),
    )
