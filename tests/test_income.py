"""
Tests for daily income: base yield, set completion, and the minimum-slot bonus rule.
"""

from __future__ import annotations

from backend_defipoly.config import default_catalog
from backend_defipoly.projector.income import complete_set_ids, compute_daily_income


def test_incomplete_set_earns_base_only(catalog):
    result = compute_daily_income({0: 5, 1: 5}, catalog)
    assert result.daily_income == 1000
    assert result.complete_sets == 0


def test_completing_set_applies_bonus_to_min_slots(catalog):
    result = compute_daily_income({0: 5, 1: 5, 2: 1}, catalog)
    # base (4 + 4 + 0) * 100 + bonus 3 * 1 * 100 * 1.4
    assert result.daily_income == 1220
    assert result.complete_sets == 1
    assert result.complete_set_ids == (0,)


def test_bonus_grows_with_minimum(catalog):
    assert compute_daily_income({0: 2, 1: 2, 2: 2}, catalog).daily_income == 840


def test_zero_slots_do_not_count_toward_completion(catalog):
    result = compute_daily_income({0: 1, 1: 1, 2: 0}, catalog)
    assert result.complete_sets == 0
    assert result.daily_income == 200


def test_income_floors_fractional_yield(catalog):
    # Set 1: 60/slot, 30% bonus; 1 + 1 complete -> 2 * 60 * 1.3 = 156
    assert compute_daily_income({3: 1, 4: 1}, catalog).daily_income == 156
    assert compute_daily_income({}, catalog).daily_income == 0


def test_unknown_property_is_ignored(catalog):
    assert compute_daily_income({0: 1, 99: 10}, catalog).daily_income == 100


def test_complete_set_ids(catalog):
    assert complete_set_ids({0: 1, 1: 1, 2: 1, 3: 4}, catalog) == [0]


def test_default_catalog_income():
    cat = default_catalog()
    prop = cat.get(0)
    expected = prop.price * prop.yield_bps // 10_000
    assert compute_daily_income({0: 1}, cat).daily_income == expected
    assert len(cat) == 22
    assert len(cat.sets) == 8
