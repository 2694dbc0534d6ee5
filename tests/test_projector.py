import math

import pytest

from energy_sync.capacity import BASE_CAPACITY
from energy_sync.overlay import BURN, HARVEST, OptimisticOverlay, PendingEntry
from energy_sync.projector import project, sanitize
from energy_sync.snapshot import LegacySnapshot, PerSourceSnapshot


def per_source(**kw):
    base = dict(spendable_balance=90.0, total_accruable=100.0, accrual_rate=1.0, capacity=100.0)
    base.update(kw)
    base.setdefault("per_source_accrual", {"X": 15.0, "Y": 5.0})
    return PerSourceSnapshot(**base)


def legacy(**kw):
    base = dict(spendable_balance=90.0, total_accruable=100.0, accrual_rate=1.0, capacity=100.0, flat_accrual=20.0)
    base.update(kw)
    return LegacySnapshot(**base)


def harvest(action_id, granted, consumed, source=None):
    return PendingEntry(action_id, HARVEST, balance_delta=granted, accrual_consumed=consumed, source_id=source)


def test_empty_overlay_returns_authoritative_values():
    view = project(per_source(), OptimisticOverlay())
    assert view.spendable_balance == 90
    assert view.total_accruable == 100
    assert view.accrued == 20
    assert view.per_source_accrual == {"X": 15, "Y": 5}
    assert view.capacity == 100
    assert view.accrual_rate_per_hour == 3600


def test_waste_accounting_projection():
    overlay = OptimisticOverlay()
    overlay.add(harvest("h1", granted=10, consumed=20, source="X"))
    view = project(per_source(), overlay)
    assert view.spendable_balance == 100
    assert view.total_accruable == 80
    # consumption on X is capped at X's own 15
    assert view.per_source_accrual == {"X": 0, "Y": 5}
    assert view.accrued == 5


def test_per_source_consumption_only_touches_its_source():
    overlay = OptimisticOverlay()
    overlay.add(harvest("h1", granted=0, consumed=3, source="Y"))
    overlay.add(harvest("h2", granted=0, consumed=4, source="unknown"))
    view = project(per_source(), overlay)
    assert view.per_source_accrual == {"X": 15, "Y": 2}
    assert view.accrued == 17


def test_legacy_path_subtracts_unbounded_sum():
    overlay = OptimisticOverlay()
    overlay.add(harvest("h1", granted=0, consumed=15, source="X"))
    overlay.add(harvest("h2", granted=0, consumed=15, source="Y"))
    view = project(legacy(flat_accrual=20.0), overlay)
    # 20 - 30 clamps to zero even though the sources are unknown to the legacy total
    assert view.accrued == 0
    assert view.per_source_accrual == {}


def test_legacy_path_ignores_consumption_without_source():
    overlay = OptimisticOverlay()
    overlay.add(harvest("h1", granted=5, consumed=8))
    view = project(legacy(flat_accrual=20.0), overlay)
    assert view.accrued == 20
    assert view.total_accruable == 92


def test_balance_is_clamped_to_capacity_and_zero():
    overlay = OptimisticOverlay()
    overlay.add(harvest("h1", granted=500, consumed=0))
    assert project(per_source(), overlay).spendable_balance == 100

    overlay = OptimisticOverlay()
    overlay.add(PendingEntry("b1", BURN, balance_delta=-1000))
    assert project(per_source(), overlay).spendable_balance == 0


def test_total_accruable_is_clamped():
    overlay = OptimisticOverlay()
    overlay.add(harvest("h1", granted=0, consumed=1000))
    assert project(per_source(), overlay).total_accruable == 0
    assert project(per_source(total_accruable=250.0), OptimisticOverlay()).total_accruable == 100


def test_sanitize_defaults_nan_and_missing_values():
    snap = PerSourceSnapshot(
        spendable_balance=float("nan"),
        total_accruable=None,
        accrual_rate=float("nan"),
        capacity=float("nan"),
        per_source_accrual={"X": float("nan"), "Y": 3.0},
    )
    clean = sanitize(snap, capacity_fallback=123.0)
    assert clean.spendable_balance == 0
    assert clean.total_accruable == 0
    assert clean.accrual_rate == 0
    assert clean.capacity == 123
    assert clean.per_source_accrual == {"X": 0, "Y": 3}
    assert clean.is_per_source


@pytest.mark.parametrize("capacity", [None, float("nan"), 0.0])
def test_capacity_falls_back_to_base_plus_bonus(capacity):
    view = project(legacy(capacity=capacity), OptimisticOverlay(), bonus_capacity=25_000_000)
    assert view.capacity == BASE_CAPACITY + 25_000_000
    assert view.base_capacity == BASE_CAPACITY
    assert view.bonus_capacity == 25_000_000


def test_derived_presentation_values():
    view = project(legacy(spendable_balance=90.0, flat_accrual=25.0), OptimisticOverlay())
    assert view.headroom == 10
    assert view.unclaimable == 15
    assert math.isclose(view.fill_ratio, 0.9)


def test_stale_flag_is_passed_through():
    assert project(legacy(), OptimisticOverlay(), stale=True).stale is True
    assert project(legacy(), OptimisticOverlay()).stale is False
