import pytest

from energy_sync.overlay import BURN, HARVEST, OptimisticOverlay, PendingEntry


def test_aggregates_follow_live_entries():
    overlay = OptimisticOverlay()
    overlay.add(PendingEntry("h1", HARVEST, balance_delta=10, accrual_consumed=20, source_id="X"))
    overlay.add(PendingEntry("h2", HARVEST, balance_delta=5, accrual_consumed=5, source_id="X"))
    overlay.add(PendingEntry("b1", BURN, balance_delta=-50))

    assert overlay.balance_delta == -35
    assert overlay.accrual_consumed_delta == 25
    assert overlay.per_source_consumed_delta == {"X": 25}

    overlay.remove("h1")
    assert overlay.balance_delta == -45
    assert overlay.per_source_consumed_delta == {"X": 5}


def test_removing_harvest_does_not_disturb_pending_burn():
    overlay = OptimisticOverlay()
    overlay.add(PendingEntry("b1", BURN, balance_delta=-500))
    overlay.add(PendingEntry("h1", HARVEST, balance_delta=10, accrual_consumed=10))
    overlay.remove("h1")
    assert overlay.balance_delta == -500
    assert overlay.accrual_consumed_delta == 0


def test_remove_is_idempotent():
    overlay = OptimisticOverlay()
    overlay.add(PendingEntry("h1", HARVEST, balance_delta=1, accrual_consumed=1))
    assert overlay.remove("h1") is not None
    assert overlay.remove("h1") is None
    assert len(overlay) == 0
    assert overlay.balance_delta == 0
    assert overlay.per_source_consumed_delta == {}


def test_duplicate_and_negative_entries_rejected():
    overlay = OptimisticOverlay()
    overlay.add(PendingEntry("h1", HARVEST, balance_delta=1, accrual_consumed=1))
    with pytest.raises(KeyError):
        overlay.add(PendingEntry("h1", HARVEST, balance_delta=1, accrual_consumed=1))
    with pytest.raises(ValueError):
        overlay.add(PendingEntry("h2", HARVEST, balance_delta=1, accrual_consumed=-1))


def test_pending_actions_and_expiry():
    overlay = OptimisticOverlay()
    entry = overlay.add(PendingEntry("b1", BURN, balance_delta=-5))
    assert entry.in_flight
    assert overlay.pending_actions == {"b1": (-5, None)}
    assert overlay.set_expiry("b1", 60.0)
    assert not entry.in_flight
    assert overlay.pending_actions == {"b1": (-5, 60.0)}
    assert not overlay.set_expiry("missing", 1.0)


def test_clamped_source_consumption():
    overlay = OptimisticOverlay()
    overlay.add(PendingEntry("h1", HARVEST, balance_delta=0, accrual_consumed=30, source_id="X"))
    overlay.add(PendingEntry("h2", HARVEST, balance_delta=0, accrual_consumed=2, source_id="Y"))
    overlay.add(PendingEntry("h3", HARVEST, balance_delta=0, accrual_consumed=9, source_id="Z"))
    clamped = overlay.clamped_source_consumption({"X": 12, "Y": 5, "Z": 0})
    assert clamped == {"X": 12, "Y": 2, "Z": 0}


def test_clear():
    overlay = OptimisticOverlay()
    overlay.add(PendingEntry("h1", HARVEST, balance_delta=1, accrual_consumed=1, source_id="X"))
    overlay.clear()
    assert len(overlay) == 0
    assert "h1" not in overlay
