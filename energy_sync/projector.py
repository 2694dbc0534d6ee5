"""Combine the authoritative snapshot with the optimistic overlay.

Everything here is a pure function of its inputs.  The clamps applied in
:func:`project` hold regardless of what the overlay contains, so the displayed
balance and total accruable always stay within ``[0, capacity]``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .capacity import BASE_CAPACITY, fallback_capacity
from .overlay import OptimisticOverlay
from .snapshot import LegacySnapshot, PerSourceSnapshot, ResourceSnapshot

__all__ = ["SanitizedSnapshot", "DisplaySnapshot", "sanitize", "project"]


def _num(value: Optional[float], default: float = 0.0) -> float:
    if value is None or math.isnan(value):
        return default
    return float(value)


@dataclass(frozen=True)
class SanitizedSnapshot:
    spendable_balance: float
    total_accruable: float
    accrual_rate: float
    capacity: float
    per_source_accrual: Mapping[str, float] = field(default_factory=dict)
    flat_accrual: float = 0.0

    @property
    def is_per_source(self) -> bool:
        return bool(self.per_source_accrual)


@dataclass(frozen=True)
class DisplaySnapshot:
    """The values shown to the user."""

    spendable_balance: float
    total_accruable: float
    accrued: float
    accrual_rate: float
    capacity: float
    base_capacity: float
    bonus_capacity: float
    per_source_accrual: Mapping[str, float] = field(default_factory=dict)
    stale: bool = False

    @property
    def accrual_rate_per_hour(self) -> float:
        return self.accrual_rate * 3600

    @property
    def headroom(self) -> float:
        return max(0.0, self.capacity - self.spendable_balance)

    @property
    def unclaimable(self) -> float:
        """Accrued energy that would be destroyed if harvested now."""
        return max(0.0, self.accrued - self.headroom)

    @property
    def fill_ratio(self) -> float:
        if self.capacity <= 0:
            return 0.0
        return self.spendable_balance / self.capacity


def sanitize(snapshot: ResourceSnapshot, *, capacity_fallback: float = BASE_CAPACITY) -> SanitizedSnapshot:
    """Replace missing or ``NaN`` numbers with safe defaults.

    Numeric fields default to 0; a missing, ``NaN`` or zero capacity falls back
    to ``capacity_fallback`` (base capacity plus bonus).
    """

    capacity = _num(snapshot.capacity) or float(capacity_fallback)
    per_source: Dict[str, float] = {}
    flat = 0.0
    if isinstance(snapshot, PerSourceSnapshot):
        per_source = {source: _num(value) for source, value in snapshot.per_source_accrual.items()}
    elif isinstance(snapshot, LegacySnapshot):
        flat = _num(snapshot.flat_accrual)
    else:  # pragma: no cover - exhaustive over ResourceSnapshot
        raise TypeError(f"unsupported snapshot type {type(snapshot).__name__}")
    return SanitizedSnapshot(
        spendable_balance=_num(snapshot.spendable_balance),
        total_accruable=_num(snapshot.total_accruable),
        accrual_rate=_num(snapshot.accrual_rate),
        capacity=max(0.0, capacity),
        per_source_accrual=per_source,
        flat_accrual=flat,
    )


def _per_source_remaining(clean: SanitizedSnapshot, overlay: OptimisticOverlay) -> Dict[str, float]:
    consumed = overlay.clamped_source_consumption(clean.per_source_accrual)
    return {
        source: max(0.0, reported - consumed.get(source, 0.0))
        for source, reported in clean.per_source_accrual.items()
    }


def _legacy_remaining(clean: SanitizedSnapshot, overlay: OptimisticOverlay) -> float:
    # The summed per-source consumption is not bounded by the flat total before
    # subtracting; only the result is clamped.
    consumed = math.fsum(overlay.per_source_consumed_delta.values())
    return max(0.0, clean.flat_accrual - consumed)


def project(
    snapshot: ResourceSnapshot,
    overlay: OptimisticOverlay,
    *,
    base_capacity: float = BASE_CAPACITY,
    bonus_capacity: float = 0.0,
    stale: bool = False,
) -> DisplaySnapshot:
    """Return the display values for ``snapshot`` with ``overlay`` applied."""

    clean = sanitize(snapshot, capacity_fallback=fallback_capacity(bonus_capacity, base_capacity))
    capacity = clean.capacity

    if clean.is_per_source:
        per_source = _per_source_remaining(clean, overlay)
        accrued = math.fsum(per_source.values())
    else:
        per_source = {}
        accrued = _legacy_remaining(clean, overlay)

    spendable = min(capacity, max(0.0, clean.spendable_balance + overlay.balance_delta))
    total_accruable = min(capacity, max(0.0, clean.total_accruable - overlay.accrual_consumed_delta))

    return DisplaySnapshot(
        spendable_balance=spendable,
        total_accruable=total_accruable,
        accrued=max(0.0, accrued),
        accrual_rate=clean.accrual_rate,
        capacity=capacity,
        base_capacity=float(base_capacity),
        bonus_capacity=max(0.0, float(bonus_capacity or 0.0)),
        per_source_accrual=per_source,
        stale=stale,
    )
