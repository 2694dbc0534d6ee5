"""Authoritative energy snapshots as pushed by the remote stream.

Every frame on the stream is a complete state for one account.  Two shapes
exist on the wire: newer servers report accrual per source (``engineAccumulations``)
while older ones only send a single ``accumulatedSinceLastHarvest`` scalar.  The
shape is resolved once, at parse time, into either :class:`PerSourceSnapshot`
or :class:`LegacySnapshot` so downstream code can branch on the type instead of
probing optional fields.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import SnapshotError

__all__ = [
    "SnapshotPayload",
    "PerSourceSnapshot",
    "LegacySnapshot",
    "ResourceSnapshot",
    "parse_snapshot",
]


class SnapshotPayload(BaseModel):
    """Wire model for a single stream frame."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    current_energy_balance: Optional[float] = Field(default=None, alias="currentEnergyBalance")
    total_harvestable_energy: Optional[float] = Field(default=None, alias="totalHarvestableEnergy")
    energy_rate_per_second: Optional[float] = Field(default=None, alias="energyRatePerSecond")
    max_capacity: Optional[float] = Field(default=None, alias="maxCapacity")
    engine_accumulations: Optional[Dict[str, Optional[float]]] = Field(
        default=None, alias="engineAccumulations"
    )
    accumulated_since_last_harvest: Optional[float] = Field(
        default=None, alias="accumulatedSinceLastHarvest"
    )


@dataclass(frozen=True)
class _BaseSnapshot:
    spendable_balance: Optional[float]
    total_accruable: Optional[float]
    accrual_rate: Optional[float]
    capacity: Optional[float]
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PerSourceSnapshot(_BaseSnapshot):
    """Snapshot carrying a non-empty per-source accrual breakdown."""

    kind: ClassVar[str] = "per_source"

    per_source_accrual: Mapping[str, Optional[float]] = field(default_factory=dict)

    @property
    def reported_accrual(self) -> float:
        total = 0.0
        for value in self.per_source_accrual.values():
            if value is None or math.isnan(value):
                continue
            total += value
        return total


@dataclass(frozen=True)
class LegacySnapshot(_BaseSnapshot):
    """Snapshot from servers that only report a flat accrual total."""

    kind: ClassVar[str] = "legacy"

    flat_accrual: Optional[float] = None

    @property
    def reported_accrual(self) -> float:
        if self.flat_accrual is None or math.isnan(self.flat_accrual):
            return 0.0
        return self.flat_accrual


ResourceSnapshot = Union[PerSourceSnapshot, LegacySnapshot]


def _from_payload(payload: SnapshotPayload) -> ResourceSnapshot:
    extra = dict(payload.model_extra or {})
    common = dict(
        spendable_balance=payload.current_energy_balance,
        total_accruable=payload.total_harvestable_energy,
        accrual_rate=payload.energy_rate_per_second,
        capacity=payload.max_capacity,
        extra=extra,
    )
    if payload.engine_accumulations:
        return PerSourceSnapshot(
            per_source_accrual=dict(payload.engine_accumulations),
            **common,
        )
    return LegacySnapshot(flat_accrual=payload.accumulated_since_last_harvest, **common)


def parse_snapshot(data: str | bytes | Mapping[str, Any]) -> ResourceSnapshot:
    """Decode one stream frame into a :data:`ResourceSnapshot`.

    ``data`` may be the raw JSON text of an SSE ``data`` field or an already
    decoded mapping.  Raises :class:`SnapshotError` when the frame is not a JSON
    object or a numeric field holds a non-numeric value.  Missing, ``null`` and
    ``NaN`` numbers are accepted and left for the projector to sanitize.
    """

    if isinstance(data, (str, bytes, bytearray)):
        try:
            raw = json.loads(data)
        except ValueError as exc:
            raise SnapshotError(f"snapshot is not valid JSON: {exc}") from exc
    else:
        raw = data
    if not isinstance(raw, Mapping):
        raise SnapshotError(f"snapshot must be a JSON object, got {type(raw).__name__}")
    try:
        payload = SnapshotPayload.model_validate(dict(raw))
    except ValidationError as exc:
        raise SnapshotError(f"invalid snapshot: {exc.error_count()} field error(s)") from exc
    return _from_payload(payload)
