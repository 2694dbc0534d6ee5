"""Optimistic overlay of locally applied, not yet confirmed energy deltas."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Optional

logger = logging.getLogger(__name__)

HARVEST = "harvest"
BURN = "burn"


@dataclass
class PendingEntry:
    """One pending action's contribution to the overlay.

    ``expires_at`` is ``None`` while the action is still in flight (a burn
    whose submission has not returned yet); such entries never expire on their
    own and are removed by rollback or by setting a deadline once submitted.
    """

    action_id: str
    kind: str
    balance_delta: float
    accrual_consumed: float = 0.0
    source_id: Optional[str] = None
    created_at: float = 0.0
    expires_at: Optional[float] = None

    @property
    def in_flight(self) -> bool:
        return self.expires_at is None


class OptimisticOverlay:
    """Arena of :class:`PendingEntry` records keyed by action id.

    The aggregate deltas are derived from the live entries rather than kept
    as running totals, so removing an entry restores exactly the state that
    existed without it.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, PendingEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PendingEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._entries

    def get(self, action_id: str) -> Optional[PendingEntry]:
        return self._entries.get(action_id)

    # mutation ------------------------------------------------------------
    def add(self, entry: PendingEntry) -> PendingEntry:
        if entry.action_id in self._entries:
            raise KeyError(f"duplicate action id {entry.action_id}")
        if entry.accrual_consumed < 0:
            raise ValueError("accrual_consumed must be non-negative")
        self._entries[entry.action_id] = entry
        logger.debug(
            "overlay add %s balance%+g consumed=%g source=%s",
            entry.action_id,
            entry.balance_delta,
            entry.accrual_consumed,
            entry.source_id,
        )
        return entry

    def set_expiry(self, action_id: str, expires_at: float) -> bool:
        entry = self._entries.get(action_id)
        if entry is None:
            return False
        entry.expires_at = expires_at
        return True

    def remove(self, action_id: str) -> Optional[PendingEntry]:
        """Drop ``action_id``; removing an unknown id is a no-op."""
        entry = self._entries.pop(action_id, None)
        if entry is not None:
            logger.debug("overlay remove %s", action_id)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    # aggregates ----------------------------------------------------------
    @property
    def balance_delta(self) -> float:
        return math.fsum(e.balance_delta for e in self._entries.values())

    @property
    def accrual_consumed_delta(self) -> float:
        return max(0.0, math.fsum(e.accrual_consumed for e in self._entries.values()))

    @property
    def per_source_consumed_delta(self) -> Dict[str, float]:
        parts: Dict[str, list[float]] = {}
        for entry in self._entries.values():
            if entry.source_id is None or entry.accrual_consumed <= 0:
                continue
            parts.setdefault(entry.source_id, []).append(entry.accrual_consumed)
        return {source: max(0.0, math.fsum(values)) for source, values in parts.items()}

    @property
    def pending_actions(self) -> Dict[str, tuple[float, Optional[float]]]:
        """Map of action id to ``(balance delta, expires_at)``."""
        return {
            action_id: (entry.balance_delta, entry.expires_at)
            for action_id, entry in self._entries.items()
        }

    def clamped_source_consumption(self, reported: Mapping[str, float]) -> Dict[str, float]:
        """Per-source consumption, each capped at that source's own accrual.

        Sources absent from ``reported`` (or reporting nothing) contribute 0.
        """
        clamped: Dict[str, float] = {}
        for source, consumed in self.per_source_consumed_delta.items():
            available = reported.get(source) or 0.0
            if available <= 0:
                clamped[source] = 0.0
            else:
                clamped[source] = min(consumed, available)
        return clamped


__all__ = ["OptimisticOverlay", "PendingEntry", "HARVEST", "BURN"]
