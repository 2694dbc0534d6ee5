"""Typed event payload schemas used with the event bus."""
from __future__ import annotations

from dataclasses import dataclass, asdict, is_dataclass
from typing import Any, Dict, Optional, Type


# ─────────────────────────────
# Event payload dataclasses
# ─────────────────────────────

@dataclass
class SnapshotReceived:
    """Payload emitted whenever a new authoritative snapshot is stored."""
    subject: str
    kind: str
    received_at: float


@dataclass
class ConnectionChanged:
    """Payload emitted on every stream connection state change."""
    subject: Optional[str]
    state: str
    error: Optional[str] = None
    reconnect_attempts: int = 0


@dataclass
class HarvestGranted:
    """Transient notification of how much a harvest added to the balance."""
    subject: Optional[str]
    action_id: str
    requested: float
    granted: float
    wasted: float
    source_id: Optional[str] = None


@dataclass
class BurnSubmitted:
    subject: Optional[str]
    action_id: str
    amount: float
    txid: str


@dataclass
class BurnFailed:
    subject: Optional[str]
    action_id: str
    amount: float
    kind: str
    message: str


_EVENT_SCHEMAS: Dict[str, Type] = {
    "energy.snapshot": SnapshotReceived,
    "energy.connection": ConnectionChanged,
    "energy.harvest_granted": HarvestGranted,
    "energy.burn_submitted": BurnSubmitted,
    "energy.burn_failed": BurnFailed,
}


def validate_message(topic: str, payload: Any) -> Any:
    """Validate ``payload`` for ``topic`` returning a dataclass instance.

    Unknown topics pass through unmodified.
    Raises ``ValueError`` if validation fails.
    """
    schema = _EVENT_SCHEMAS.get(topic)
    if schema is None:
        return payload

    if isinstance(payload, schema):
        return payload

    if isinstance(payload, dict):
        try:
            return schema(**payload)  # type: ignore[arg-type]
        except TypeError as exc:
            raise ValueError(f"Invalid payload for {topic}: {exc}") from exc

    raise ValueError(f"Invalid payload for {topic}")


def to_dict(payload: Any) -> Any:
    """Convert dataclass payloads to plain dictionaries."""
    if is_dataclass(payload) and not isinstance(payload, type):
        return asdict(payload)
    return payload


__all__ = [
    "SnapshotReceived",
    "ConnectionChanged",
    "HarvestGranted",
    "BurnSubmitted",
    "BurnFailed",
    "validate_message",
    "to_dict",
]
