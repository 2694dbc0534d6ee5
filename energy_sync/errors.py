"""Exception types raised by the energy tracking client."""

from __future__ import annotations


class EnergyError(Exception):
    """Base class for all errors raised by :mod:`energy_sync`."""


class StreamError(EnergyError):
    """Raised when the snapshot stream cannot be opened or is lost."""


class SnapshotError(EnergyError, ValueError):
    """Raised when an inbound snapshot frame cannot be decoded."""


class ActionError(EnergyError):
    """Base class for failures of user-initiated actions."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.user_message = message


class InsufficientEnergyError(ActionError):
    """Raised when a burn is requested with nothing burnable."""


class BurnSubmissionError(ActionError):
    """Raised after a burn submission failed and its delta was rolled back."""

    def __init__(self, message: str, *, kind: str, action_id: str, amount: float) -> None:
        super().__init__(message)
        self.kind = kind
        self.action_id = action_id
        self.amount = amount


__all__ = [
    "EnergyError",
    "StreamError",
    "SnapshotError",
    "ActionError",
    "InsufficientEnergyError",
    "BurnSubmissionError",
]
