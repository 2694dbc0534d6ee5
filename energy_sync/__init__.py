"""Client-side view of streamed energy balances with optimistic actions."""

from __future__ import annotations

from .actions import ActionCoordinator, BurnReceipt, HarvestResult
from .burn import BurnRejected, BurnRequest, HttpBurnSubmitter, PostCondition
from .capacity import BASE_CAPACITY, HttpBonusCapacity, SourceNames, StaticBonusCapacity
from .config import Config
from .errors import (
    ActionError,
    BurnSubmissionError,
    EnergyError,
    InsufficientEnergyError,
    SnapshotError,
    StreamError,
)
from .overlay import OptimisticOverlay, PendingEntry
from .projector import DisplaySnapshot, project, sanitize
from .scheduler import ExpiryScheduler
from .session import EnergySession, SessionState
from .snapshot import LegacySnapshot, PerSourceSnapshot, ResourceSnapshot, parse_snapshot
from .stream import ConnectionState, ConnectionStatus, StreamConnectionManager

__version__ = "0.1.0"

__all__ = [
    "ActionCoordinator",
    "ActionError",
    "BASE_CAPACITY",
    "BurnReceipt",
    "BurnRejected",
    "BurnRequest",
    "BurnSubmissionError",
    "Config",
    "ConnectionState",
    "ConnectionStatus",
    "DisplaySnapshot",
    "EnergyError",
    "EnergySession",
    "ExpiryScheduler",
    "HarvestResult",
    "HttpBonusCapacity",
    "HttpBurnSubmitter",
    "InsufficientEnergyError",
    "LegacySnapshot",
    "OptimisticOverlay",
    "PendingEntry",
    "PerSourceSnapshot",
    "PostCondition",
    "ResourceSnapshot",
    "SessionState",
    "SnapshotError",
    "SourceNames",
    "StaticBonusCapacity",
    "StreamConnectionManager",
    "StreamError",
    "parse_snapshot",
    "project",
    "sanitize",
]
