"""Per-account session tying the stream, snapshot and overlay together.

An :class:`EnergySession` owns everything that belongs to the selected account:
the stream connection, the last authoritative snapshot, the optimistic overlay
and the expiry scheduler for overlay entries.  Selecting a different account
or closing the session tears all of them down together, so no timer or late
callback can act on data from a previous account.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from . import event_bus
from .actions import ActionCoordinator, BurnReceipt, HarvestResult
from .burn import BurnSubmitter, HttpBurnSubmitter
from .capacity import BonusCapacityLookup, HttpBonusCapacity, SourceNames, fallback_capacity
from .config import Config
from .overlay import OptimisticOverlay
from .projector import DisplaySnapshot, project
from .scheduler import ExpiryScheduler
from .schemas import ConnectionChanged, SnapshotReceived
from .snapshot import ResourceSnapshot
from .stream import ConnectionState, ConnectionStatus, Opener, StreamConnectionManager, open_event_stream

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"
    OFFLINE = "offline"


class EnergySession:
    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        submitter: Optional[BurnSubmitter] = None,
        bonus_lookup: Optional[BonusCapacityLookup] = None,
        source_names: Optional[SourceNames] = None,
        opener: Optional[Opener] = None,
        call_later: Optional[Callable[[float, Callable[[], None]], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or Config()
        self.source_names = source_names or SourceNames()
        self._clock = clock
        self._wall_clock = wall_clock
        if submitter is None and self.config.signer_url:
            submitter = HttpBurnSubmitter(self.config.signer_url)
        if bonus_lookup is None and self.config.bonus_url:
            bonus_lookup = HttpBonusCapacity(self.config.bonus_url)
        self._bonus_lookup = bonus_lookup
        self._bonus_task: Optional[asyncio.Task] = None
        self._cancelled: Set[asyncio.Task] = set()
        self._closed = False

        self.subject: Optional[str] = None
        self.snapshot: Optional[ResourceSnapshot] = None
        self.overlay = OptimisticOverlay()
        self.scheduler = ExpiryScheduler(clock=clock)
        self.bonus_capacity = 0.0
        self.last_received_at = 0.0
        self.epoch = 0

        self.stream = StreamConnectionManager(
            self.config.stream_url,
            on_snapshot=self._on_snapshot,
            on_status=self._on_status,
            opener=opener or open_event_stream,
            call_later=call_later,
            max_retries=self.config.max_retries,
            base_delay=self.config.base_delay,
            max_delay=self.config.max_delay,
            clock=wall_clock,
        )
        self.actions = ActionCoordinator(
            self,
            submitter,
            harvest_ttl=self.config.harvest_ttl,
            burn_ttl=self.config.burn_ttl,
            burn_safety_bound=self.config.burn_safety_bound,
        )

    async def __aenter__(self) -> "EnergySession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # derived state -------------------------------------------------------
    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connection(self) -> ConnectionStatus:
        return self.stream.status

    @property
    def state(self) -> SessionState:
        status = self.stream.status
        if status.state == ConnectionState.CONNECTED:
            return SessionState.LIVE
        if status.state == ConnectionState.DISCONNECTED:
            return SessionState.UNCONNECTED
        if status.state == ConnectionState.CONNECTING:
            return SessionState.DEGRADED if self.snapshot is not None else SessionState.CONNECTING
        if status.gave_up:
            return SessionState.OFFLINE
        return SessionState.DEGRADED

    @property
    def capacity_fallback(self) -> float:
        return fallback_capacity(self.bonus_capacity, self.config.base_capacity)

    def scheduler_clock(self) -> float:
        return self._clock()

    def display(self) -> Optional[DisplaySnapshot]:
        """Project the current snapshot and overlay; ``None`` before any snapshot."""
        if self.snapshot is None:
            return None
        return project(
            self.snapshot,
            self.overlay,
            base_capacity=self.config.base_capacity,
            bonus_capacity=self.bonus_capacity,
            stale=self.state != SessionState.LIVE,
        )

    def labeled_accrual(self) -> Dict[str, float]:
        """Remaining per-source accrual keyed by display name."""
        view = self.display()
        if view is None:
            return {}
        return self.source_names.label_all(view.per_source_accrual)

    # subject lifecycle ---------------------------------------------------
    def select_subject(self, subject: Optional[str]) -> Optional[asyncio.Task]:
        """Switch to ``subject`` (``None`` deselects).

        Re-selecting the live subject is a no-op; re-selecting it after the
        stream gave up retries with a fresh budget and keeps the last snapshot.
        """
        if self._closed:
            raise RuntimeError("session is closed")
        if subject is not None and subject == self.subject and self.stream.subject == subject:
            if self.stream.status.gave_up:
                return self.reconnect()
            return None
        self._reset()
        if subject is None:
            return None
        self.subject = subject
        logger.info("energy session selected %s", subject)
        if self._bonus_lookup is not None:
            self._bonus_task = asyncio.get_running_loop().create_task(
                self._load_bonus(subject, self.epoch)
            )
        return self.stream.connect(subject)

    def reconnect(self) -> Optional[asyncio.Task]:
        """Explicit retry after the stream gave up; keeps the last snapshot."""
        if self._closed or self.subject is None:
            return None
        return self.stream.reconnect()

    async def close(self) -> None:
        if self._closed:
            return
        self._reset()
        self._closed = True
        self.scheduler.close()
        await self.stream.aclose()
        pending = list(self._cancelled)
        self._cancelled.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _reset(self) -> None:
        self.epoch += 1
        self.stream.disconnect()
        self.scheduler.cancel_all()
        task = self._bonus_task
        if task is not None and not task.done():
            task.cancel()
            self._cancelled.add(task)
            task.add_done_callback(self._cancelled.discard)
        self._bonus_task = None
        self.overlay = OptimisticOverlay()
        self.snapshot = None
        self.subject = None
        self.bonus_capacity = 0.0
        self.last_received_at = 0.0

    async def _load_bonus(self, subject: str, epoch: int) -> None:
        assert self._bonus_lookup is not None
        try:
            bonus = await self._bonus_lookup.bonus_capacity(subject)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("bonus capacity lookup for %s failed: %s", subject, exc)
            return
        if epoch == self.epoch:
            self.bonus_capacity = max(0.0, float(bonus or 0.0))

    # stream callbacks ----------------------------------------------------
    def _on_snapshot(self, subject: str, snapshot: ResourceSnapshot) -> None:
        if subject != self.subject:
            return
        self.snapshot = snapshot
        self.last_received_at = self._wall_clock()
        event_bus.publish(
            "energy.snapshot",
            SnapshotReceived(subject=subject, kind=snapshot.kind, received_at=self.last_received_at),
        )

    def _on_status(self, status: ConnectionStatus) -> None:
        event_bus.publish(
            "energy.connection",
            ConnectionChanged(
                subject=self.stream.subject,
                state=status.state.value,
                error=status.error,
                reconnect_attempts=status.reconnect_attempts,
            ),
        )

    # actions -------------------------------------------------------------
    def apply_harvest(self, requested_amount: float, source_id: Optional[str] = None) -> Optional[HarvestResult]:
        return self.actions.apply_harvest(requested_amount, source_id)

    async def apply_burn(self, amount: Optional[float] = None) -> BurnReceipt:
        return await self.actions.apply_burn(amount)

    def expire_due(self, now: Optional[float] = None) -> list:
        """Process overlay entries whose deadline has passed."""
        return self.scheduler.tick(now)


__all__ = ["EnergySession", "SessionState"]
