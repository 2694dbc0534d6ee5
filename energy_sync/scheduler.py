"""Single-timer expiry scheduler for optimistic overlay entries."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Callable, Dict, Hashable, List, Optional, Tuple

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[Hashable], None]


class ExpiryScheduler:
    """Fire callbacks when their deadlines pass, using one min-heap.

    Deadlines are expressed on ``clock`` (``time.monotonic`` by default).  At
    most one event loop timer is armed at any time, always for the earliest
    live deadline.  Cancelled or rescheduled keys are dropped lazily when they
    surface at the top of the heap.  :meth:`tick` may also be called directly,
    which is how tests drive expiry with a fake clock.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._heap: List[Tuple[float, int, Hashable]] = []
        self._live: Dict[Hashable, Tuple[float, int, ExpiryCallback]] = {}
        self._seq = itertools.count()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

    # inspection ----------------------------------------------------------
    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._live

    def deadline(self, key: Hashable) -> Optional[float]:
        item = self._live.get(key)
        return item[0] if item else None

    def next_deadline(self) -> Optional[float]:
        self._drop_stale()
        return self._heap[0][0] if self._heap else None

    # scheduling ----------------------------------------------------------
    def schedule(self, key: Hashable, delay: float, callback: ExpiryCallback) -> float:
        """Run ``callback(key)`` once ``delay`` seconds have elapsed.

        Scheduling an existing key replaces its previous deadline.
        """
        if self._closed:
            raise RuntimeError("scheduler is closed")
        deadline = self._clock() + max(0.0, float(delay))
        seq = next(self._seq)
        self._live[key] = (deadline, seq, callback)
        heapq.heappush(self._heap, (deadline, seq, key))
        self._arm()
        return deadline

    def cancel(self, key: Hashable) -> bool:
        """Forget ``key``. Returns ``False`` when it was not scheduled."""
        if self._live.pop(key, None) is None:
            return False
        self._arm()
        return True

    def cancel_all(self) -> None:
        self._live.clear()
        self._heap.clear()
        self._disarm()

    def close(self) -> None:
        self.cancel_all()
        self._closed = True

    def tick(self, now: Optional[float] = None) -> List[Hashable]:
        """Fire every callback whose deadline is at or before ``now``."""
        if now is None:
            now = self._clock()
        fired: List[Hashable] = []
        while self._heap and self._heap[0][0] <= now:
            deadline, seq, key = heapq.heappop(self._heap)
            item = self._live.get(key)
            if item is None or item[1] != seq:
                continue
            del self._live[key]
            fired.append(key)
            try:
                item[2](key)
            except Exception:  # pragma: no cover - callback bugs must not stop the tick
                logger.exception("expiry callback for %r failed", key)
        self._arm()
        return fired

    # internal helpers -----------------------------------------------------
    def _drop_stale(self) -> None:
        heap = self._heap
        while heap:
            _, seq, key = heap[0]
            item = self._live.get(key)
            if item is not None and item[1] == seq:
                return
            heapq.heappop(heap)

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self) -> None:
        self._disarm()
        if self._closed:
            return
        deadline = self.next_deadline()
        if deadline is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: expiry is driven by explicit tick() calls.
            return
        delay = max(0.0, deadline - self._clock())
        self._timer = loop.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.tick()


__all__ = ["ExpiryScheduler", "ExpiryCallback"]
