import asyncio
from contextlib import asynccontextmanager

import pytest

from energy_sync import event_bus
from energy_sync.logging_utils import reset_warn_once_cache


@pytest.fixture(autouse=True)
def _clean_bus():
    event_bus.reset()
    reset_warn_once_cache()
    yield
    event_bus.reset()


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class _Timer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTimers:
    """Stand-in for ``loop.call_later`` that records instead of waiting."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = _Timer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def delays(self):
        return [t.delay for t in self.timers]

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def fire_last(self):
        timer = self.timers[-1]
        assert not timer.cancelled
        timer.cancelled = True
        return timer.callback()


_CLOSE = object()


class ScriptedConnection:
    def __init__(self, url):
        self.url = url
        self.queue = asyncio.Queue()
        self.closed = False

    async def events(self):
        while True:
            item = await self.queue.get()
            try:
                if item is _CLOSE:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
            finally:
                self.queue.task_done()

    async def push(self, *frames):
        for frame in frames:
            self.queue.put_nowait(frame)
        await self.queue.join()

    async def end(self):
        self.queue.put_nowait(_CLOSE)
        await self.queue.join()

    async def fail(self, exc):
        self.queue.put_nowait(exc)
        await self.queue.join()


class ScriptedOpener:
    """Opener whose connections are fed by the test.

    ``fail_next`` makes the next N opens raise ``ConnectionError``.
    """

    def __init__(self):
        self.connections = []
        self.urls = []
        self.fail_next = 0

    @asynccontextmanager
    async def __call__(self, url):
        self.urls.append(url)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ConnectionError("connection refused")
        conn = ScriptedConnection(url)
        self.connections.append(conn)
        try:
            yield conn.events()
        finally:
            conn.closed = True

    @property
    def last(self):
        return self.connections[-1]


async def settle(rounds: int = 20):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def opener():
    return ScriptedOpener()


@pytest.fixture
def events():
    """Collect every energy.* event published during the test."""
    seen = []
    topics = [
        "energy.snapshot",
        "energy.connection",
        "energy.harvest_granted",
        "energy.burn_submitted",
        "energy.burn_failed",
    ]
    unsubs = [event_bus.subscribe(t, lambda p, t=t: seen.append((t, p))) for t in topics]
    yield seen
    for unsub in unsubs:
        unsub()


@pytest.fixture
def settled():
    return settle
