"""Push-stream connection to the energy snapshot service.

The service exposes one long-lived ``text/event-stream`` response per account
at ``{base}/{subject}``.  :class:`StreamConnectionManager` keeps exactly one
such connection open, decodes every frame into a snapshot and retries lost
connections with bounded exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterable,
    AsyncIterator,
    Callable,
    List,
    Optional,
    Set,
)

import aiohttp

from .errors import SnapshotError, StreamError
from .http import get_session
from .logging_utils import warn_once_per
from .snapshot import ResourceSnapshot, parse_snapshot

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
BASE_DELAY = 1.0
MAX_DELAY = 30.0

RETRYING_MESSAGE = "Connection lost, retrying..."
EXHAUSTED_MESSAGE = "Connection failed after multiple attempts"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    RECONNECTING = "reconnecting"


@dataclass
class ConnectionStatus:
    state: ConnectionState = ConnectionState.DISCONNECTED
    error: Optional[str] = None
    last_update: float = 0.0
    reconnect_attempts: int = 0
    gave_up: bool = False


def backoff_delay(attempt: int, base: float = BASE_DELAY, cap: float = MAX_DELAY) -> float:
    """Delay in seconds before retry number ``attempt`` (0 based)."""
    return min(base * (2 ** attempt), cap)


async def iter_sse_data(lines: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
    """Yield the ``data`` of each default-channel server-sent event.

    Multiple ``data:`` lines of one event are joined with newlines.  Events
    with an ``event:`` name other than ``message`` are skipped, as are
    comment lines starting with ``:``.
    """
    data: List[str] = []
    event = ""
    async for raw in lines:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else raw
        line = line.rstrip("\r\n")
        if not line:
            if data and event in ("", "message"):
                yield "\n".join(data)
            data = []
            event = ""
            continue
        if line.startswith(":"):
            continue
        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "data":
            data.append(value)
        elif name == "event":
            event = value
    if data and event in ("", "message"):
        yield "\n".join(data)


@asynccontextmanager
async def open_event_stream(url: str, *, read_timeout: float | None = None) -> AsyncIterator[AsyncIterator[str]]:
    """Open ``url`` as an event stream and yield an iterator of event data."""
    session = await get_session()
    timeout = aiohttp.ClientTimeout(total=None, sock_read=read_timeout)
    headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
    async with session.get(url, headers=headers, timeout=timeout) as resp:
        if resp.status >= 400:
            raise StreamError(f"GET {url} -> {resp.status}")
        yield iter_sse_data(resp.content)


Opener = Callable[[str], AsyncContextManager[AsyncIterator[str]]]
SnapshotCallback = Callable[[str, ResourceSnapshot], None]
StatusCallback = Callable[[ConnectionStatus], None]


class StreamConnectionManager:
    """Own a single snapshot stream connection and its retry timer.

    ``url_for`` maps a subject to its stream URL.  ``call_later`` schedules the
    reconnect timer and must return an object with ``cancel()``; it defaults to
    the running loop's ``call_later``.
    """

    def __init__(
        self,
        url_for: Callable[[str], str],
        *,
        on_snapshot: SnapshotCallback,
        on_status: Optional[StatusCallback] = None,
        opener: Opener = open_event_stream,
        call_later: Optional[Callable[[float, Callable[[], None]], Any]] = None,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._url_for = url_for
        self._on_snapshot = on_snapshot
        self._on_status = on_status
        self._opener = opener
        self._call_later = call_later
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock

        self._subject: Optional[str] = None
        self._generation = 0
        self._retry_count = 0
        self._task: Optional[asyncio.Task] = None
        self._cancelled: Set[asyncio.Task] = set()
        self._retry_handle: Any = None
        self._status = ConnectionStatus()

    # inspection ----------------------------------------------------------
    @property
    def subject(self) -> Optional[str]:
        return self._subject

    @property
    def status(self) -> ConnectionStatus:
        return replace(self._status)

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    # public API ----------------------------------------------------------
    def connect(self, subject: str) -> asyncio.Task:
        """Open the stream for ``subject``, tearing down any previous one."""
        self._teardown()
        self._generation += 1
        self._subject = subject
        self._retry_count = 0
        self._status.gave_up = False
        self._status.reconnect_attempts = 0
        self._set_status(ConnectionState.CONNECTING, None)
        return self._open()

    def reconnect(self) -> Optional[asyncio.Task]:
        """Retry immediately for the current subject with a fresh retry budget."""
        if self._subject is None:
            return None
        return self.connect(self._subject)

    def disconnect(self) -> None:
        """Close the stream and cancel any pending retry. Safe to call repeatedly."""
        self._generation += 1
        self._teardown()
        if self._subject is not None:
            logger.info("energy stream for %s disconnected", self._subject)
        self._subject = None
        self._retry_count = 0
        if self._status.state != ConnectionState.DISCONNECTED or self._status.error:
            self._status.gave_up = False
            self._status.reconnect_attempts = 0
            self._set_status(ConnectionState.DISCONNECTED, None)

    async def aclose(self) -> None:
        """Disconnect and wait for the cancelled stream task to finish."""
        self.disconnect()
        pending = list(self._cancelled)
        self._cancelled.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # connection lifecycle ------------------------------------------------
    def _open(self) -> asyncio.Task:
        assert self._subject is not None
        gen = self._generation
        url = self._url_for(self._subject)
        self._task = asyncio.get_running_loop().create_task(self._run(gen, url))
        return self._task

    async def _run(self, gen: int, url: str) -> None:
        error: Exception
        try:
            async with self._opener(url) as events:
                if gen != self._generation:
                    return
                self._handle_open()
                async for data in events:
                    if gen != self._generation:
                        return
                    self._handle_message(data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc
        else:
            error = StreamError("stream closed by server")
        if gen == self._generation:
            self._handle_error(error)

    def _handle_open(self) -> None:
        logger.info("energy stream for %s connected", self._subject)
        self._status.reconnect_attempts = self._retry_count
        self._status.last_update = self._clock()
        self._status.gave_up = False
        self._retry_count = 0
        self._set_status(ConnectionState.CONNECTED, None)

    def _handle_message(self, data: str) -> None:
        try:
            snapshot = parse_snapshot(data)
        except SnapshotError as exc:
            if not warn_once_per(
                1.0,
                f"energy-stream-malformed:{self._subject}",
                "dropping malformed energy snapshot for %s: %s",
                self._subject,
                exc,
                logger=logger,
            ):
                logger.debug("dropping malformed energy snapshot for %s: %s", self._subject, exc)
            return
        self._status.last_update = self._clock()
        assert self._subject is not None
        try:
            self._on_snapshot(self._subject, snapshot)
        except Exception:
            logger.exception("snapshot handler failed for %s", self._subject)

    def _handle_error(self, exc: BaseException) -> None:
        self._task = None
        attempt = self._retry_count
        self._status.reconnect_attempts = attempt + 1
        if attempt < self.max_retries:
            delay = backoff_delay(attempt, self.base_delay, self.max_delay)
            logger.warning(
                "energy stream for %s failed (%s); retrying in %.1fs (attempt %d/%d)",
                self._subject,
                exc,
                delay,
                attempt + 1,
                self.max_retries,
            )
            self._set_status(ConnectionState.ERROR, RETRYING_MESSAGE)
            self._retry_handle = self._schedule(delay, self._retry)
            self._set_status(ConnectionState.RECONNECTING, RETRYING_MESSAGE)
        else:
            logger.error(
                "energy stream for %s failed after %d retries: %s",
                self._subject,
                attempt,
                exc,
            )
            self._status.gave_up = True
            self._set_status(ConnectionState.ERROR, EXHAUSTED_MESSAGE)

    def _retry(self) -> Optional[asyncio.Task]:
        self._retry_handle = None
        if self._subject is None:
            return None
        self._retry_count += 1
        return self._open()

    # helpers --------------------------------------------------------------
    def _schedule(self, delay: float, callback: Callable[[], None]) -> Any:
        if self._call_later is not None:
            return self._call_later(delay, callback)
        return asyncio.get_running_loop().call_later(delay, callback)

    def _teardown(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            self._cancelled.add(task)
            task.add_done_callback(self._cancelled.discard)

    def _set_status(self, state: ConnectionState, error: Optional[str]) -> None:
        self._status.state = state
        self._status.error = error
        if self._on_status is not None:
            try:
                self._on_status(replace(self._status))
            except Exception:
                logger.exception("status handler failed")


__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "StreamConnectionManager",
    "backoff_delay",
    "iter_sse_data",
    "open_event_stream",
    "MAX_RETRIES",
    "BASE_DELAY",
    "MAX_DELAY",
    "RETRYING_MESSAGE",
    "EXHAUSTED_MESSAGE",
]
