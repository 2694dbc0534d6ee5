"""In-process publish/subscribe for transient energy notifications."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, DefaultDict, Generator, List

from .schemas import validate_message

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]


class EventBus:
    """Topic based dispatcher.

    Plain callables run synchronously inside :meth:`publish`; coroutine
    functions are scheduled on the running loop.  A failing handler is logged
    and does not prevent delivery to the remaining handlers.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``topic`` events.

        Returns a callable that will remove the handler when invoked.
        """
        self._subscribers[topic].append(handler)

        def _unsub() -> None:
            self.unsubscribe(topic, handler)

        return _unsub

    @contextmanager
    def subscription(self, topic: str, handler: Handler) -> Generator[Handler, None, None]:
        """Context manager that registers ``handler`` for ``topic`` and automatically unsubscribes."""
        unsub = self.subscribe(topic, handler)
        try:
            yield handler
        finally:
            unsub()

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        """Remove ``handler`` from ``topic`` subscriptions."""
        handlers = self._subscribers.get(topic)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            self._subscribers.pop(topic, None)

    def publish(self, topic: str, payload: Any) -> None:
        """Publish ``payload`` to all subscribers of ``topic``."""
        payload = validate_message(topic, payload)
        handlers = list(self._subscribers.get(topic, []))
        if not handlers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for h in handlers:
            try:
                if inspect.iscoroutinefunction(h):
                    if loop:
                        loop.create_task(h(payload))
                    else:
                        asyncio.run(h(payload))
                else:
                    h(payload)
            except Exception:
                logger.exception("handler for %s failed", topic)

    def reset(self) -> None:
        """Drop every subscription (used by tests)."""
        self._subscribers.clear()


BUS = EventBus()


def subscribe(topic: str, handler: Handler) -> Callable[[], None]:
    return BUS.subscribe(topic, handler)


@contextmanager
def subscription(topic: str, handler: Handler) -> Generator[Handler, None, None]:
    with BUS.subscription(topic, handler) as h:
        yield h


def unsubscribe(topic: str, handler: Handler) -> None:
    BUS.unsubscribe(topic, handler)


def publish(topic: str, payload: Any) -> None:
    BUS.publish(topic, payload)


def reset() -> None:
    BUS.reset()


__all__ = [
    "EventBus",
    "BUS",
    "subscribe",
    "subscription",
    "unsubscribe",
    "publish",
    "reset",
]
