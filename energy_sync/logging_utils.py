"""Logging setup shared by the energy client.

Records go to stdout, either as plain text with UTC timestamps or as one JSON
object per line.  Structured context (``subject``, ``action_id``...) is passed
through ``extra=`` and ends up as top-level keys in JSON mode.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

DEFAULT_FORMAT = "%(asctime)sZ [%(levelname)s] %(name)s | %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# aiohttp access logs and asyncio debug chatter drown out stream transitions.
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "aiohttp.access", "aiohttp.internal")

_HANDLER_TAG = "_energy_sync_stdout"
_STD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

_warn_lock = threading.Lock()
_warn_last: dict[str, float] = {}
_warn_clock: Callable[[], float] = time.monotonic


class UTCFormatter(logging.Formatter):
    converter = time.gmtime


class JsonFormatter(logging.Formatter):
    """One JSON object per record with any ``extra`` context merged in."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STD_ATTRS and not key.startswith("_")
        }
        payload.update(context)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def _env_level(default: int) -> int:
    raw = os.getenv("ENERGY_LOG_LEVEL", "").strip()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def setup_stdout_logging(
    level: int | None = None,
    *,
    json_format: bool | None = None,
    fmt: str = DEFAULT_FORMAT,
    datefmt: str = DEFAULT_DATEFMT,
    propagate_off: Iterable[str] = _QUIET_LOGGERS,
) -> logging.Handler:
    """Install (or reconfigure) the single stdout handler on the root logger.

    ``level`` defaults to ``ENERGY_LOG_LEVEL`` (INFO when unset) and
    ``json_format`` to ``ENERGY_LOG_JSON``.  Calling this again reuses the
    handler installed by the first call.
    """

    if level is None:
        level = _env_level(logging.INFO)
    if json_format is None:
        json_format = _env_flag("ENERGY_LOG_JSON")

    root = logging.getLogger()
    handler = next((h for h in root.handlers if getattr(h, _HANDLER_TAG, False)), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        setattr(handler, _HANDLER_TAG, True)
        root.addHandler(handler)

    handler.setLevel(level)
    handler.setFormatter(JsonFormatter() if json_format else UTCFormatter(fmt, datefmt=datefmt))
    root.setLevel(level)

    for name in propagate_off:
        logging.getLogger(name).propagate = False
    return handler


def warn_once_per(
    minutes: float,
    key: str,
    message: str,
    *args: Any,
    logger: logging.Logger | None = None,
    **kwargs: Any,
) -> bool:
    """Log ``message`` at WARNING unless ``key`` was logged within ``minutes``.

    Returns whether the record was emitted.
    """

    now = _warn_clock()
    window = max(0.0, minutes) * 60.0
    with _warn_lock:
        last = _warn_last.get(key)
        if last is not None and now - last < window:
            return False
        _warn_last[key] = now
    (logger or logging.getLogger("energy_sync")).warning(message, *args, **kwargs)
    return True


def reset_warn_once_cache() -> None:
    with _warn_lock:
        _warn_last.clear()


__all__ = [
    "DEFAULT_FORMAT",
    "DEFAULT_DATEFMT",
    "JsonFormatter",
    "UTCFormatter",
    "setup_stdout_logging",
    "warn_once_per",
    "reset_warn_once_cache",
]
