from __future__ import annotations

import asyncio
import logging
import os
import weakref
from typing import Any

import aiohttp
import orjson

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw not in {None, ""} else float(default)
    except ValueError:
        return float(default)


class HTTPError(Exception):
    """Raised when an HTTP request returns a non-success status code."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


def dumps(obj: object) -> bytes:
    """Serialize *obj* to JSON bytes."""
    return orjson.dumps(obj)


def loads(data: str | bytes) -> object:
    """Deserialize JSON *data*; malformed input raises a ``ValueError``."""
    return orjson.loads(data)


# Maintain a session per event loop to avoid cross-loop usage errors.
_SESSIONS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, aiohttp.ClientSession]" = weakref.WeakKeyDictionary()


async def get_session() -> aiohttp.ClientSession:
    """Return an aiohttp session bound to the current event loop.

    The session-wide timeout only bounds connection setup; long-lived stream
    reads pass their own :class:`aiohttp.ClientTimeout` per request.
    """
    loop = asyncio.get_running_loop()
    sess = _SESSIONS.get(loop)
    if sess is None or sess.closed:
        ua = os.getenv("HTTP_USER_AGENT", "EnergySync/1.0 (+https://local)")
        timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=_env_float("HTTP_CONNECT_TIMEOUT_SEC", 10.0),
        )
        trust_env = str(os.getenv("HTTP_TRUST_ENV", "")).lower() in {"1", "true", "yes"}
        if trust_env:
            logger.info("HTTP session will honor proxy settings from the environment")
        sess = aiohttp.ClientSession(
            headers={"User-Agent": ua},
            timeout=timeout,
            trust_env=trust_env,
        )
        _SESSIONS[loop] = sess
    return sess


async def close_session() -> None:
    """Close all known aiohttp sessions."""
    to_close = list(_SESSIONS.values())
    _SESSIONS.clear()
    for sess in to_close:
        if not sess.closed:
            await sess.close()


def request_timeout() -> aiohttp.ClientTimeout:
    """Timeout applied to ordinary (non-streaming) requests."""
    return aiohttp.ClientTimeout(total=_env_float("HTTP_TIMEOUT_SEC", 15.0))


async def fetch_json(
    url: str,
    method: str = "GET",
    *,
    attempts: int = 1,
    backoff: float = 0.3,
    **kwargs: Any,
) -> Any:
    """Fetch *url* using *method* and return the parsed JSON body.

    Transport failures are retried up to ``attempts`` times with exponential
    backoff.  HTTP error statuses raise :class:`HTTPError` immediately.
    """

    sess = await get_session()
    kwargs.setdefault("timeout", request_timeout())
    attempt = 0
    last_error: Exception | None = None
    while attempt < max(1, attempts):
        try:
            async with sess.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise HTTPError(
                        f"{method} {url} -> {response.status}: {text[:300]}",
                        status=response.status,
                        body=text,
                    )
                raw = await response.read()
                return loads(raw) if raw else None
        except HTTPError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            last_error = exc
            attempt += 1
            if attempt >= attempts:
                break
            logger.warning("%s %s failed (%s); retrying", method, url, exc)
            await asyncio.sleep(backoff * (2 ** (attempt - 1)))
    if last_error:
        raise last_error
    raise RuntimeError(f"failed to fetch {url}")


__all__ = [
    "HTTPError",
    "dumps",
    "loads",
    "get_session",
    "close_session",
    "request_timeout",
    "fetch_json",
]
