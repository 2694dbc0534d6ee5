"""Read-only collaborators consulted for capacity and presentation."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Mapping, Optional, Protocol

import aiohttp

from .http import HTTPError, fetch_json

logger = logging.getLogger(__name__)

# 100 energy expressed in micro-units.
BASE_CAPACITY = 100_000_000


class BonusCapacityLookup(Protocol):
    async def bonus_capacity(self, subject: str) -> float:
        ...


class StaticBonusCapacity:
    """Bonus lookup returning a fixed value for every subject."""

    def __init__(self, value: float = 0.0) -> None:
        self.value = float(value)

    async def bonus_capacity(self, subject: str) -> float:
        return self.value


class HttpBonusCapacity:
    """Fetch the NFT capacity bonus for a subject from a JSON endpoint.

    ``url_template`` is formatted with ``subject``; the response body must
    contain a numeric ``capacityBonus`` field.  Lookup failures are logged and
    treated as no bonus, since the bonus only feeds the capacity fallback.
    """

    def __init__(self, url_template: str) -> None:
        self.url_template = url_template

    async def bonus_capacity(self, subject: str) -> float:
        url = self.url_template.format(subject=subject)
        try:
            data = await fetch_json(url, attempts=2)
        except (HTTPError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("bonus capacity lookup for %s failed: %s", subject, exc)
            return 0.0
        if not isinstance(data, Mapping):
            return 0.0
        try:
            return max(0.0, float(data.get("capacityBonus") or 0.0))
        except (TypeError, ValueError):
            logger.warning("bonus capacity for %s is not numeric: %r", subject, data.get("capacityBonus"))
            return 0.0


def fallback_capacity(bonus: float, base: float = BASE_CAPACITY) -> float:
    return float(base) + max(0.0, float(bonus or 0.0))


class SourceNames:
    """Display names for accrual sources.

    Unknown ids fall back to their contract name, i.e. the part after the
    last ``.`` of a ``principal.contract-name`` identifier.
    """

    def __init__(self, names: Optional[Mapping[str, str]] = None) -> None:
        self._names: Dict[str, str] = dict(names or {})

    def register(self, source_id: str, name: str) -> None:
        self._names[source_id] = name

    def display_name(self, source_id: str) -> str:
        name = self._names.get(source_id)
        if name:
            return name
        return source_id.rsplit(".", 1)[-1]

    def label_all(self, values: Mapping[str, float]) -> Dict[str, float]:
        return {self.display_name(source): value for source, value in values.items()}


__all__ = [
    "BASE_CAPACITY",
    "BonusCapacityLookup",
    "StaticBonusCapacity",
    "HttpBonusCapacity",
    "SourceNames",
    "fallback_capacity",
]
