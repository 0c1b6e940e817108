"""In-memory cache provider using cachetools.

Backed by ``cachetools.TLRUCache`` so every entry carries its own expiry,
bounded by the provider's maximum TTL.  Suitable for single-process
deployments; swap for a network cache via :class:`ICacheProvider`.
"""

from __future__ import annotations

import time
from typing import Any, NamedTuple

import structlog
from cachetools import TLRUCache

from src.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _time_to_use(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class MemoryCacheProvider(ICacheProvider):
    """In-memory TTL cache.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry
        is evicted.
    ttl:
        Default and maximum time-to-live in seconds for cache entries.
    """

    def __init__(self, max_size: int = 1000, ttl: int = 3600) -> None:
        self._max_ttl = max(1, ttl)
        self._cache: TLRUCache[str, _Entry] = TLRUCache(
            maxsize=max_size,
            ttu=_time_to_use,
            timer=time.monotonic,
        )

    async def get(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry is None:
            logger.debug("cache_miss", key=key)
            return None
        logger.debug("cache_hit", key=key)
        return entry.value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value*; *ttl* is clamped to ``(0, max ttl]``."""
        effective = self._max_ttl if ttl is None or ttl <= 0 else min(ttl, self._max_ttl)
        self._cache[key] = _Entry(value=value, ttl=effective)
        logger.debug("cache_set", key=key, ttl=effective)

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)
        logger.debug("cache_delete", key=key)

    async def exists(self, key: str) -> bool:
        return key in self._cache

    async def clear(self) -> None:
        self._cache.clear()
        logger.debug("cache_cleared")

    def __len__(self) -> int:
        self._cache.expire()
        return len(self._cache)
