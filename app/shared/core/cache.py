"""
Execution-scoped snapshot cache.

Holds full directory/tenant snapshots for the lifetime of one scheduled
invocation so consecutive lifecycle checks do not refetch them. Each
reconciler owns its own instance; nothing here is module-global.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

import structlog

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 10 * 60


@dataclass
class CacheEntry:
    payload: Any
    fetched_at: float


class SnapshotCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def _is_valid(self, entry: CacheEntry, ttl_seconds: float) -> bool:
        return (self._clock() - entry.fetched_at) < ttl_seconds

    def peek(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        """Return the cached payload for `key` while fresh, otherwise fetch and store it."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        entry = self._entries.get(key)
        if entry is not None and self._is_valid(entry, ttl):
            logger.debug("snapshot_cache_hit", key=key)
            return entry.payload

        logger.debug("snapshot_cache_miss", key=key, expired=entry is not None)
        payload = await fetch()
        self._entries[key] = CacheEntry(payload=payload, fetched_at=self._clock())
        return payload

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
        logger.debug("snapshot_cache_invalidated", key=key or "*")
