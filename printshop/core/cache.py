"""
Time-bounded cache for rows of the settings table.

Carrier credentials and sender details are edited by operators in the
settings table and read on every shipment call. SettingsCache keeps one
snapshot per settings category for a fixed lifetime. It is an explicit
object: the API builds one in its lifespan handler, each Celery worker
process builds its own, and tests pass a fake clock.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from printshop.core.logging import get_logger

logger = get_logger(__name__)

SettingsLoader = Callable[[], Awaitable[dict[str, str]]]


@dataclass
class _CacheEntry:
    values: dict[str, str]
    loaded_at: float


class SettingsCache:
    """
    Per-category cache of settings values with a time-to-live.

    Attributes:
        ttl_seconds: Lifetime of a loaded snapshot; 0 disables caching
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of a loaded snapshot in seconds
            clock: Monotonic time source, injectable for tests
        """
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.loaded_at < self.ttl_seconds

    async def get(self, category: str, loader: SettingsLoader) -> dict[str, str]:
        """
        Return the settings of a category, loading them when stale.

        Concurrent callers for the same category share a single load.

        Args:
            category: Settings category (e.g. "shipping")
            loader: Coroutine factory returning the category's key/value map

        Returns:
            Copy of the cached key/value map
        """
        entry = self._entries.get(category)
        if entry is not None and self._is_fresh(entry):
            return dict(entry.values)

        lock = self._locks.setdefault(category, asyncio.Lock())
        async with lock:
            entry = self._entries.get(category)
            if entry is not None and self._is_fresh(entry):
                return dict(entry.values)

            values = await loader()
            self._entries[category] = _CacheEntry(
                values=dict(values),
                loaded_at=self._clock(),
            )
            logger.debug(
                "Settings loaded into cache",
                category=category,
                keys=len(values),
            )
            return dict(values)

    def invalidate(self, category: Optional[str] = None) -> None:
        """
        Drop cached snapshots.

        Args:
            category: Category to drop; all categories when omitted
        """
        if category is None:
            self._entries.clear()
        else:
            self._entries.pop(category, None)
        logger.info("Settings cache invalidated", category=category or "*")
