"""
Process-lifetime memoization of slow-changing reference data.
"""

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from shared.logging import get_logger

T = TypeVar("T")


class ReferenceDataCache(Generic[T]):
    """Lazily populated snapshot guarded by a single lock.

    The lock spans the presence check and, on a miss, the fetch and store, so
    concurrent first callers trigger one fetch and nobody sees a half-built
    snapshot. ``clear`` only drops the snapshot; the next reader refetches.
    """

    def __init__(self, fetch: Callable[[], Awaitable[T]], name: str = "reference"):
        self._fetch = fetch
        self.name = name
        self.logger = get_logger(f"armory.cache.{name}")

        self._lock = asyncio.Lock()
        self._snapshot: Optional[T] = None
        self.fetch_count = 0

    async def get_or_fetch(self) -> T:
        async with self._lock:
            if self._snapshot is not None:
                return self._snapshot

            self.logger.info("Fetching reference data", cache=self.name)
            self.fetch_count += 1
            snapshot = await self._fetch()
            self._snapshot = snapshot
            return snapshot

    async def clear(self) -> None:
        async with self._lock:
            self._snapshot = None
        self.logger.info("Cleared reference data", cache=self.name)

    def peek(self) -> Optional[T]:
        """Current snapshot without fetching."""
        return self._snapshot
