"""
Redis-backed response cache for proxied upstream payloads.

The cache is an optimization only. Reads that fail behave as misses, and
writes run as background tasks whose failures are logged and dropped, so the
response path never fails because of Redis. Every Redis call is bounded by
the socket timeouts, so an unresponsive host also reads as a miss.
"""

import asyncio
from typing import Optional, Set, TYPE_CHECKING

import redis.asyncio as redis

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class CacheTTL:
    """TTLs in seconds, chosen by how quickly the data goes stale."""

    CHARACTER = 5 * 60
    REFERENCE = 12 * 60 * 60


class ResponseCache:
    """Read-through / write-behind cache keyed by request identity."""

    def __init__(
        self,
        redis_url: str,
        *,
        prefix: str = "armory",
        metrics: Optional["MetricsCollector"] = None,
        client: Optional[redis.Redis] = None,
        connect_timeout: float = 5.0,
        socket_timeout: float = 5.0,
    ):
        self.redis_url = redis_url
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.prefix = prefix
        self.metrics = metrics
        self.logger = get_logger("armory.cache")

        self._redis: Optional[redis.Redis] = client
        self._pending: Set[asyncio.Task] = set()

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                socket_connect_timeout=self.connect_timeout,
                socket_timeout=self.socket_timeout,
            )
        return self._redis

    def _make_key(self, key: str) -> str:
        """Namespace a request identity."""
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[str]:
        """Return the cached value, or None on a miss or an unreachable cache."""
        try:
            redis_client = await self._get_redis()
            cached_data = await self._bounded(redis_client.get(self._make_key(key)))
        except Exception as e:
            self.logger.error("Cache get error", key=key, error=str(e) or type(e).__name__)
            self._record("cache_misses_total")
            return None

        if cached_data is None:
            self.logger.info("Cache MISS", key=key)
            self._record("cache_misses_total")
            return None

        self.logger.info("Cache HIT", key=key)
        self._record("cache_hits_total")
        return cached_data.decode("utf-8") if isinstance(cached_data, bytes) else cached_data

    def set(self, key: str, value: str, ttl: int) -> None:
        """Store ``value`` for ``ttl`` seconds in the background."""
        self._spawn(self._set(key, value, ttl))

    def delete(self, key: str) -> None:
        """Remove ``key`` in the background."""
        self._spawn(self._delete(key))

    async def flush(self) -> None:
        """Wait for every pending background write."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def ping(self) -> str:
        try:
            redis_client = await self._get_redis()
            await self._bounded(redis_client.ping())
            return "ok"
        except Exception as e:
            self.logger.error("Cache ping failed", error=str(e))
            return "error"

    async def close(self) -> None:
        await self.flush()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def _bounded(self, coro):
        """Await a Redis call, giving up after connect plus read timeouts."""
        return await asyncio.wait_for(coro, timeout=self.connect_timeout + self.socket_timeout)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _set(self, key: str, value: str, ttl: int) -> None:
        try:
            redis_client = await self._get_redis()
            await self._bounded(redis_client.set(self._make_key(key), value, ex=ttl))
            self.logger.info("Cache SET", key=key, ttl=ttl)
        except Exception as e:
            self.logger.error("Cache set error", key=key, error=str(e))

    async def _delete(self, key: str) -> None:
        try:
            redis_client = await self._get_redis()
            await self._bounded(redis_client.delete(self._make_key(key)))
            self.logger.info("Cache DEL", key=key)
        except Exception as e:
            self.logger.error("Cache delete error", key=key, error=str(e))

    def _record(self, metric_name: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, cache_type="response")
