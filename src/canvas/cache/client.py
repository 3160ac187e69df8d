"""
Cache Client
============

Pooled Redis client for rendered images.

This client:
    - Stores and fetches opaque bytes by opaque bytes key
    - Draws connections from a bounded BlockingConnectionPool
    - Degrades every backend failure to a miss (get) or a no-op (set)
    - Counts misses and backend errors separately for observability

Design Rules:
    - Never raises to callers; the cache is an optimization only
    - No knowledge of image semantics
    - Pool exhaustion waits up to the pool timeout, then degrades
"""

import asyncio
import logging
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from canvas.errors import CacheUnavailable


logger = logging.getLogger(__name__)


class CacheMetrics:
    """Counters for CacheClient observability."""

    __slots__ = (
        "hits",
        "misses",
        "errors",
        "writes",
        "write_errors",
    )

    def __init__(self) -> None:
        self.hits: int = 0
        self.misses: int = 0
        self.errors: int = 0
        self.writes: int = 0
        self.write_errors: int = 0

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}


class CacheClient:
    """
    Best-effort byte cache backed by Redis.

    Attributes:
        ttl_seconds: Optional expiry applied on set (None = no expiry)
        metrics: Hit/miss/error counters

    Example:
        cache = CacheClient.from_url("redis://127.0.0.1/", max_connections=8)

        data = await cache.get(key)
        if data is None:
            data = render()
            await cache.set(key, data)

        await cache.close()
    """

    def __init__(
        self,
        client: Any,
        pool: Optional[aioredis.ConnectionPool] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        """
        Initialize cache client.

        Args:
            client: An async Redis client (redis.asyncio.Redis or compatible)
            pool: Connection pool owned by this client, disconnected on close
            ttl_seconds: Expiry for stored values
        """
        self._client = client
        self._pool = pool
        self.ttl_seconds = ttl_seconds
        self.metrics = CacheMetrics()

    @classmethod
    def from_url(
        cls,
        url: str,
        max_connections: int,
        pool_timeout: float = 2.0,
        socket_timeout: float = 2.0,
        ttl_seconds: Optional[int] = None,
    ) -> "CacheClient":
        """
        Build a client with its own bounded connection pool.

        Args:
            url: Redis URL
            max_connections: Pool capacity
            pool_timeout: Seconds to wait for a free connection
            socket_timeout: Connect/read timeout for commands
            ttl_seconds: Expiry for stored values
        """
        pool = aioredis.BlockingConnectionPool.from_url(
            url,
            max_connections=max_connections,
            timeout=pool_timeout,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        client = aioredis.Redis(connection_pool=pool)

        logger.info(
            f"CacheClient initialized: url={url}, max_connections={max_connections}, "
            f"pool_timeout={pool_timeout}s, ttl={ttl_seconds}"
        )
        return cls(client, pool=pool, ttl_seconds=ttl_seconds)

    async def get(self, key: bytes) -> Optional[bytes]:
        """
        Fetch a cached value.

        Returns:
            Cached bytes, or None on miss or backend failure
        """
        try:
            value = await self._call("get", key)
        except CacheUnavailable as e:
            self.metrics.errors += 1
            logger.warning(f"Cache unavailable for get, treating as miss: {e.message}")
            return None

        if value is None:
            self.metrics.misses += 1
            return None

        self.metrics.hits += 1
        return bytes(value)

    async def set(self, key: bytes, value: bytes) -> bool:
        """
        Store a value, best-effort.

        Returns:
            True if Redis accepted the write, False otherwise
        """
        try:
            await self._call("set", key, value, ex=self.ttl_seconds)
        except CacheUnavailable as e:
            self.metrics.write_errors += 1
            logger.warning(f"Cache unavailable for set, skipping: {e.message}")
            return False

        self.metrics.writes += 1
        return True

    async def ping(self) -> bool:
        try:
            return bool(await self._call("ping"))
        except CacheUnavailable:
            return False

    async def close(self) -> None:
        """Close the client and disconnect the owned pool."""
        try:
            await self._client.aclose()
            if self._pool is not None:
                await self._pool.disconnect()
        except redis.RedisError as e:
            logger.warning(f"Error while closing cache client: {e}")
        logger.info("CacheClient closed")

    async def _call(self, command: str, *args, **kwargs) -> Any:
        """Run a Redis command, mapping backend errors to CacheUnavailable."""
        try:
            return await getattr(self._client, command)(*args, **kwargs)
        except (redis.RedisError, OSError, asyncio.TimeoutError) as e:
            # Includes pool exhaustion: BlockingConnectionPool raises
            # ConnectionError("No connection available.") after its timeout
            raise CacheUnavailable(f"{command} failed: {e}")
