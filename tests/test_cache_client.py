"""
Cache Client Tests
==================

Best-effort semantics of CacheClient over an in-memory Redis fake.
"""

import time

import pytest
import redis.asyncio as aioredis

from canvas.cache.client import CacheClient


class TestCacheClient:
    """Tests for get/set degradation and metrics."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, cache):
        assert await cache.get(b"k") is None
        assert await cache.set(b"k", b"value") is True
        assert await cache.get(b"k") == b"value"

        metrics = cache.metrics.to_dict()
        assert metrics["misses"] == 1
        assert metrics["hits"] == 1
        assert metrics["writes"] == 1
        assert metrics["errors"] == 0

    @pytest.mark.asyncio
    async def test_backend_failure_is_a_miss(self, cache, fake_redis):
        await cache.set(b"k", b"value")
        fake_redis.fail = True

        assert await cache.get(b"k") is None
        assert cache.metrics.errors == 1
        # Backend errors are not counted as ordinary misses
        assert cache.metrics.misses == 0

    @pytest.mark.asyncio
    async def test_set_failure_does_not_raise(self, cache, fake_redis):
        fake_redis.fail = True

        assert await cache.set(b"k", b"value") is False
        assert cache.metrics.write_errors == 1

    @pytest.mark.asyncio
    async def test_ttl_forwarded(self, fake_redis):
        cache = CacheClient(fake_redis, ttl_seconds=60)
        await cache.set(b"k", b"v")
        assert fake_redis.last_ex == 60

    @pytest.mark.asyncio
    async def test_ping_and_close(self, cache, fake_redis):
        assert await cache.ping() is True
        fake_redis.fail = True
        assert await cache.ping() is False

        await cache.close()
        assert fake_redis.closed

    @pytest.mark.asyncio
    async def test_unreachable_server_degrades(self):
        # Nothing listens on port 1; every command fails fast
        cache = CacheClient.from_url(
            "redis://127.0.0.1:1/0",
            max_connections=1,
            pool_timeout=0.1,
            socket_timeout=0.2,
        )
        try:
            assert await cache.get(b"k") is None
            assert await cache.set(b"k", b"v") is False
            assert cache.metrics.errors == 1
            assert cache.metrics.write_errors == 1
        finally:
            await cache.close()


class IdleConnection(aioredis.Connection):
    """Connection that never opens a socket; only occupies a pool slot."""

    async def connect(self):
        pass

    async def can_read_destructive(self):
        return False

    async def disconnect(self, nowait=False):
        pass


class TestPoolExhaustion:
    """Tests for the bounded connection pool running dry."""

    @pytest.mark.asyncio
    async def test_exhausted_pool_degrades_after_timeout(self):
        pool = aioredis.BlockingConnectionPool(
            max_connections=1,
            timeout=0.1,
            connection_class=IdleConnection,
        )
        held = await pool.get_connection("GET")
        cache = CacheClient(aioredis.Redis(connection_pool=pool), pool=pool)

        try:
            started = time.perf_counter()
            assert await cache.get(b"k") is None
            waited = time.perf_counter() - started

            assert await cache.set(b"k", b"v") is False

            assert 0.08 <= waited < 2.0
            assert cache.metrics.errors == 1
            assert cache.metrics.misses == 0
            assert cache.metrics.write_errors == 1
        finally:
            await pool.release(held)
            await cache.close()
