"""
Service Container
=================

Process-wide resources with an explicit startup/shutdown lifecycle.

The FastAPI lifespan builds one Services instance from Settings, stores it
on `app.state.services`, and closes it on shutdown. Request handlers
receive the pipeline through it; nothing reaches into module globals.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from canvas.cache.client import CacheClient
from canvas.config import Settings
from canvas.engine.transforms import CvTransformEngine, TransformEngine, load_watermark
from canvas.pipeline.job import WatermarkSpec
from canvas.pipeline.orchestrator import Pipeline
from canvas.storage.content_store import ContentStore
from canvas.workers.pool import CpuWorkPool


logger = logging.getLogger(__name__)

CacheFactory = Callable[[Settings, int], CacheClient]


def redis_cache_factory(settings: Settings, default_connections: int) -> CacheClient:
    """Build the production Redis-backed cache client."""
    return CacheClient.from_url(
        settings.cache.redis_url,
        max_connections=settings.cache.max_connections or default_connections,
        pool_timeout=settings.cache.pool_timeout_seconds,
        socket_timeout=settings.cache.socket_timeout_seconds,
        ttl_seconds=settings.cache.ttl_seconds,
    )


@dataclass
class Services:
    """Owned resources shared by all requests."""

    store: ContentStore
    cache: CacheClient
    pool: CpuWorkPool
    pipeline: Pipeline

    @classmethod
    async def start(
        cls,
        settings: Settings,
        cache_factory: Optional[CacheFactory] = None,
        engine: Optional[TransformEngine] = None,
    ) -> "Services":
        """
        Create and start every resource.

        Args:
            settings: Loaded configuration
            cache_factory: Builds the cache client (default: Redis from settings)
            engine: Transform engine (default: CvTransformEngine)
        """
        engine = engine or CvTransformEngine()

        watermark = None
        if settings.watermark.path:
            watermark = WatermarkSpec(
                image=load_watermark(engine, settings.watermark.path),
                opacity=settings.watermark.opacity,
                margin=settings.watermark.margin,
                max_ratio=settings.watermark.max_ratio,
            )
        else:
            logger.info("No watermark configured; watermark requests render unchanged")

        store = ContentStore(settings.storage.upload_dir)
        store.ensure_root()

        pool = CpuWorkPool(
            workers=settings.workers.count,
            queue_size=settings.workers.queue_size,
        )
        pool.start()

        cache = None
        try:
            # Same sizing as the worker pool: one connection per concurrent render
            cache = (cache_factory or redis_cache_factory)(settings, pool.workers)
            if not await cache.ping():
                logger.warning("Cache backend unreachable at startup; serving without cache until it recovers")
        except Exception:
            logger.error("Startup failed; stopping the work pool")
            if cache is not None:
                await cache.close()
            await asyncio.to_thread(pool.shutdown)
            raise

        pipeline = Pipeline(
            store=store,
            cache=cache,
            pool=pool,
            engine=engine,
            watermark=watermark,
            max_upload_bytes=settings.server.file_size_limit_kb * 1024,
        )
        return cls(store=store, cache=cache, pool=pool, pipeline=pipeline)

    async def close(self) -> None:
        """Finish orphaned renders, release the cache pool and stop the worker threads."""
        await self.pipeline.drain()
        await self.cache.close()
        # Joining worker threads blocks; keep it off the event loop
        await asyncio.to_thread(self.pool.shutdown, True)
