"""
Pipeline Orchestrator
=====================

Ingest and fetch operations over the store, the cache and the work pool.

Fetch:
    1. derive the cache key from (hash, normalized params)
    2. cache get; on hit return immediately (no store access, no render)
    3. on miss: load the original (unknown hash -> NotFound), render in
       the CPU pool, store the result best-effort, return it

Concurrency:
    There is no single-flight lock. Two concurrent misses for the same key
    both render; renders are deterministic, so whichever cache write lands
    last stores identical bytes.

    Render and cache write run as one task shielded from the request. A
    client that disconnects mid-render still leaves a populated cache
    entry behind; `drain()` waits for such orphaned renders on shutdown.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set

from canvas.cache.client import CacheClient
from canvas.cache.keys import derive_cache_key
from canvas.engine.transforms import TransformEngine
from canvas.errors import InvalidInput, ProcessingFailed
from canvas.models.params import TransformParams
from canvas.pipeline.job import PipelineJob, WatermarkSpec
from canvas.storage.content_store import ContentStore
from canvas.workers.pool import CpuWorkPool


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RenderedImage:
    """
    Result of a fetch.

    Attributes:
        data: Encoded image bytes
        content_type: MIME type for the response
        cache_key: Key the render is (or would be) cached under
        cache_hit: Whether the bytes came from the cache
    """

    data: bytes
    content_type: str
    cache_key: bytes
    cache_hit: bool

    def __repr__(self) -> str:
        return (
            f"RenderedImage({len(self.data)} bytes, {self.content_type}, "
            f"cache_hit={self.cache_hit})"
        )


class PipelineMetrics:
    """Counters for Pipeline observability."""

    __slots__ = (
        "uploads",
        "fetches",
        "cache_hits",
        "renders",
        "render_failures",
    )

    def __init__(self) -> None:
        self.uploads: int = 0
        self.fetches: int = 0
        self.cache_hits: int = 0
        self.renders: int = 0
        self.render_failures: int = 0

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}


class Pipeline:
    """
    Retrieval / transform / cache orchestrator.

    The pipeline is the only component that acquires cache connections
    and work-pool slots.

    Example:
        pipeline = Pipeline(store, cache, pool, CvTransformEngine())

        digest = await pipeline.ingest(upload_bytes)
        rendered = await pipeline.fetch(digest, TransformParams(width=100, height=100))
    """

    def __init__(
        self,
        store: ContentStore,
        cache: CacheClient,
        pool: CpuWorkPool,
        engine: TransformEngine,
        watermark: Optional[WatermarkSpec] = None,
        max_upload_bytes: Optional[int] = None,
    ) -> None:
        """
        Initialize pipeline.

        Args:
            store: Content store for originals
            cache: Render cache
            pool: CPU work pool for engine calls
            engine: Transform engine
            watermark: Configured watermark (None = watermark flag is a no-op)
            max_upload_bytes: Upload size limit (None = unlimited)
        """
        self.store = store
        self.cache = cache
        self.pool = pool
        self.engine = engine
        self.watermark = watermark
        self.max_upload_bytes = max_upload_bytes
        self.metrics = PipelineMetrics()
        self._renders: Set[asyncio.Task] = set()

    def check_upload_size(self, size: int) -> None:
        """
        Reject an upload larger than the configured limit.

        Raises:
            InvalidInput: If `size` exceeds `max_upload_bytes`
        """
        if self.max_upload_bytes is not None and size > self.max_upload_bytes:
            raise InvalidInput(
                f"Uploaded file is {size} bytes, limit is {self.max_upload_bytes}"
            )

    async def ingest(self, data: bytes) -> str:
        """
        Validate and store an uploaded original.

        Args:
            data: Raw upload bytes

        Returns:
            Content hash

        Raises:
            InvalidInput: Empty, oversized or undecodable upload
            StorageUnavailable: If the store cannot be written
        """
        if not data:
            raise InvalidInput("Uploaded file is empty")
        self.check_upload_size(len(data))

        try:
            width, height = await self.pool.submit(self.engine.probe, data)
        except ProcessingFailed as e:
            raise InvalidInput(f"Uploaded file is not a supported image: {e.message}")

        digest = await self.store.put(data)
        self.metrics.uploads += 1
        logger.info(f"Ingested {digest} ({width}x{height}, {len(data)} bytes)")
        return digest

    async def fetch(self, content_hash: str, params: TransformParams) -> RenderedImage:
        """
        Return the rendered image for (hash, params), computing it on a miss.

        Raises:
            NotFound: If the hash was never ingested (detected on miss only)
            StorageUnavailable: If the original cannot be read
            ProcessingFailed: If a transform stage fails
        """
        self.metrics.fetches += 1
        key = derive_cache_key(content_hash, params)
        content_type = params.format.content_type

        cached = await self.cache.get(key)
        if cached is not None:
            self.metrics.cache_hits += 1
            logger.debug(f"Using cached image {key!r}")
            return RenderedImage(cached, content_type, key, cache_hit=True)

        logger.debug(f"Image was not found in cache: {key!r}")
        original = await self.store.get(content_hash)

        job = PipelineJob(original=original, params=params, watermark=self.watermark)
        task = asyncio.ensure_future(self._render_and_store(content_hash, key, job))
        self._renders.add(task)
        task.add_done_callback(self._render_done)

        data = await asyncio.shield(task)
        return RenderedImage(data, content_type, key, cache_hit=False)

    async def _render_and_store(self, content_hash: str, key: bytes, job: PipelineJob) -> bytes:
        try:
            data = await self.pool.submit(job.run, self.engine)
        except ProcessingFailed as e:
            self.metrics.render_failures += 1
            logger.error(f"Render failed for {content_hash}: {e.message}")
            raise
        self.metrics.renders += 1

        await self.cache.set(key, data)
        return data

    def _render_done(self, task: asyncio.Task) -> None:
        self._renders.discard(task)
        # Retrieve the outcome so renders orphaned by a cancelled request
        # don't report "exception was never retrieved"
        if not task.cancelled():
            task.exception()

    async def drain(self) -> None:
        """Wait for renders still running after their requests went away."""
        if self._renders:
            logger.info(f"Waiting for {len(self._renders)} in-flight render(s)")
            await asyncio.gather(*self._renders, return_exceptions=True)

    async def exists(self, content_hash: str) -> bool:
        """Whether an original is stored for `content_hash`."""
        return await self.store.exists(content_hash)
