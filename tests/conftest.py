"""
Test Configuration
==================

Pytest fixtures and test configuration for Canvas.
"""

from collections import Counter
from io import BytesIO

import numpy as np
import pytest
import redis
from PIL import Image

from canvas.cache.client import CacheClient
from canvas.config import CacheConfig, Settings, StorageConfig, WatermarkConfig, WorkersConfig
from canvas.engine.transforms import CvTransformEngine
from canvas.pipeline.orchestrator import Pipeline
from canvas.storage.content_store import ContentStore
from canvas.workers.pool import CpuWorkPool


# =============================================================================
# Fakes
# =============================================================================

class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (get/set/ping/aclose only)."""

    def __init__(self) -> None:
        self.data = {}
        self.fail = False
        self.closed = False
        self.last_ex = None

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("No connection available.")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = bytes(value)
        self.last_ex = ex
        return True

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True


class CountingEngine(CvTransformEngine):
    """CvTransformEngine that records how often each stage runs."""

    def __init__(self) -> None:
        self.calls = Counter()

    def load(self, data):
        self.calls["load"] += 1
        return super().load(data)

    def smart_crop(self, image, width, height):
        self.calls["smart_crop"] += 1
        return super().smart_crop(image, width, height)

    def composite(self, image, watermark, opacity, margin, max_ratio):
        self.calls["composite"] += 1
        return super().composite(image, watermark, opacity, margin, max_ratio)

    def encode(self, image, fmt, quality):
        self.calls["encode"] += 1
        return super().encode(image, fmt, quality)


# =============================================================================
# Image Helpers
# =============================================================================

def make_image_bytes(width, height, color=(120, 120, 120), fmt="PNG", mode="RGB", exif=None):
    """Encode a solid-colour image with Pillow."""
    img = Image.new(mode, (width, height), color=color)
    buf = BytesIO()
    if exif is not None:
        img.save(buf, format=fmt, exif=exif)
    else:
        img.save(buf, format=fmt)
    return buf.getvalue()


def make_textured_bytes(width, height, seed=0, fmt="PNG"):
    """Encode a deterministic noise image (gives the saliency map something to find)."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    buf = BytesIO()
    Image.fromarray(pixels, "RGB").save(buf, format=fmt)
    return buf.getvalue()


def decode_size(data):
    with Image.open(BytesIO(data)) as img:
        return img.size


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheClient(fake_redis)


@pytest.fixture
def store(tmp_path):
    content_store = ContentStore(tmp_path / "uploads")
    content_store.ensure_root()
    return content_store


@pytest.fixture
def pool():
    work_pool = CpuWorkPool(workers=2, queue_size=4)
    work_pool.start()
    yield work_pool
    work_pool.shutdown()


@pytest.fixture
def engine():
    return CountingEngine()


@pytest.fixture
def pipeline(store, cache, pool, engine):
    return Pipeline(store=store, cache=cache, pool=pool, engine=engine, max_upload_bytes=4096 * 1024)


@pytest.fixture
def watermark_file(tmp_path):
    path = tmp_path / "watermark.png"
    path.write_bytes(make_image_bytes(60, 60, color=(255, 0, 0, 255), mode="RGBA"))
    return str(path)


@pytest.fixture
def app_settings(tmp_path):
    """Settings pointing at a temporary upload directory."""
    return Settings(
        storage=StorageConfig(upload_dir=str(tmp_path / "uploads")),
        workers=WorkersConfig(count=2, queue_size=4),
        cache=CacheConfig(redis_url="redis://unused/"),
        watermark=WatermarkConfig(),
    )
