"""
Pipeline Job
============

One render: original bytes + parameters -> encoded bytes.

A PipelineJob is created per cache miss, executed inside the CPU work
pool, and discarded once the request completes. It drives the engine
through the fixed stage sequence; the order is not configurable.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from canvas.engine.transforms import TransformEngine
from canvas.models.params import TransformParams


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatermarkSpec:
    """Decoded watermark plus placement settings."""

    image: np.ndarray
    opacity: float = 0.5
    margin: int = 10
    max_ratio: float = 0.25


@dataclass(frozen=True)
class PipelineJob:
    """
    Ephemeral unit of transform work.

    Attributes:
        original: Raw bytes of the uploaded original
        params: Normalized transform parameters
        watermark: Configured watermark, or None when not configured
    """

    original: bytes
    params: TransformParams
    watermark: Optional[WatermarkSpec] = None

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the image bytes."""
        return f"PipelineJob(original={len(self.original)} bytes, params={self.params!r})"

    def run(self, engine: TransformEngine) -> bytes:
        """
        Execute every stage synchronously.

        Must only be called from a CpuWorkPool worker thread.

        Raises:
            ProcessingFailed: From the first failing stage
        """
        started = time.perf_counter()
        params = self.params

        image = engine.auto_rotate(engine.load(self.original))
        image = engine.fit_resize(image, params.width, params.height)
        image = engine.smart_crop(image, params.width, params.height)

        if params.watermark and self.watermark is not None:
            image = engine.composite(
                image,
                self.watermark.image,
                self.watermark.opacity,
                self.watermark.margin,
                self.watermark.max_ratio,
            )
        if params.overlay_text:
            image = engine.overlay_text(image, params.overlay_text)

        encoded = engine.encode(image, params.format, params.quality)

        logger.debug(
            f"Rendered {image.shape[1]}x{image.shape[0]} {params.format.value} "
            f"q={params.quality} in {(time.perf_counter() - started) * 1000:.1f}ms"
        )
        return encoded
