"""
Engine Module
=============

Image transform primitives.

Components:
    - TransformEngine: Protocol for the native-library wrapper
    - CvTransformEngine: Pillow + OpenCV implementation
    - load_watermark: Decode the watermark image at startup
    - attention_map / best_window: Saliency scoring for smart crop
"""

from canvas.engine.saliency import attention_map, best_window
from canvas.engine.transforms import CvTransformEngine, TransformEngine, load_watermark

__all__ = [
    "TransformEngine",
    "CvTransformEngine",
    "load_watermark",
    "attention_map",
    "best_window",
]
