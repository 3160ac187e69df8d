"""
Transform Engine
================

Narrow wrapper over Pillow and OpenCV exposing the transform stages.

Stages (always applied in this order by PipelineJob):
    1. load         - decode bytes with Pillow (orientation still pending)
    2. auto_rotate  - apply EXIF orientation, convert to a BGR/BGRA array
    3. fit_resize   - aspect-preserving downscale so the shorter side fits
    4. smart_crop   - exact-size crop of the most salient window
    5. composite / overlay_text - optional watermark and caption
    6. encode       - JPEG or WebP at the requested quality, no metadata

Design Rules:
    - This is the ONLY module that calls into the native image libraries
    - Stateless: every method is a pure function of its arguments
    - Never upscales
    - Every failure surfaces as ProcessingFailed carrying the stage name
"""

import functools
import logging
from io import BytesIO
from typing import Protocol, Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps

from canvas.engine.saliency import attention_map, best_window
from canvas.errors import ProcessingFailed
from canvas.models.params import ImageFormat


logger = logging.getLogger(__name__)


def _stage(name: str):
    """Map any exception raised inside a stage to ProcessingFailed(name)."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except ProcessingFailed:
                raise
            except Exception as e:
                raise ProcessingFailed(name, str(e) or type(e).__name__) from e

        return wrapper

    return decorator


class TransformEngine(Protocol):
    """
    Capability interface over the native image library.

    Implemented by CvTransformEngine; tests wrap it to count invocations.
    """

    def probe(self, data: bytes) -> Tuple[int, int]:
        ...

    def load(self, data: bytes) -> Image.Image:
        ...

    def auto_rotate(self, image: Image.Image) -> np.ndarray:
        ...

    def fit_resize(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        ...

    def smart_crop(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        ...

    def composite(
        self,
        image: np.ndarray,
        watermark: np.ndarray,
        opacity: float,
        margin: int,
        max_ratio: float,
    ) -> np.ndarray:
        ...

    def overlay_text(self, image: np.ndarray, text: str) -> np.ndarray:
        ...

    def encode(self, image: np.ndarray, fmt: ImageFormat, quality: int) -> bytes:
        ...


class CvTransformEngine:
    """
    Pillow + OpenCV implementation of TransformEngine.

    Pillow decodes (it understands EXIF orientation and more container
    formats); everything after auto_rotate works on OpenCV arrays in BGR
    or BGRA channel order.
    """

    @_stage("probe")
    def probe(self, data: bytes) -> Tuple[int, int]:
        """
        Check that `data` is a decodable image without rendering it.

        Returns:
            (width, height) as stored, before orientation
        """
        with Image.open(BytesIO(data)) as img:
            size = img.size
            img.verify()
        return size

    @_stage("load")
    def load(self, data: bytes) -> Image.Image:
        img = Image.open(BytesIO(data))
        img.load()
        return img

    @_stage("auto_rotate")
    def auto_rotate(self, image: Image.Image) -> np.ndarray:
        """
        Apply EXIF orientation and leave Pillow.

        The returned array carries no metadata at all, so the orientation
        tag can never be re-emitted by the encoder.
        """
        upright = ImageOps.exif_transpose(image)

        has_alpha = upright.mode in ("RGBA", "LA", "PA") or (
            upright.mode == "P" and "transparency" in upright.info
        )
        if has_alpha:
            rgba = np.asarray(upright.convert("RGBA"))
            return cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA)

        rgb = np.asarray(upright.convert("RGB"))
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)

    @_stage("fit_resize")
    def fit_resize(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        """
        Downscale so the image covers the (width, height) box.

        The scale factor is the larger of the two per-axis ratios, capped
        at 1.0: the shorter side (relative to the box) lands on the box
        and the longer side may overhang, to be removed by smart_crop.
        """
        h, w = image.shape[:2]
        scale = min(1.0, max(width / w, height / h))
        if scale >= 1.0:
            return image

        new_w = max(1, int(round(w * scale)))
        new_h = max(1, int(round(h * scale)))
        return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)

    @_stage("smart_crop")
    def smart_crop(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        """
        Crop to (width, height), clamped to the image, around the region of
        highest attention.
        """
        h, w = image.shape[:2]
        crop_w = min(width, w)
        crop_h = min(height, h)
        if crop_w == w and crop_h == h:
            return image

        x, y = best_window(attention_map(image), crop_w, crop_h)
        return np.ascontiguousarray(image[y:y + crop_h, x:x + crop_w])

    @_stage("composite")
    def composite(
        self,
        image: np.ndarray,
        watermark: np.ndarray,
        opacity: float,
        margin: int,
        max_ratio: float,
    ) -> np.ndarray:
        """
        Blend a BGRA watermark into the bottom-right corner.

        The watermark is scaled down (never up) to at most `max_ratio` of
        each image dimension and blended with its own alpha times `opacity`.
        """
        h, w = image.shape[:2]
        wm_h, wm_w = watermark.shape[:2]

        limit_w = max(1, int(w * max_ratio))
        limit_h = max(1, int(h * max_ratio))
        scale = min(1.0, limit_w / wm_w, limit_h / wm_h)
        if scale < 1.0:
            watermark = cv2.resize(
                watermark,
                (max(1, int(round(wm_w * scale))), max(1, int(round(wm_h * scale)))),
                interpolation=cv2.INTER_AREA,
            )
            wm_h, wm_w = watermark.shape[:2]

        x = max(0, w - wm_w - margin)
        y = max(0, h - wm_h - margin)
        wm_w = min(wm_w, w - x)
        wm_h = min(wm_h, h - y)
        watermark = watermark[:wm_h, :wm_w]

        alpha = watermark[:, :, 3:4].astype(np.float32) / 255.0 * opacity
        region = image[y:y + wm_h, x:x + wm_w, :3].astype(np.float32)
        mark = watermark[:, :, :3].astype(np.float32)

        out = image.copy()
        if image.shape[2] == 4:
            # Source-over onto a transparent destination
            dst_alpha = image[y:y + wm_h, x:x + wm_w, 3:4].astype(np.float32) / 255.0
            out_alpha = alpha + dst_alpha * (1.0 - alpha)
            safe_alpha = np.where(out_alpha > 0, out_alpha, 1.0)
            blended = (mark * alpha + region * dst_alpha * (1.0 - alpha)) / safe_alpha
            blended = np.where(out_alpha > 0, blended, region)
            out[y:y + wm_h, x:x + wm_w, 3:4] = np.clip(out_alpha * 255.0 + 0.5, 0, 255).astype(np.uint8)
        else:
            blended = region * (1.0 - alpha) + mark * alpha

        out[y:y + wm_h, x:x + wm_w, :3] = np.clip(blended + 0.5, 0, 255).astype(np.uint8)
        return out

    @_stage("overlay_text")
    def overlay_text(self, image: np.ndarray, text: str) -> np.ndarray:
        """
        Draw `text` in the top-left corner over a translucent dark box.

        Hershey fonts cover ASCII only; other characters render as '?'.
        """
        safe = text.encode("ascii", "replace").decode("ascii")
        h, w = image.shape[:2]

        font = cv2.FONT_HERSHEY_SIMPLEX
        scale = max(0.4, min(w, h) / 400.0)
        thickness = max(1, int(round(scale * 1.5)))
        (text_w, text_h), baseline = cv2.getTextSize(safe, font, scale, thickness)
        pad = max(4, int(text_h * 0.4))

        x1, y1 = pad, pad
        x2 = min(w - 1, x1 + text_w + 2 * pad)
        y2 = min(h - 1, y1 + text_h + baseline + 2 * pad)

        canvas = np.ascontiguousarray(image[:, :, :3])
        shaded = canvas.copy()
        cv2.rectangle(shaded, (x1, y1), (x2, y2), (0, 0, 0), thickness=-1)
        canvas = cv2.addWeighted(shaded, 0.5, canvas, 0.5, 0)
        cv2.putText(
            canvas,
            safe,
            (x1 + pad, y1 + pad + text_h),
            font,
            scale,
            (255, 255, 255),
            thickness,
            cv2.LINE_AA,
        )

        if image.shape[2] == 4:
            out = image.copy()
            out[:, :, :3] = canvas
            out[y1:y2 + 1, x1:x2 + 1, 3] = 255
            return out
        return canvas

    @_stage("encode")
    def encode(self, image: np.ndarray, fmt: ImageFormat, quality: int) -> bytes:
        """
        Serialize to JPEG or WebP.

        OpenCV writes pixel data only: no EXIF, XMP, comments or ICC
        profile end up in the output.
        """
        if fmt is ImageFormat.JPEG:
            if image.shape[2] == 4:
                image = _flatten_alpha(image)
            ok, buffer = cv2.imencode(
                ".jpg",
                image,
                [cv2.IMWRITE_JPEG_QUALITY, quality, cv2.IMWRITE_JPEG_OPTIMIZE, 1],
            )
        else:
            ok, buffer = cv2.imencode(".webp", image, [cv2.IMWRITE_WEBP_QUALITY, quality])

        if not ok:
            raise ProcessingFailed("encode", f"cv2.imencode returned False for {fmt.value}")
        return buffer.tobytes()


def _flatten_alpha(image: np.ndarray) -> np.ndarray:
    """Composite a BGRA array onto white."""
    alpha = image[:, :, 3:4].astype(np.float32) / 255.0
    bgr = image[:, :, :3].astype(np.float32)
    flat = bgr * alpha + 255.0 * (1.0 - alpha)
    return np.clip(flat + 0.5, 0, 255).astype(np.uint8)


def load_watermark(engine: TransformEngine, path: str) -> np.ndarray:
    """
    Decode the configured watermark once at startup.

    Returns:
        Upright BGRA array (opaque sources get a solid alpha channel)

    Raises:
        OSError: If the file cannot be read
        ProcessingFailed: If it is not a decodable image
    """
    with open(path, "rb") as f:
        data = f.read()

    image = engine.auto_rotate(engine.load(data))
    if image.shape[2] == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)

    logger.info(f"Watermark loaded from {path}: {image.shape[1]}x{image.shape[0]}")
    return image
