"""
Attention-based Crop Selection
==============================

Scores every pixel by visual interest and finds the crop window that
captures the most of it.

Attention map (per pixel, roughly 0..3):
    - edge energy: absolute Laplacian of the luminance, scaled to 0..1
    - saturation: HSV saturation, scaled to 0..1
    - skin tone: 1.0 inside a YCrCb skin range, else 0.0

Window sums come from an integral image, so evaluating every candidate
position costs O(H * W) regardless of the window size. Among equally good
windows the one closest to the image centre wins, which makes flat
images crop centrally.
"""

from typing import Tuple

import cv2
import numpy as np


EDGE_WEIGHT = 1.0
SATURATION_WEIGHT = 0.5
SKIN_WEIGHT = 1.0

# YCrCb skin range (Chai & Ngan)
_SKIN_LOWER = np.array([0, 133, 77], dtype=np.uint8)
_SKIN_UPPER = np.array([255, 173, 127], dtype=np.uint8)


def attention_map(image: np.ndarray) -> np.ndarray:
    """
    Compute a float32 interest score for every pixel.

    Args:
        image: BGR or BGRA uint8 array

    Returns:
        (H, W) float32 array
    """
    bgr = image[:, :, :3] if image.ndim == 3 else cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    bgr = np.ascontiguousarray(bgr)

    gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
    edges = np.abs(cv2.Laplacian(gray, cv2.CV_32F, ksize=3))
    edges = np.minimum(edges / 255.0, 1.0)

    hsv = cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV)
    saturation = hsv[:, :, 1].astype(np.float32) / 255.0

    ycrcb = cv2.cvtColor(bgr, cv2.COLOR_BGR2YCrCb)
    skin = cv2.inRange(ycrcb, _SKIN_LOWER, _SKIN_UPPER).astype(np.float32) / 255.0

    score = EDGE_WEIGHT * edges + SATURATION_WEIGHT * saturation + SKIN_WEIGHT * skin

    if image.ndim == 3 and image.shape[2] == 4:
        # Transparent pixels carry no interest
        score *= image[:, :, 3].astype(np.float32) / 255.0

    return score.astype(np.float32)


def best_window(score: np.ndarray, width: int, height: int) -> Tuple[int, int]:
    """
    Find the top-left corner of the most interesting window.

    Args:
        score: (H, W) interest map
        width: Window width, 1 <= width <= W
        height: Window height, 1 <= height <= H

    Returns:
        (x, y) of the selected window
    """
    h, w = score.shape[:2]
    if not (1 <= width <= w and 1 <= height <= h):
        raise ValueError(f"window {width}x{height} does not fit in {w}x{h}")

    if width == w and height == h:
        return 0, 0

    ii = cv2.integral(np.ascontiguousarray(score, dtype=np.float32), sdepth=cv2.CV_64F)

    sums = (
        ii[height:h + 1, width:w + 1]
        - ii[0:h + 1 - height, width:w + 1]
        - ii[height:h + 1, 0:w + 1 - width]
        + ii[0:h + 1 - height, 0:w + 1 - width]
    )

    best = float(sums.max())
    tolerance = max(abs(best), 1.0) * 1e-6
    candidates = np.argwhere(sums >= best - tolerance)

    center_y = (h - height) / 2.0
    center_x = (w - width) / 2.0
    distances = (candidates[:, 0] - center_y) ** 2 + (candidates[:, 1] - center_x) ** 2
    y, x = candidates[int(np.argmin(distances))]

    return int(x), int(y)
