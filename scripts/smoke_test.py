#!/usr/bin/env python3
"""
Canvas Smoke Test Script
========================

Standalone script that exercises a running Canvas server over HTTP.

This script:
    1. Checks /health
    2. Uploads a generated image (or one from disk)
    3. Fetches a handful of transforms, twice each, and checks the cache
    4. Reports request latencies and the server's /metrics

Prerequisites:
    - Canvas must be running at the configured URL (with Redis for cache hits)
    - Install test dependencies: pip install -e ".[test]"

Usage:
    python scripts/smoke_test.py
    python scripts/smoke_test.py --url http://localhost:3000 --image photo.jpg
"""

import argparse
import logging
import os
import sys
import time
from io import BytesIO
from typing import Optional

import numpy as np
import requests
from PIL import Image


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


TRANSFORMS = [
    {"width": 100, "height": 100, "format": "jpeg", "quality": 50},
    {"width": 640, "height": 360},
    {"width": 300, "height": 300, "watermark": ""},
    {"width": 400, "height": 200, "overlay": "Smoke test"},
]


def _sample_image(path: Optional[str]) -> bytes:
    if path:
        with open(path, "rb") as f:
            return f.read()

    rng = np.random.default_rng(0)
    pixels = rng.integers(0, 256, size=(720, 1280, 3), dtype=np.uint8)
    buf = BytesIO()
    Image.fromarray(pixels, "RGB").save(buf, format="PNG")
    return buf.getvalue()


def run_test(url: str, image_path: Optional[str], timeout: float) -> bool:
    """
    Run the smoke test.

    Args:
        url: Base URL of the Canvas server
        image_path: Optional image to upload instead of a generated one
        timeout: Per-request timeout in seconds

    Returns:
        True when every check passed
    """
    logger.info("=" * 60)
    logger.info("Canvas Smoke Test")
    logger.info("=" * 60)
    logger.info(f"Server URL: {url}")

    failures = 0
    session = requests.Session()

    response = session.get(f"{url}/health", timeout=timeout)
    if response.status_code != 200 or response.json() != {"ok": True}:
        logger.error(f"Health check failed: {response.status_code} {response.text}")
        return False
    logger.info("Health: ok")

    data = _sample_image(image_path)
    response = session.post(
        f"{url}/images",
        files={"image": ("smoke.png", data, "application/octet-stream")},
        timeout=timeout,
    )
    if response.status_code != 200:
        logger.error(f"Upload failed: {response.status_code} {response.text}")
        return False
    digest = response.json()["hash"]
    logger.info(f"Uploaded {len(data)} bytes -> {digest}")

    for params in TRANSFORMS:
        timings = []
        cache_states = []
        for _ in range(2):
            started = time.perf_counter()
            response = session.get(f"{url}/images/{digest}", params=params, timeout=timeout)
            timings.append((time.perf_counter() - started) * 1000)
            cache_states.append(response.headers.get("X-Cache"))

            if response.status_code != 200:
                logger.error(f"  {params}: {response.status_code} {response.text}")
                failures += 1
                break
        else:
            with Image.open(BytesIO(response.content)) as img:
                size = img.size
            logger.info(
                f"  {params} -> {response.headers['Content-Type']} {size[0]}x{size[1]} "
                f"cache={'/'.join(str(s) for s in cache_states)} "
                f"latency={timings[0]:.0f}ms/{timings[1]:.0f}ms"
            )
            if cache_states[1] != "HIT":
                logger.warning("  Second fetch was not a cache hit (is Redis running?)")

    response = session.get(f"{url}/images/{'0' * 64}", timeout=timeout)
    if response.status_code != 404:
        logger.error(f"Unknown hash returned {response.status_code}, expected 404")
        failures += 1

    metrics = session.get(f"{url}/metrics", timeout=timeout).json()

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Cache: {metrics['cache']}")
    logger.info(f"Workers: {metrics['workers']}")
    logger.info(f"Pipeline: {metrics['pipeline']}")
    logger.info("=" * 60)

    if failures == 0:
        logger.info("TEST PASSED")
    else:
        logger.error(f"TEST FAILED - {failures} check(s) failed")

    return failures == 0


def main():
    parser = argparse.ArgumentParser(
        description="Smoke test for a running Canvas server"
    )
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("CANVAS_URL", "http://localhost:3000"),
        help="Base URL of the Canvas server",
    )
    parser.add_argument(
        "--image",
        type=str,
        default=None,
        help="Image file to upload (default: generated noise image)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Per-request timeout in seconds (default: 30)",
    )

    args = parser.parse_args()

    ok = run_test(url=args.url.rstrip("/"), image_path=args.image, timeout=args.timeout)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
