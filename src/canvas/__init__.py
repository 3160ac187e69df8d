"""
Canvas
======

On-the-fly image transformation server.

Clients upload an original once and fetch derived renditions by content
hash plus a small parameter set (size, quality, format, watermark,
caption). Renders are memoized in Redis.

Components:
    - storage: Content-addressed store for originals
    - cache: Redis client and cache-key derivation
    - engine: Pillow/OpenCV transform stages and saliency crop
    - workers: Bounded CPU pool for transform work
    - pipeline: Ingest/fetch orchestration
    - main: FastAPI application

Example:
    from canvas.main import create_app

    app = create_app()
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
