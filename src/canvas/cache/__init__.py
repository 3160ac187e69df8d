"""
Cache Module
============

Redis-backed memoization of rendered images.

Components:
    - CacheClient: Pooled, best-effort get/set by bytes key
    - derive_cache_key: Deterministic key for (hash, parameters)
"""

from canvas.cache.client import CacheClient, CacheMetrics
from canvas.cache.keys import derive_cache_key, etag_for

__all__ = [
    "CacheClient",
    "CacheMetrics",
    "derive_cache_key",
    "etag_for",
]
