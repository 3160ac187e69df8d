"""
Workers Module
==============

CPU-bound execution isolated from the asyncio event loop.
"""

from canvas.workers.pool import CpuWorkPool, default_worker_count

__all__ = [
    "CpuWorkPool",
    "default_worker_count",
]
