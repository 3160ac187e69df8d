"""
CPU Work Pool
=============

Bounded thread pool for CPU-bound transform work.

This module provides the CpuWorkPool class, which is the only place
transform stages execute. The asyncio event loop hands jobs off here and
awaits the result, so image processing never blocks request dispatch.

Design Rules:
    - Fixed worker count, established at startup (default: CPU count)
    - At most `workers + queue_size` jobs admitted; further callers wait
    - Native libraries run single-threaded inside each worker so pool
      parallelism is the only parallelism
    - Jobs are never interrupted; a cancelled caller leaves its job running

Pillow and OpenCV release the GIL inside their native routines, which is
what makes threads (rather than processes) sufficient here.
"""

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar

import cv2


logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_worker_count() -> int:
    """Number of CPU cores available to this process."""
    if hasattr(os, "sched_getaffinity"):
        return max(1, len(os.sched_getaffinity(0)))
    return max(1, os.cpu_count() or 1)


def _init_worker() -> None:
    cv2.setNumThreads(1)


class CpuWorkPool:
    """
    Fixed-size worker pool with a bounded admission queue.

    Attributes:
        workers: Number of worker threads
        queue_size: Jobs allowed to wait for a free worker

    Example:
        pool = CpuWorkPool(workers=4, queue_size=16)
        pool.start()

        result = await pool.submit(job.run, engine)

        pool.shutdown()
    """

    def __init__(self, workers: Optional[int] = None, queue_size: int = 64) -> None:
        """
        Initialize work pool.

        Args:
            workers: Worker threads. None = CPU count. Must be >= 1.
            queue_size: Waiting jobs allowed beyond the running ones. Must be >= 0.
        """
        workers = workers if workers is not None else default_worker_count()
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_size < 0:
            raise ValueError("queue_size must be >= 0")

        self.workers = workers
        self.queue_size = queue_size

        self._executor: Optional[ThreadPoolExecutor] = None
        self._slots: Optional[asyncio.Semaphore] = None
        self._in_flight: int = 0
        self._completed: int = 0
        self._failed: int = 0

    @property
    def capacity(self) -> int:
        """Maximum number of admitted (running + queued) jobs."""
        return self.workers + self.queue_size

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        """Create the worker threads."""
        if self._executor is not None:
            return

        self._executor = ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix="canvas-cpu",
            initializer=_init_worker,
        )
        self._slots = asyncio.Semaphore(self.capacity)
        logger.info(f"Starting {self.workers} workers (queue_size={self.queue_size})")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for running jobs."""
        if self._executor is None:
            return

        executor = self._executor
        self._executor = None
        executor.shutdown(wait=wait)
        logger.info(
            f"CpuWorkPool stopped: completed={self._completed}, failed={self._failed}"
        )

    async def submit(self, fn: Callable[..., T], *args: Any) -> T:
        """
        Run `fn(*args)` on a worker thread and await its result.

        Waits for an admission slot when the pool is saturated.

        Raises:
            RuntimeError: If the pool is not running
            Exception: Whatever `fn` raises
        """
        if self._executor is None or self._slots is None:
            raise RuntimeError("CpuWorkPool is not running")

        slots = self._slots
        await slots.acquire()

        executor = self._executor
        if executor is None:
            slots.release()
            raise RuntimeError("CpuWorkPool is not running")

        loop = asyncio.get_running_loop()
        self._in_flight += 1
        future = loop.run_in_executor(executor, fn, *args)
        try:
            result = await asyncio.shield(future)
        except asyncio.CancelledError:
            # The worker keeps going; its slot is freed when it finishes
            future.add_done_callback(lambda f: self._finish(f, slots))
            raise
        except Exception:
            self._finish(future, slots)
            raise

        self._finish(future, slots)
        return result

    def _finish(self, future: asyncio.Future, slots: asyncio.Semaphore) -> None:
        self._in_flight -= 1
        if future.cancelled() or future.exception() is not None:
            self._failed += 1
        else:
            self._completed += 1
        slots.release()

    def metrics(self) -> dict:
        """
        Get pool metrics for observability.

        Returns:
            Dict with workers, capacity, in_flight, completed, failed
        """
        return {
            "workers": self.workers,
            "capacity": self.capacity,
            "in_flight": self._in_flight,
            "completed": self._completed,
            "failed": self._failed,
        }
