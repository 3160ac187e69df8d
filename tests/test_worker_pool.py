"""
CPU Work Pool Tests
===================
"""

import asyncio
import threading
import time

import pytest

from canvas.workers.pool import CpuWorkPool, default_worker_count


class TestCpuWorkPool:
    """Tests for bounded, off-loop execution."""

    def test_default_size_is_cpu_count(self):
        pool = CpuWorkPool()
        assert pool.workers == default_worker_count()
        assert pool.workers >= 1

    def test_invalid_sizes(self):
        with pytest.raises(ValueError):
            CpuWorkPool(workers=0)
        with pytest.raises(ValueError):
            CpuWorkPool(workers=1, queue_size=-1)

    @pytest.mark.asyncio
    async def test_runs_off_the_event_loop_thread(self, pool):
        loop_thread = threading.get_ident()

        worker_thread, name = await pool.submit(
            lambda: (threading.get_ident(), threading.current_thread().name)
        )

        assert worker_thread != loop_thread
        assert name.startswith("canvas-cpu")

    @pytest.mark.asyncio
    async def test_exceptions_propagate(self, pool):
        def boom():
            raise ValueError("bad job")

        with pytest.raises(ValueError, match="bad job"):
            await pool.submit(boom)
        assert pool.metrics()["failed"] == 1
        assert pool.in_flight == 0

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_workers(self):
        pool = CpuWorkPool(workers=2, queue_size=1)
        pool.start()

        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        def job(i):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.05)
            with lock:
                state["active"] -= 1
            return i

        try:
            results = await asyncio.gather(*(pool.submit(job, i) for i in range(8)))
        finally:
            pool.shutdown()

        assert results == list(range(8))
        assert state["peak"] <= 2
        assert pool.metrics()["completed"] == 8

    @pytest.mark.asyncio
    async def test_admission_is_bounded(self):
        pool = CpuWorkPool(workers=1, queue_size=1)
        pool.start()
        release = threading.Event()

        try:
            tasks = [asyncio.create_task(pool.submit(release.wait, 5)) for _ in range(3)]
            await asyncio.sleep(0.1)

            # Two admitted (one running, one queued); the third waits for a slot
            assert pool.in_flight == 2

            release.set()
            assert await asyncio.gather(*tasks) == [True, True, True]
        finally:
            release.set()
            pool.shutdown()

    @pytest.mark.asyncio
    async def test_cancelled_caller_leaves_job_running(self):
        pool = CpuWorkPool(workers=1, queue_size=0)
        pool.start()
        finished = threading.Event()

        def slow():
            time.sleep(0.1)
            finished.set()
            return "done"

        try:
            task = asyncio.create_task(pool.submit(slow))
            await asyncio.sleep(0.02)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            # The slot is freed once the job completes
            assert await pool.submit(lambda: "next") == "next"
            assert finished.is_set()
        finally:
            pool.shutdown()

    @pytest.mark.asyncio
    async def test_submit_requires_start(self):
        pool = CpuWorkPool(workers=1)
        with pytest.raises(RuntimeError):
            await pool.submit(lambda: None)

        pool.start()
        pool.shutdown()
        with pytest.raises(RuntimeError):
            await pool.submit(lambda: None)
