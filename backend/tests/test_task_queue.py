"""
Tests for the serialization primitives: per-ticket FIFO lanes, the global
egress limiter and tracked background tasks.
"""

import asyncio

import pytest

from services.task_queue import BackgroundTasks, EgressQueue, ResourceQueue


class TestResourceQueue:
    @pytest.mark.asyncio
    async def test_same_key_runs_in_submission_order(self):
        queue = ResourceQueue("test")
        order = []

        async def job(label, delay):
            await asyncio.sleep(delay)
            order.append(label)

        await asyncio.gather(
            queue.run(1, lambda: job("a", 0.03)),
            queue.run(1, lambda: job("b", 0.0)),
            queue.run(1, lambda: job("c", 0.01)),
        )

        assert order == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_different_keys_run_in_parallel(self):
        queue = ResourceQueue("test")
        running = []
        peak = 0

        async def job():
            nonlocal peak
            running.append(1)
            peak = max(peak, len(running))
            await asyncio.sleep(0.01)
            running.pop()

        await asyncio.gather(*(queue.run(key, job) for key in range(3)))

        assert peak == 3

    @pytest.mark.asyncio
    async def test_lane_dropped_when_idle(self):
        queue = ResourceQueue("test")
        gate = asyncio.Event()

        async def job():
            await gate.wait()

        first = asyncio.ensure_future(queue.run(7, job))
        second = asyncio.ensure_future(queue.run(7, job))
        await asyncio.sleep(0)

        assert len(queue) == 1
        assert queue.pending(7) == 2

        gate.set()
        await asyncio.gather(first, second)

        assert len(queue) == 0
        assert queue.pending(7) == 0

    @pytest.mark.asyncio
    async def test_failure_propagates_and_lane_continues(self):
        queue = ResourceQueue("test")

        async def boom():
            raise RuntimeError("boom")

        async def ok():
            return "done"

        with pytest.raises(RuntimeError):
            await queue.run(1, boom)

        assert await queue.run(1, ok) == "done"
        assert len(queue) == 0


class TestEgressQueue:
    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        egress = EgressQueue(concurrency=2, rate_limit=100, interval=1.0)
        peak = 0

        async def call():
            nonlocal peak
            peak = max(peak, egress.in_flight)
            await asyncio.sleep(0.01)

        await asyncio.gather(*(egress.run(call) for _ in range(6)))

        assert peak == 2
        assert egress.in_flight == 0

    @pytest.mark.asyncio
    async def test_rate_window_delays_excess_calls(self):
        egress = EgressQueue(concurrency=10, rate_limit=2, interval=0.05)
        loop = asyncio.get_running_loop()
        started = []

        async def call():
            started.append(loop.time())

        begin = loop.time()
        await asyncio.gather(*(egress.run(call) for _ in range(3)))

        assert len(started) == 3
        # Third start had to wait for the window to slide
        assert started[2] - begin >= 0.04

    @pytest.mark.asyncio
    async def test_returns_result(self):
        egress = EgressQueue(concurrency=1, rate_limit=1, interval=0.01)

        async def call():
            return 42

        assert await egress.run(call) == 42


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_drain_waits_for_tasks(self):
        tasks = BackgroundTasks()
        done = []

        async def work():
            await asyncio.sleep(0.01)
            done.append(True)

        tasks.spawn(work(), name="work")
        assert len(tasks) == 1

        assert await tasks.drain(timeout=1) is True
        assert done == [True]
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_drain_reports_timeout(self):
        tasks = BackgroundTasks()
        gate = asyncio.Event()
        task = tasks.spawn(gate.wait(), name="stuck")

        assert await tasks.drain(timeout=0.01) is False

        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        tasks = BackgroundTasks()

        async def boom():
            raise ValueError("bad payload")

        task = tasks.spawn(boom(), name="boom")
        await asyncio.wait({task})
        await asyncio.sleep(0)

        assert len(tasks) == 0
        assert "Background task boom failed: bad payload" in caplog.text

    @pytest.mark.asyncio
    async def test_drain_with_nothing_running(self):
        assert await BackgroundTasks().drain(timeout=0) is True
