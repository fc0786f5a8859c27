"""
Task serialization primitives.

- ResourceQueue: one FIFO lane per key (ticket id), concurrency 1, created
  lazily and dropped once idle.
- EgressQueue: bounded concurrency plus a sliding-window rate cap that
  every Discord call passes through.
- BackgroundTasks: spawned fire-and-forget work that is tracked, logged on
  failure and drained on shutdown.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Hashable, Optional, Set

logger = logging.getLogger(__name__)


class _Lane:
    __slots__ = ("lock", "pending")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.pending = 0


class ResourceQueue:
    """Per-resource FIFO. Different keys run fully in parallel."""

    def __init__(self, name: str = "resource"):
        self.name = name
        self._lanes: Dict[Hashable, _Lane] = {}

    def __len__(self) -> int:
        return len(self._lanes)

    def pending(self, key: Hashable) -> int:
        lane = self._lanes.get(key)
        return lane.pending if lane else 0

    async def run(
        self, key: Hashable, func: Callable[[], Awaitable[Any]]
    ) -> Any:
        lane = self._lanes.get(key)
        if lane is None:
            lane = self._lanes[key] = _Lane()
        lane.pending += 1
        try:
            # asyncio.Lock wakes waiters in FIFO order
            async with lane.lock:
                try:
                    return await func()
                except Exception as e:
                    logger.error(
                        f"[{self.name}:{key}] Queued task failed: {e}",
                        exc_info=True,
                    )
                    raise
        finally:
            lane.pending -= 1
            if lane.pending == 0 and self._lanes.get(key) is lane:
                del self._lanes[key]


class EgressQueue:
    """At most `concurrency` calls in flight and at most `rate_limit`
    call starts in any `interval` seconds."""

    def __init__(
        self,
        concurrency: int,
        rate_limit: int,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.concurrency = concurrency
        self.rate_limit = rate_limit
        self.interval = interval
        self._clock = clock
        self._semaphore = asyncio.Semaphore(concurrency)
        self._window_lock = asyncio.Lock()
        self._starts: Deque[float] = deque()
        self.in_flight = 0

    async def _acquire_rate_slot(self) -> None:
        async with self._window_lock:
            while True:
                now = self._clock()
                while self._starts and now - self._starts[0] >= self.interval:
                    self._starts.popleft()
                if len(self._starts) < self.rate_limit:
                    self._starts.append(now)
                    return
                await asyncio.sleep(self.interval - (now - self._starts[0]))

    async def run(self, func: Callable[[], Awaitable[Any]]) -> Any:
        async with self._semaphore:
            await self._acquire_rate_slot()
            self.in_flight += 1
            try:
                return await func()
            finally:
                self.in_flight -= 1


class BackgroundTasks:
    """Holds strong references to spawned tasks and logs their failures."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(
        self, coro: Awaitable[Any], name: Optional[str] = None
    ) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {error}",
                exc_info=error,
            )

    async def drain(self, timeout: float) -> bool:
        """Wait for in-flight tasks. Returns False if some are still
        running when the timeout expires (they are left to finish)."""
        if not self._tasks:
            return True
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(
                f"{len(pending)} background task(s) still running "
                "after shutdown drain"
            )
        return not pending
