"""Cancellable delayed-task schedulers.

The history manager and the write buffer never touch a timer primitive
directly; they ask a scheduler to run a callback after a delay and keep the
returned handle so the call can be re-armed. Work that has to await (a
buffered persistence write) is handed to `spawn`. `AsyncioScheduler` runs on
the event loop, `ManualScheduler` runs on a virtual clock advanced explicitly
(tests, replays).
"""

import asyncio
import heapq
import itertools
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Set, Tuple

from canvas.shape import now_ms

logger = logging.getLogger(__name__)


class TaskHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TaskHandle: ...

    def spawn(self, coro: Awaitable[None]) -> None: ...

    def now(self) -> int: ...


class AsyncioScheduler:
    """Schedules on the running asyncio loop; the clock is wall time in ms."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay_ms / 1000.0, callback)

    def spawn(self, coro: Awaitable[None]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        # The loop only keeps weak references to tasks.
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())

    def now(self) -> int:
        return now_ms()


class _ManualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual clock. Nothing runs until `advance()` moves time forward.

    Tasks due at the same instant run in the order they were scheduled.
    Spawned coroutines wait in a queue until `run_spawned()` awaits them.
    """

    def __init__(self, start_ms: int = 0):
        self._now = start_ms
        self._seq = itertools.count()
        self._queue: List[Tuple[int, int, _ManualHandle, Callable[[], None]]] = []
        self._spawned: List[Awaitable[None]] = []

    def now(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle()
        heapq.heappush(self._queue, (self._now + delay_ms, next(self._seq), handle, callback))
        return handle

    def spawn(self, coro: Awaitable[None]) -> None:
        self._spawned.append(coro)

    async def run_spawned(self) -> int:
        """Awaits every spawned coroutine in spawn order. Returns how many ran."""
        ran = 0
        while self._spawned:
            await self._spawned.pop(0)
            ran += 1
        return ran

    def advance(self, delta_ms: int) -> int:
        """Moves the clock forward, firing due tasks. Returns how many ran."""
        target = self._now + delta_ms
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            self._now = due
            if handle.cancelled:
                continue
            callback()
            ran += 1
        self._now = target
        return ran

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    @property
    def pending_spawned(self) -> int:
        return len(self._spawned)
