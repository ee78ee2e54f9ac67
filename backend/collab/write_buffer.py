"""Debounced, batched persistence writes for high-frequency gestures.

Drag frames and arrow-key nudges change the local store on every call but only
reach the persistence service once per flush window: partial updates are
merged per shape and written as batches of at most `batch_size` shapes.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from canvas.shape import ShapePartial

from .scheduler import Scheduler, TaskHandle

logger = logging.getLogger(__name__)

WRITE_FLUSH_MS = 100
BATCH_SIZE = 500

BatchWriter = Callable[[Dict[str, ShapePartial]], Awaitable[None]]


class WriteBuffer:
    def __init__(
        self,
        write: BatchWriter,
        scheduler: Scheduler,
        flush_ms: int = WRITE_FLUSH_MS,
        batch_size: int = BATCH_SIZE,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._write = write
        self._scheduler = scheduler
        self.flush_ms = flush_ms
        self.batch_size = batch_size
        self._pending: Dict[str, ShapePartial] = {}
        self._handle: Optional[TaskHandle] = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add(self, shape_id: str, fields: ShapePartial) -> None:
        """Merges `fields` into the pending write for `shape_id`.

        The first add after a flush arms the timer; later adds ride along
        with it, so a long drag still writes every `flush_ms`.
        """
        self._pending[shape_id] = {**self._pending.get(shape_id, {}), **fields}
        if self._handle is None:
            self._handle = self._scheduler.call_later(self.flush_ms, self._on_timer)

    def _on_timer(self) -> None:
        self._handle = None
        self._scheduler.spawn(self.flush())

    async def flush(self) -> int:
        """Writes everything pending now. Returns the number of shapes written."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if not self._pending:
            return 0

        pending, self._pending = self._pending, {}
        items = list(pending.items())
        for start in range(0, len(items), self.batch_size):
            await self._write(dict(items[start:start + self.batch_size]))
        logger.debug("Flushed buffered writes for %d shapes", len(items))
        return len(items)
