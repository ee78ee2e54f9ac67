"""Advisory per-shape locks.

Lock state is two ordinary shape fields, `locked_by` and `locked_at`, written
through the same persistence service (and echoed over the same channel) as
every other field. There is no lock table and no lock server.

Limitations:
- Advisory only. Nothing here stops a writer that ignores the convention from
  mutating a shape it does not hold.
- acquire() is read-then-write. Two actors can both read "unlocked" before
  either write lands; both then believe they hold the lock and the write that
  reaches the store last decides who actually does. Closing that gap would
  need an arbiter on the server side.
"""

import logging
from typing import Callable, Optional

from canvas.shape import Shape, now_ms

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_MS = 30 * 1000


class LockCoordinator:
    def __init__(self, persistence, clock: Optional[Callable[[], int]] = None, timeout_ms: int = LOCK_TIMEOUT_MS):
        self._persistence = persistence
        self._clock = clock or now_ms
        self.timeout_ms = timeout_ms

    def is_expired(self, locked_at: Optional[int]) -> bool:
        if locked_at is None:
            return True
        return self._clock() - locked_at > self.timeout_ms

    def is_locked_by_other(self, shape: Shape, actor_id: str) -> bool:
        """Local check against a shape snapshot; no remote read."""
        holder = shape.get("locked_by")
        if not holder or holder == actor_id:
            return False
        return not self.is_expired(shape.get("locked_at"))

    async def acquire(self, shape_id: str, actor_id: str) -> bool:
        """
        Grants the lock when the shape is unlocked, already held by `actor_id`,
        or held by someone whose lock has expired. Returns False otherwise and
        writes nothing.
        """
        shape = await self._persistence.fetch_shape(shape_id)
        if shape is None:
            logger.warning("Cannot acquire lock - shape not found: %s", shape_id)
            return False

        if self.is_locked_by_other(shape, actor_id):
            logger.warning("Lock denied - shape %s is locked by %s", shape_id, shape.get("locked_by"))
            return False

        if shape.get("locked_by") and shape.get("locked_by") != actor_id:
            logger.info("Lock on shape %s held by %s expired", shape_id, shape.get("locked_by"))

        await self._persistence.update_shape(shape_id, {"locked_by": actor_id, "locked_at": self._clock()})
        logger.info("Lock acquired on shape %s by %s", shape_id, actor_id)
        return True

    async def release(self, shape_id: str, actor_id: Optional[str] = None) -> bool:
        """
        Clears the lock fields. With `actor_id` the clear only happens when that
        actor holds the lock; without it the clear is unconditional.
        """
        shape = await self._persistence.fetch_shape(shape_id)
        if shape is None:
            logger.warning("Cannot release lock - shape not found: %s", shape_id)
            return False

        if actor_id is not None and shape.get("locked_by") != actor_id:
            logger.warning(
                "Cannot release lock - shape %s is locked by %s, not %s",
                shape_id,
                shape.get("locked_by"),
                actor_id,
            )
            return False

        await self._persistence.update_shape(shape_id, {"locked_by": None, "locked_at": None})
        logger.info("Lock released on shape %s", shape_id)
        return True
