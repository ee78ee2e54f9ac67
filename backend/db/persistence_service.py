"""Persistence services: the shared document store plus its real-time channel.

Every write is broadcast to every subscriber (the writer's own engine
included) as a batch of ChangeEvents. Subscribers receive their own copies of
the shape records.

Two implementations:
- InMemoryPersistenceService: dict-backed, for tests and single-process demos.
- SqlPersistenceService: SQLAlchemy-backed via ShapeRepository. Repository
  calls run in a worker thread so the event loop keeps serving other sessions.
Broadcast is in-process for both.
"""

import copy
import logging
from typing import Callable, Dict, List, Optional, Protocol

from fastapi.concurrency import run_in_threadpool

from canvas.shape import ChangeEvent, ChangeKind, Shape, ShapePartial, now_ms

from .shape_repository import ShapeRepository

logger = logging.getLogger(__name__)

ShapeListener = Callable[[List[ChangeEvent]], None]


class PersistenceError(Exception):
    """
    Raised when the store cannot carry out a write (e.g. updating a missing shape).
    """
    pass


class PersistenceService(Protocol):
    async def create_shape(self, shape: Shape) -> str: ...

    async def update_shape(self, shape_id: str, fields: ShapePartial) -> None: ...

    async def update_shapes(self, updates: Dict[str, ShapePartial]) -> List[str]: ...

    async def delete_shape(self, shape_id: str) -> None: ...

    async def fetch_all_shapes(self) -> List[Shape]: ...

    async def fetch_shape(self, shape_id: str) -> Optional[Shape]: ...

    def subscribe_to_shapes(self, callback: ShapeListener) -> Callable[[], None]: ...


class _Broadcaster:
    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or now_ms
        self._listeners: List[ShapeListener] = []

    def _snapshot(self) -> List[Shape]:
        raise NotImplementedError

    def subscribe_to_shapes(self, callback: ShapeListener) -> Callable[[], None]:
        """
        Registers `callback` and immediately delivers one ADDED batch with every
        existing shape, like a document snapshot listener does.
        """
        self._listeners.append(callback)
        existing = self._snapshot()
        if existing:
            callback([ChangeEvent(ChangeKind.ADDED, s) for s in existing])

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, kind: ChangeKind, shape: Shape) -> None:
        self._emit_batch(kind, [shape])

    def _emit_batch(self, kind: ChangeKind, shapes: List[Shape]) -> None:
        if not shapes:
            return
        logger.debug("Broadcasting %s for %d shapes to %d listeners", kind.value, len(shapes), len(self._listeners))
        for listener in list(self._listeners):
            listener([ChangeEvent(kind, copy.deepcopy(shape)) for shape in shapes])

    def _stamp(self, fields: ShapePartial) -> ShapePartial:
        # Updates always bump last_modified_at unless the caller sets it.
        stamped = dict(fields)
        stamped.setdefault("last_modified_at", self._clock())
        return stamped


class InMemoryPersistenceService(_Broadcaster):
    def __init__(self, clock: Optional[Callable[[], int]] = None):
        super().__init__(clock)
        self._shapes: Dict[str, Shape] = {}

    def _snapshot(self) -> List[Shape]:
        return [copy.deepcopy(s) for s in self._shapes.values()]

    def _merge(self, shape_id: str, fields: ShapePartial) -> Shape:
        merged = {**self._shapes[shape_id], **copy.deepcopy(self._stamp(fields)), "id": shape_id}
        self._shapes[shape_id] = merged
        return merged

    async def create_shape(self, shape: Shape) -> str:
        shape = copy.deepcopy(shape)
        existed = shape["id"] in self._shapes
        self._shapes[shape["id"]] = shape
        self._emit(ChangeKind.MODIFIED if existed else ChangeKind.ADDED, shape)
        return shape["id"]

    async def update_shape(self, shape_id: str, fields: ShapePartial) -> None:
        if shape_id not in self._shapes:
            raise PersistenceError(f"Failed to update shape: '{shape_id}' does not exist")
        self._emit(ChangeKind.MODIFIED, self._merge(shape_id, fields))

    async def update_shapes(self, updates: Dict[str, ShapePartial]) -> List[str]:
        """
        Batch update, broadcast as one event batch. Ids that no longer exist
        are skipped and returned.
        """
        skipped = [shape_id for shape_id in updates if shape_id not in self._shapes]
        merged = [self._merge(shape_id, fields) for shape_id, fields in updates.items() if shape_id not in skipped]
        if skipped:
            logger.debug("Batch update skipped missing shapes: %s", skipped)
        self._emit_batch(ChangeKind.MODIFIED, merged)
        return skipped

    async def delete_shape(self, shape_id: str) -> None:
        removed = self._shapes.pop(shape_id, None)
        if removed is not None:
            self._emit(ChangeKind.REMOVED, removed)

    async def fetch_all_shapes(self) -> List[Shape]:
        return self._snapshot()

    async def fetch_shape(self, shape_id: str) -> Optional[Shape]:
        shape = self._shapes.get(shape_id)
        return copy.deepcopy(shape) if shape is not None else None


class SqlPersistenceService(_Broadcaster):
    """Shapes live in the `shapes` table; each call uses its own DB session."""

    def __init__(self, session_factory, clock: Optional[Callable[[], int]] = None):
        super().__init__(clock)
        self._session_factory = session_factory

    def _repository_call(self, fn):
        db = self._session_factory()
        try:
            return fn(ShapeRepository(db))
        finally:
            db.close()

    async def _run(self, fn):
        # Broadcasts stay on the loop thread; only the DB work moves.
        return await run_in_threadpool(self._repository_call, fn)

    def _snapshot(self) -> List[Shape]:
        return self._repository_call(lambda repo: repo.list_all())

    async def create_shape(self, shape: Shape) -> str:
        created = await self._run(lambda repo: repo.put(shape))
        self._emit(ChangeKind.ADDED if created else ChangeKind.MODIFIED, shape)
        return shape["id"]

    async def update_shape(self, shape_id: str, fields: ShapePartial) -> None:
        stamped = self._stamp(fields)
        merged = await self._run(lambda repo: repo.update(shape_id, stamped))
        if merged is None:
            raise PersistenceError(f"Failed to update shape: '{shape_id}' does not exist")
        self._emit(ChangeKind.MODIFIED, merged)

    async def update_shapes(self, updates: Dict[str, ShapePartial]) -> List[str]:
        stamped = {shape_id: self._stamp(fields) for shape_id, fields in updates.items()}
        merged = await self._run(lambda repo: repo.update_many(stamped))
        skipped = [shape_id for shape_id in updates if shape_id not in merged]
        if skipped:
            logger.debug("Batch update skipped missing shapes: %s", skipped)
        self._emit_batch(ChangeKind.MODIFIED, list(merged.values()))
        return skipped

    async def delete_shape(self, shape_id: str) -> None:
        removed = await self._run(lambda repo: repo.delete(shape_id))
        if removed is not None:
            self._emit(ChangeKind.REMOVED, removed)

    async def fetch_all_shapes(self) -> List[Shape]:
        return await self._run(lambda repo: repo.list_all())

    async def fetch_shape(self, shape_id: str) -> Optional[Shape]:
        return await self._run(lambda repo: repo.get(shape_id))
