import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from canvas import layout
from canvas.shape import Shape, ShapePartial, ShapeType
from canvas.shape_factory import ShapeFactory
from canvas.shape_validator import ShapeValidator
from db.persistence_service import PersistenceService

from .collab_errors import InvalidShapeError
from .history_manager import ActionType, ChangeSet, Direction, HistoryManager, OperationKind, derive_operations
from .lock_coordinator import LockCoordinator
from .scheduler import AsyncioScheduler, Scheduler
from .shape_store import ShapeStore
from .write_buffer import WriteBuffer

logger = logging.getLogger(__name__)

DUPLICATE_OFFSET = 20
NUDGE_IDLE_MS = 300
DRAG_IDLE_MS = 300


class CanvasController:
    """
    One collaborative engine instance for one actor.

    Local gestures update the ShapeStore immediately (optimistic), record
    before/after deltas into the HistoryManager, commit, and then push the
    same change to the persistence service. The persistence channel echoes
    every write back through `ShapeStore.apply_changes`, which absorbs the
    echo of our own writes without duplicating anything.
    """

    def __init__(
        self,
        actor_id: str,
        persistence: PersistenceService,
        scheduler: Optional[Scheduler] = None,
        max_stack_size: Optional[int] = None,
    ):
        self.actor_id = actor_id
        self.persistence = persistence
        self.scheduler = scheduler or AsyncioScheduler()
        self.store = ShapeStore()
        self.history = HistoryManager(self._apply_change_set, self.scheduler, max_stack_size=max_stack_size)
        self.locks = LockCoordinator(persistence, clock=self.scheduler.now)
        self.writes = WriteBuffer(persistence.update_shapes, self.scheduler)
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------
    # Lifecycle
    # ------------------------

    async def connect(self) -> None:
        """Initial load, then follow the real-time channel."""
        self.store.replace_all(await self.persistence.fetch_all_shapes())
        self._unsubscribe = self.persistence.subscribe_to_shapes(self.store.apply_changes)
        logger.info("Actor %s connected with %d shapes", self.actor_id, len(self.store))

    async def close(self) -> None:
        """Commits pending gestures and sends buffered writes before leaving the channel."""
        self.history.flush_coalesced()
        await self.writes.flush()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.info("Actor %s disconnected", self.actor_id)

    @property
    def connected(self) -> bool:
        return self._unsubscribe is not None

    # ------------------------
    # Internal helpers
    # ------------------------

    def _stamp(self, fields: ShapePartial) -> ShapePartial:
        return {**fields, "last_modified_by": self.actor_id}

    def _require_valid_updates(self, updates: Dict[str, ShapePartial]) -> None:
        """Every id must exist and every merged record must still be a valid shape."""
        for shape_id, fields in updates.items():
            merged = {**self.store.require(shape_id), **fields, "id": shape_id}
            issues = ShapeValidator.validate_shape(merged)
            if issues:
                raise InvalidShapeError(issues)

    def _apply_local_update(self, shape_id: str, updates: ShapePartial) -> None:
        """Store update + history record; the caller owns the transaction."""
        current = self.store.require(shape_id)
        before = {key: current.get(key) for key in updates}
        self.store.update(shape_id, updates)
        self.history.record(shape_id, before, updates)

    async def _push_updates(self, updates: Dict[str, ShapePartial]) -> None:
        # Buffered drag writes must land before anything newer.
        await self.writes.flush()
        for shape_id, fields in updates.items():
            await self.persistence.update_shape(shape_id, fields)

    async def _update_many(self, action_type: ActionType, updates: Dict[str, ShapePartial]) -> None:
        if not updates:
            return
        self._require_valid_updates(updates)
        stamped = {shape_id: self._stamp(fields) for shape_id, fields in updates.items()}

        self.history.begin(action_type)
        for shape_id, fields in stamped.items():
            self._apply_local_update(shape_id, fields)
        self.history.commit()

        await self._push_updates(stamped)

    # ------------------------
    # Shape operations
    # ------------------------

    async def add_shape(self, shape_type: ShapeType, fields: ShapePartial) -> Shape:
        fields = dict(fields)
        fields.setdefault("z_index", layout.next_z_index(self.store.all()))
        shape = ShapeFactory.create(shape_type, self.actor_id, self.scheduler.now(), fields)

        issues = ShapeValidator.validate_shape(shape)
        if issues:
            raise InvalidShapeError(issues)

        self.history.begin(ActionType.CREATE)
        self.store.add(shape)
        self.history.record(shape["id"], None, shape)
        self.history.commit()

        await self.persistence.create_shape(shape)
        return shape

    async def update_shape(self, shape_id: str, updates: ShapePartial, action_type: ActionType = ActionType.UPDATE) -> Shape:
        await self._update_many(action_type, {shape_id: updates})
        return self.store.require(shape_id)

    async def move_shape(self, shape_id: str, x: float, y: float) -> Shape:
        return await self.update_shape(shape_id, {"x": x, "y": y}, ActionType.MOVE)

    async def remove_shapes(self, shape_ids: Iterable[str]) -> List[str]:
        shape_ids = list(dict.fromkeys(shape_ids))
        snapshots = [self.store.snapshot(shape_id) for shape_id in shape_ids]
        if not snapshots:
            return []

        self.history.begin(ActionType.DELETE)
        for snapshot in snapshots:
            self.store.remove(snapshot["id"])
            self.history.record(snapshot["id"], snapshot, None)
        self.history.commit()

        for shape_id in shape_ids:
            await self.persistence.delete_shape(shape_id)
        return shape_ids

    async def remove_shape(self, shape_id: str) -> None:
        await self.remove_shapes([shape_id])

    async def remove_selected(self) -> List[str]:
        return await self.remove_shapes(self.store.selected_ids)

    async def duplicate_selected(self) -> List[Shape]:
        selected = self.store.selected_shapes()
        if not selected:
            return []

        now = self.scheduler.now()
        z_index = layout.next_z_index(self.store.all())
        copies = []
        for offset, shape in enumerate(selected):
            duplicate = ShapeFactory.duplicate(shape, self.actor_id, now, DUPLICATE_OFFSET)
            duplicate["z_index"] = z_index + offset
            copies.append(duplicate)

        self.history.begin(ActionType.DUPLICATE)
        for duplicate in copies:
            self.store.add(duplicate)
            self.history.record(duplicate["id"], None, duplicate)
        self.history.commit()
        self.store.select_many(d["id"] for d in copies)

        for duplicate in copies:
            await self.persistence.create_shape(duplicate)
        return copies

    async def align_selected(self, mode: str) -> Dict[str, ShapePartial]:
        updates = layout.align(self.store.selected_shapes(), mode)
        await self._update_many(ActionType.ALIGN, updates)
        return updates

    async def distribute_selected(self, axis: str) -> Dict[str, ShapePartial]:
        updates = layout.distribute(self.store.selected_shapes(), axis)
        await self._update_many(ActionType.DISTRIBUTE, updates)
        return updates

    async def reorder(self, shape_id: str, how: str) -> Dict[str, ShapePartial]:
        """how: front | back | forward | backward"""
        moves = {
            "front": layout.bring_to_front,
            "back": layout.send_to_back,
            "forward": layout.bring_forward,
            "backward": layout.send_backward,
        }
        if how not in moves:
            raise ValueError(f"Unknown reorder '{how}'")
        self.store.require(shape_id)
        updates = moves[how](shape_id, self.store.all())
        await self._update_many(ActionType.REORDER, updates)
        return updates

    # ------------------------
    # Coalesced gestures
    # ------------------------

    async def nudge(self, shape_ids: Iterable[str], dx: float, dy: float, idle_ms: int = NUDGE_IDLE_MS) -> Dict[str, ShapePartial]:
        """Arrow-key move; a burst of nudges undoes as one step."""
        updates = {}
        for shape_id in shape_ids:
            shape = self.store.require(shape_id)
            updates[shape_id] = self._stamp({"x": shape["x"] + dx, "y": shape["y"] + dy})
        return await self._coalesced_move("arrow-move", updates, idle_ms)

    async def drag(self, positions: Dict[str, Tuple[float, float]], idle_ms: int = DRAG_IDLE_MS) -> Dict[str, ShapePartial]:
        """Per-frame drag update; the whole drag undoes as one step."""
        updates = {shape_id: self._stamp({"x": x, "y": y}) for shape_id, (x, y) in positions.items()}
        return await self._coalesced_move("drag", updates, idle_ms)

    async def _coalesced_move(self, key: str, updates: Dict[str, ShapePartial], idle_ms: int) -> Dict[str, ShapePartial]:
        self._require_valid_updates(updates)

        def builder() -> None:
            for shape_id, fields in updates.items():
                self._apply_local_update(shape_id, fields)

        self.history.coalesce(key, ActionType.MOVE, builder, idle_ms)
        for shape_id, fields in updates.items():
            self.writes.add(shape_id, fields)
        return updates

    # ------------------------
    # History
    # ------------------------

    async def _settle(self) -> None:
        # A pending gesture becomes its own undo step and its writes land first.
        self.history.flush_coalesced()
        await self.writes.flush()

    async def undo(self):
        await self._settle()
        return await self.history.undo()

    async def redo(self):
        await self._settle()
        return await self.history.redo()

    async def _apply_change_set(self, changes: ChangeSet, direction: Direction) -> None:
        """Replays a command: local store first, then the persistence service.

        Updates whose shape no longer exists in the shared store (another actor
        deleted it) are skipped, the same way deletes of missing shapes are.
        """
        operations = derive_operations(changes, direction)

        for op in operations:
            if op.kind == OperationKind.DELETE:
                if op.shape_id in self.store:
                    self.store.remove(op.shape_id)
            elif op.kind == OperationKind.CREATE:
                if op.shape_id not in self.store:
                    self.store.add(dict(op.fields))
            elif op.shape_id in self.store:
                self.store.update(op.shape_id, op.fields)

        for op in operations:
            if op.kind == OperationKind.DELETE:
                await self.persistence.delete_shape(op.shape_id)
            elif op.kind == OperationKind.CREATE:
                await self.persistence.create_shape(op.fields)
            elif await self.persistence.fetch_shape(op.shape_id) is None:
                logger.info("Skipped %s of shape %s: it no longer exists", direction, op.shape_id)
            else:
                await self.persistence.update_shape(op.shape_id, self._stamp(op.fields))

    # ------------------------
    # Locks
    # ------------------------

    async def acquire_lock(self, shape_id: str) -> bool:
        return await self.locks.acquire(shape_id, self.actor_id)

    async def release_lock(self, shape_id: str) -> bool:
        return await self.locks.release(shape_id, self.actor_id)

    def is_locked_by_other(self, shape_id: str) -> bool:
        return self.locks.is_locked_by_other(self.store.require(shape_id), self.actor_id)
