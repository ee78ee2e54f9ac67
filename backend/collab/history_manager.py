"""Transactional undo/redo history.

Local gestures open a transaction, mutate the shape store directly while
recording before/after field deltas, then commit. Committed transactions
become immutable HistoryCommands. Undo/redo never touch the store themselves:
they hand the command's ChangeSet and a direction to an injected async `apply`
callback, which translates it (see `derive_operations`) into persistence
calls.

Key concepts:
- record() folds repeated deltas for one shape into a single ChangeRecord that
  keeps the first `before` and merges every later `after`.
- coalesce() diverts records into a per-key accumulator that only becomes a
  command after an idle window, so per-frame drag updates and repeated arrow
  key nudges undo in one step.
"""

import copy
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Tuple

from canvas.shape import ShapePartial, random_suffix

from .collab_errors import HistoryApplyError, NoActiveTransactionError
from .observable import StackObservable
from .scheduler import AsyncioScheduler, Scheduler, TaskHandle

logger = logging.getLogger(__name__)

DEFAULT_COALESCE_IDLE_MS = 250

Direction = Literal["undo", "redo"]


class ActionType(Enum):
    CREATE = "create"
    DELETE = "delete"
    UPDATE = "update"
    MOVE = "move"
    RESIZE = "resize"
    COLOR_CHANGE = "color_change"
    TEXT_UPDATE = "text_update"
    ROTATE = "rotate"
    DUPLICATE = "duplicate"
    ALIGN = "align"
    DISTRIBUTE = "distribute"
    REORDER = "reorder"


@dataclass(frozen=True)
class ChangeRecord:
    """Delta for one shape.

    before=None: the shape did not exist (creation).
    after=None: the shape no longer exists (deletion).
    """

    shape_id: str
    before: Optional[ShapePartial]
    after: Optional[ShapePartial]


ChangeSet = Dict[str, ChangeRecord]


@dataclass(frozen=True)
class HistoryCommand:
    id: str
    type: ActionType
    changes: ChangeSet
    timestamp: int
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Transaction:
    type: ActionType
    changes: ChangeSet = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    def record(self, shape_id: str, before: Optional[ShapePartial], after: Optional[ShapePartial]) -> None:
        before = copy.deepcopy(before)
        after = copy.deepcopy(after)

        existing = self.changes.get(shape_id)
        if existing is None:
            self.changes[shape_id] = ChangeRecord(shape_id, before, after)
            return

        # Keep the pre-gesture snapshot; a deletion discards accumulated edits.
        if after is None:
            merged_after = None
        else:
            merged_after = {**(existing.after or {}), **after}

        self.changes[shape_id] = ChangeRecord(shape_id, existing.before, merged_after)

    def is_empty(self) -> bool:
        return not self.changes


@dataclass
class CoalesceEntry(Transaction):
    handle: Optional[TaskHandle] = None


# ------------------------
# Undo/redo derivation
# ------------------------

class OperationKind(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ShapeOperation:
    kind: OperationKind
    shape_id: str
    fields: Optional[ShapePartial] = None


def derive_operations(changes: ChangeSet, direction: Direction) -> List[ShapeOperation]:
    """Turns a ChangeSet into the store operations that replay it.

    undo:
      before=None, after set   -> DELETE
      before set,  after=None  -> CREATE from `before` (full shape)
      both set                 -> UPDATE with `before`
    redo mirrors this using `after`.
    """
    if direction not in ("undo", "redo"):
        raise ValueError(f"Unknown direction '{direction}'")

    operations: List[ShapeOperation] = []
    for shape_id, change in changes.items():
        if direction == "undo":
            source, target = change.after, change.before
        else:
            source, target = change.before, change.after

        if source is None and target is None:
            continue
        if target is None:
            operations.append(ShapeOperation(OperationKind.DELETE, shape_id))
        elif source is None:
            operations.append(ShapeOperation(OperationKind.CREATE, shape_id, {**target, "id": shape_id}))
        else:
            operations.append(ShapeOperation(OperationKind.UPDATE, shape_id, dict(target)))
    return operations


ApplyCallback = Callable[[ChangeSet, Direction], Awaitable[None]]


class HistoryManager:
    """
    Owns the undo/redo stacks, the single open transaction and the pending
    coalesce entries of one engine instance.
    """

    def __init__(
        self,
        apply: ApplyCallback,
        scheduler: Optional[Scheduler] = None,
        max_stack_size: Optional[int] = None,
    ):
        self._apply = apply
        self._scheduler = scheduler or AsyncioScheduler()
        self._max_stack_size = max_stack_size
        self._undo_stack: List[HistoryCommand] = []
        self._redo_stack: List[HistoryCommand] = []
        self._current_tx: Optional[Transaction] = None
        self._coalescing: Dict[str, CoalesceEntry] = {}
        self.stacks = StackObservable()

    # ------------------------
    # State
    # ------------------------

    def can_undo(self) -> bool:
        return len(self._undo_stack) > 0

    def can_redo(self) -> bool:
        return len(self._redo_stack) > 0

    def has_open_transaction(self) -> bool:
        return self._current_tx is not None

    @property
    def undo_stack(self) -> Tuple[HistoryCommand, ...]:
        return tuple(self._undo_stack)

    @property
    def redo_stack(self) -> Tuple[HistoryCommand, ...]:
        return tuple(self._redo_stack)

    @property
    def pending_coalesce_keys(self) -> List[str]:
        return list(self._coalescing)

    def clear(self) -> None:
        self._undo_stack = []
        self._redo_stack = []
        self._notify()

    def _notify(self) -> None:
        self.stacks.notify(self.can_undo(), self.can_redo())

    # ------------------------
    # Transactions
    # ------------------------

    def begin(self, action_type: ActionType, meta: Optional[Dict[str, Any]] = None) -> None:
        if self._current_tx is not None:
            # A forgotten commit must not lose the previous gesture.
            logger.debug("begin(%s) while a transaction is open; committing it first", action_type.value)
            self.commit()
        self._current_tx = Transaction(type=action_type, meta=dict(meta or {}))

    def record(self, shape_id: str, before: Optional[ShapePartial], after: Optional[ShapePartial]) -> None:
        if self._current_tx is None:
            raise NoActiveTransactionError("record() called without an active transaction")
        self._current_tx.record(shape_id, before, after)

    def commit(self) -> Optional[HistoryCommand]:
        tx = self._current_tx
        self._current_tx = None
        if tx is None or tx.is_empty():
            return None
        return self._push(tx)

    def cancel(self) -> None:
        self._current_tx = None

    async def run(self, action_type: ActionType, builder: Callable[[], Any], meta: Optional[Dict[str, Any]] = None) -> Optional[HistoryCommand]:
        """begin(); await builder(); commit(). Whatever was recorded is committed even if builder raises."""
        self.begin(action_type, meta)
        try:
            result = builder()
            if inspect.isawaitable(result):
                await result
        finally:
            command = self.commit()
        return command

    def _push(self, tx: Transaction) -> HistoryCommand:
        timestamp = self._scheduler.now()
        command = HistoryCommand(
            id=f"cmd-{timestamp}-{random_suffix()}",
            type=tx.type,
            changes=dict(tx.changes),
            timestamp=timestamp,
            meta=dict(tx.meta),
        )
        # Any new command invalidates the redo steps.
        self._redo_stack = []
        self._undo_stack.append(command)
        if self._max_stack_size is not None and len(self._undo_stack) > self._max_stack_size:
            self._undo_stack = self._undo_stack[-self._max_stack_size:]

        logger.debug("Committed %s command %s (%d shapes)", command.type.value, command.id, len(command.changes))
        self._notify()
        return command

    # ------------------------
    # Coalescing
    # ------------------------

    def coalesce(
        self,
        key: str,
        action_type: ActionType,
        builder: Callable[[], None],
        idle_ms: int = DEFAULT_COALESCE_IDLE_MS,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Runs `builder` right away, diverting its record() calls into the
        accumulator for `key`. The accumulator becomes one command once
        `idle_ms` pass without another call for the same key.
        """
        entry = self._coalescing.get(key)
        if entry is None:
            entry = CoalesceEntry(type=action_type, meta=dict(meta or {}))
            self._coalescing[key] = entry

        previous_tx = self._current_tx
        self._current_tx = entry
        try:
            builder()
        finally:
            self._current_tx = previous_tx
            if entry.handle is not None:
                entry.handle.cancel()
            entry.handle = self._scheduler.call_later(idle_ms, lambda: self._flush_coalesced(key, entry))

    def _flush_coalesced(self, key: str, entry: CoalesceEntry) -> Optional[HistoryCommand]:
        if self._coalescing.get(key) is not entry:
            return None
        del self._coalescing[key]
        if entry.handle is not None:
            entry.handle.cancel()
            entry.handle = None
        if entry.is_empty():
            return None
        return self._push(entry)

    def flush_coalesced(self) -> List[HistoryCommand]:
        """Flushes every pending coalesce entry now instead of waiting for its timer."""
        commands = []
        for key, entry in list(self._coalescing.items()):
            command = self._flush_coalesced(key, entry)
            if command is not None:
                commands.append(command)
        return commands

    # ------------------------
    # Undo / redo
    # ------------------------

    async def undo(self) -> Optional[HistoryCommand]:
        if not self._undo_stack:
            return None
        command = self._undo_stack.pop()
        await self._replay(command, "undo")
        self._redo_stack.append(command)
        logger.debug("Undid %s command %s", command.type.value, command.id)
        self._notify()
        return command

    async def redo(self) -> Optional[HistoryCommand]:
        if not self._redo_stack:
            return None
        command = self._redo_stack.pop()
        await self._replay(command, "redo")
        self._undo_stack.append(command)
        logger.debug("Redid %s command %s", command.type.value, command.id)
        self._notify()
        return command

    async def _replay(self, command: HistoryCommand, direction: Direction) -> None:
        try:
            await self._apply(command.changes, direction)
        except Exception as exc:
            # Put the command back where it came from; stacks look untouched.
            if direction == "undo":
                self._undo_stack.append(command)
            else:
                self._redo_stack.append(command)
            logger.error("Failed to %s command %s", direction, command.id, exc_info=True)
            raise HistoryApplyError(f"Failed to {direction} {command.type.value}: {exc}") from exc
