import copy
from typing import Iterable, List, Optional

from canvas import layout
from canvas.shape import ChangeEvent, Shape, ShapePartial

from .collab_errors import ShapeNotFoundError
from .reconciler import apply_changes, removed_ids


class ShapeStore:
    """Canonical local collection of shapes plus the current multi-selection.

    Pure data holder. Local mutators are strict (unknown ids raise
    ShapeNotFoundError); externally sourced batches go through
    `apply_changes`, which never raises.

    Note: this store belongs to one engine instance and is not shared between
    threads. Other actors only ever reach it through the persistence channel.
    """

    def __init__(self, shapes: Optional[Iterable[Shape]] = None):
        self._shapes: List[Shape] = []
        self._selected: List[str] = []
        if shapes:
            self.replace_all(shapes)

    # ------------------------
    # Reads
    # ------------------------

    def all(self) -> List[Shape]:
        return list(self._shapes)

    def get(self, shape_id: str) -> Optional[Shape]:
        return next((s for s in self._shapes if s["id"] == shape_id), None)

    def require(self, shape_id: str) -> Shape:
        shape = self.get(shape_id)
        if shape is None:
            raise ShapeNotFoundError(f"Shape '{shape_id}' does not exist")
        return shape

    def __contains__(self, shape_id: str) -> bool:
        return self.get(shape_id) is not None

    def __len__(self) -> int:
        return len(self._shapes)

    # ------------------------
    # Local mutators
    # ------------------------

    def replace_all(self, shapes: Iterable[Shape]) -> None:
        """Initial load. Later duplicates of an id are dropped."""
        self._shapes = []
        seen = set()
        for shape in shapes:
            if shape["id"] in seen:
                continue
            seen.add(shape["id"])
            self._shapes.append(shape)
        self._selected = [sid for sid in self._selected if sid in seen]

    def add(self, shape: Shape) -> Shape:
        if shape["id"] in self:
            raise ValueError(f"Shape '{shape['id']}' already exists")
        self._shapes.append(shape)
        return shape

    def update(self, shape_id: str, updates: ShapePartial) -> Shape:
        """Merges `updates` into the stored shape and returns the new record."""
        current = self.require(shape_id)
        merged = {**current, **updates, "id": shape_id}
        self._shapes = [merged if s["id"] == shape_id else s for s in self._shapes]
        return merged

    def remove(self, shape_id: str) -> Shape:
        removed = self.require(shape_id)
        self._shapes = [s for s in self._shapes if s["id"] != shape_id]
        self._selected = [sid for sid in self._selected if sid != shape_id]
        return removed

    def snapshot(self, shape_id: str) -> Shape:
        """Deep copy of a stored shape, safe to keep as a history delta."""
        return copy.deepcopy(self.require(shape_id))

    # ------------------------
    # Remote changes
    # ------------------------

    def apply_changes(self, events: Iterable[ChangeEvent]) -> None:
        events = list(events)
        self._shapes = apply_changes(self._shapes, events)
        gone = set(removed_ids(events))
        if gone:
            self._selected = [sid for sid in self._selected if sid not in gone]

    # ------------------------
    # Selection
    # ------------------------

    @property
    def selected_ids(self) -> List[str]:
        return list(self._selected)

    def selected_shapes(self) -> List[Shape]:
        return [s for s in self._shapes if s["id"] in self._selected]

    def select(self, shape_id: Optional[str]) -> None:
        """Selects a single shape, or clears the selection with None."""
        if shape_id is None:
            self._selected = []
            return
        self.require(shape_id)
        self._selected = [shape_id]

    def select_many(self, shape_ids: Iterable[str]) -> None:
        wanted = list(dict.fromkeys(shape_ids))
        for shape_id in wanted:
            self.require(shape_id)
        self._selected = wanted

    def toggle_selection(self, shape_id: str) -> None:
        if shape_id in self._selected:
            self._selected = [sid for sid in self._selected if sid != shape_id]
        else:
            self.require(shape_id)
            self._selected.append(shape_id)

    def clear_selection(self) -> None:
        self._selected = []

    def select_in_area(self, x1: float, y1: float, x2: float, y2: float) -> List[str]:
        self._selected = [s["id"] for s in layout.shapes_in_area(self._shapes, x1, y1, x2, y2)]
        return self.selected_ids
