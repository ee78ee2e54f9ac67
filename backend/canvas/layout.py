"""Geometry helpers for selection, alignment and stacking order.

All functions are pure: they read shape records and return per-shape partial
updates (shape_id -> fields) without touching any store.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence

from canvas.shape import Shape, ShapePartial, ShapeType

TEXT_WIDTH_FACTOR = 0.6
TEXT_HEIGHT_FACTOR = 1.2


@dataclass(frozen=True)
class Bounds:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center_x(self) -> float:
        return (self.left + self.right) / 2

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2

    def intersects(self, other: "Bounds") -> bool:
        return not (
            self.right < other.left
            or self.left > other.right
            or self.bottom < other.top
            or self.top > other.bottom
        )


def shape_bounds(shape: Shape) -> Bounds:
    x, y = shape["x"], shape["y"]
    shape_type = ShapeType(shape["type"])

    if shape_type == ShapeType.CIRCLE:
        r = shape.get("radius", 0)
        return Bounds(x - r, y - r, x + r, y + r)

    if shape_type == ShapeType.TEXT:
        # No layout engine here; approximate the text box.
        font_size = shape.get("font_size", 24)
        width = shape.get("width") or len(shape.get("text", "")) * font_size * TEXT_WIDTH_FACTOR
        height = shape.get("height") or font_size * TEXT_HEIGHT_FACTOR
        return Bounds(x, y, x + width, y + height)

    return Bounds(x, y, x + shape.get("width", 0), y + shape.get("height", 0))


def group_bounds(shapes: Sequence[Shape]) -> Bounds:
    if not shapes:
        return Bounds(0, 0, 0, 0)
    all_bounds = [shape_bounds(s) for s in shapes]
    return Bounds(
        min(b.left for b in all_bounds),
        min(b.top for b in all_bounds),
        max(b.right for b in all_bounds),
        max(b.bottom for b in all_bounds),
    )


def shapes_in_area(shapes: Sequence[Shape], x1: float, y1: float, x2: float, y2: float) -> List[Shape]:
    """Shapes whose bounding box intersects the rectangle, dragged in any direction."""
    area = Bounds(min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2))
    return [s for s in shapes if shape_bounds(s).intersects(area)]


# ------------------------
# Alignment
# ------------------------

ALIGN_MODES = ("left", "right", "top", "bottom", "center", "middle")


def align(shapes: Sequence[Shape], mode: str) -> Dict[str, ShapePartial]:
    """
    Aligns every shape to the group's edge (or center line) given by `mode`.
    Shapes already in place are left out of the result.
    """
    if mode not in ALIGN_MODES:
        raise ValueError(f"Unknown align mode '{mode}'")
    if len(shapes) < 2:
        return {}

    group = group_bounds(shapes)
    updates: Dict[str, ShapePartial] = {}

    for shape in shapes:
        b = shape_bounds(shape)
        if mode == "left":
            field, delta = "x", group.left - b.left
        elif mode == "right":
            field, delta = "x", group.right - b.right
        elif mode == "center":
            field, delta = "x", group.center_x - b.center_x
        elif mode == "top":
            field, delta = "y", group.top - b.top
        elif mode == "bottom":
            field, delta = "y", group.bottom - b.bottom
        else:
            field, delta = "y", group.center_y - b.center_y

        if delta != 0:
            updates[shape["id"]] = {field: shape[field] + delta}

    return updates


def distribute(shapes: Sequence[Shape], axis: str) -> Dict[str, ShapePartial]:
    """
    Spaces shape centers evenly along `axis` ("horizontal" or "vertical").
    The two outermost shapes stay where they are; needs at least 3 shapes.
    """
    if axis not in ("horizontal", "vertical"):
        raise ValueError(f"Unknown distribute axis '{axis}'")
    if len(shapes) < 3:
        return {}

    if axis == "horizontal":
        field, center = "x", lambda s: shape_bounds(s).center_x
    else:
        field, center = "y", lambda s: shape_bounds(s).center_y

    ordered = sorted(shapes, key=center)
    first, last = center(ordered[0]), center(ordered[-1])
    spacing = (last - first) / (len(ordered) - 1)

    updates: Dict[str, ShapePartial] = {}
    for i, shape in enumerate(ordered[1:-1], start=1):
        delta = first + spacing * i - center(shape)
        if delta != 0:
            updates[shape["id"]] = {field: shape[field] + delta}
    return updates


# ------------------------
# Stacking order
# ------------------------

def _z(shape: Shape) -> int:
    return shape.get("z_index") or 0


def _renormalize(ordered: List[Shape]) -> Dict[str, ShapePartial]:
    return {s["id"]: {"z_index": i} for i, s in enumerate(ordered) if _z(s) != i}


def _reorder(shape_id: str, shapes: Sequence[Shape], move) -> Dict[str, ShapePartial]:
    ordered = sorted(shapes, key=_z)
    index = next((i for i, s in enumerate(ordered) if s["id"] == shape_id), None)
    if index is None:
        return {}
    target = move(index, len(ordered))
    if target == index:
        return {}
    ordered.insert(target, ordered.pop(index))
    return _renormalize(ordered)


def bring_to_front(shape_id: str, shapes: Sequence[Shape]) -> Dict[str, ShapePartial]:
    return _reorder(shape_id, shapes, lambda i, n: n - 1)


def send_to_back(shape_id: str, shapes: Sequence[Shape]) -> Dict[str, ShapePartial]:
    return _reorder(shape_id, shapes, lambda i, n: 0)


def bring_forward(shape_id: str, shapes: Sequence[Shape]) -> Dict[str, ShapePartial]:
    return _reorder(shape_id, shapes, lambda i, n: min(i + 1, n - 1))


def send_backward(shape_id: str, shapes: Sequence[Shape]) -> Dict[str, ShapePartial]:
    return _reorder(shape_id, shapes, lambda i, n: max(i - 1, 0))


def next_z_index(shapes: Sequence[Shape]) -> int:
    if not shapes:
        return 0
    return max(_z(s) for s in shapes) + 1
