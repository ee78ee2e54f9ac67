import random
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

# A full shape record, or a partial one carrying a subset of its fields.
Shape = Dict[str, Any]
ShapePartial = Dict[str, Any]


class ShapeType(Enum):
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    TEXT = "text"
    IMAGE = "image"


class ChangeKind(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


BASE_FIELDS = (
    "id",
    "type",
    "x",
    "y",
    "color",
    "rotation",
    "z_index",
    "created_by",
    "created_at",
    "last_modified_by",
    "last_modified_at",
    "locked_by",
    "locked_at",
)

VARIANT_FIELDS = {
    ShapeType.RECTANGLE: ("width", "height"),
    ShapeType.CIRCLE: ("radius",),
    ShapeType.TEXT: ("text", "font_size", "font_style", "font_weight", "text_decoration", "width", "height"),
    ShapeType.IMAGE: ("src", "width", "height"),
}

LOCK_FIELDS = ("locked_by", "locked_at")


@dataclass(frozen=True)
class ChangeEvent:
    """One externally delivered mutation of a single shape.

    For ADDED and MODIFIED the `shape` is the complete, authoritative snapshot.
    For REMOVED only its `id` is meaningful.
    """

    kind: ChangeKind
    shape: Shape

    @property
    def shape_id(self) -> str:
        return self.shape["id"]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def random_suffix(length: int = 7) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(length))


def new_shape_id(timestamp_ms: int) -> str:
    return f"shape-{timestamp_ms}-{random_suffix()}"


def shape_type_of(shape: Shape) -> ShapeType:
    # Raises ValueError for unknown tags.
    return ShapeType(shape.get("type"))
