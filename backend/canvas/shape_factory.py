import copy
from typing import Any, Dict, Optional

from canvas.shape import BASE_FIELDS, VARIANT_FIELDS, Shape, ShapeType, new_shape_id, shape_type_of

TEXT_DEFAULTS = {
    "font_size": 24,
    "font_style": "normal",
    "font_weight": "normal",
    "text_decoration": "none",
}


class ShapeFactory:
    @staticmethod
    def create(
        shape_type: ShapeType,
        actor_id: str,
        timestamp_ms: int,
        fields: Dict[str, Any],
        shape_id: Optional[str] = None,
    ) -> Shape:
        """
        Builds a full shape record:
        - fresh id (unless one is given)
        - creation/modification metadata stamped with `actor_id`
        - null lock fields
        Only fields known for the variant are kept.
        """
        allowed = set(BASE_FIELDS) | set(VARIANT_FIELDS[shape_type])

        shape: Shape = {}
        if shape_type == ShapeType.TEXT:
            shape.update(TEXT_DEFAULTS)

        for key, value in fields.items():
            if key in allowed:
                shape[key] = value

        shape.update(
            {
                "id": shape_id or new_shape_id(timestamp_ms),
                "type": shape_type.value,
                "created_by": actor_id,
                "created_at": timestamp_ms,
                "last_modified_by": actor_id,
                "last_modified_at": timestamp_ms,
                "locked_by": None,
                "locked_at": None,
            }
        )
        shape.setdefault("color", "#000000")
        shape.setdefault("z_index", 0)
        return shape

    @staticmethod
    def duplicate(shape: Shape, actor_id: str, timestamp_ms: int, offset: float) -> Shape:
        """
        Copies `shape` as a brand new record shifted by `offset` on both axes.
        Identity, authorship and lock state are not carried over.
        """
        fields = copy.deepcopy(shape)
        fields["x"] = shape["x"] + offset
        fields["y"] = shape["y"] + offset
        return ShapeFactory.create(shape_type_of(shape), actor_id, timestamp_ms, fields)
