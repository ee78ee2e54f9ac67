from dataclasses import dataclass
from numbers import Real
from typing import List, Optional

from canvas.shape import Shape, ShapeType


@dataclass
class ValidationIssue:
    message: str
    field: Optional[str] = None


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


class ShapeValidator:
    @staticmethod
    def validate_shape(shape: Shape) -> List[ValidationIssue]:
        """
        Validates a full shape record (type tag, position, variant fields).
        Returns a list of ValidationIssue; empty means valid.
        """
        issues: List[ValidationIssue] = []

        if not shape.get("id"):
            issues.append(ValidationIssue(message="Shape must have an id", field="id"))

        try:
            shape_type = ShapeType(shape.get("type"))
        except ValueError:
            issues.append(ValidationIssue(message=f"Unknown shape type '{shape.get('type')}'", field="type"))
            return issues

        for key in ("x", "y"):
            if not _is_number(shape.get(key)):
                issues.append(ValidationIssue(message=f"{key} must be a number", field=key))

        if shape_type in (ShapeType.RECTANGLE, ShapeType.IMAGE):
            for key in ("width", "height"):
                issues.extend(ShapeValidator._non_negative(shape, key, required=True))

        elif shape_type == ShapeType.CIRCLE:
            issues.extend(ShapeValidator._non_negative(shape, "radius", required=True))

        elif shape_type == ShapeType.TEXT:
            if not isinstance(shape.get("text"), str):
                issues.append(ValidationIssue(message="TEXT shape needs a string 'text'", field="text"))
            font_size = shape.get("font_size")
            if not _is_number(font_size) or font_size <= 0:
                issues.append(ValidationIssue(message="font_size must be a positive number", field="font_size"))
            # Explicit text box dimensions are optional.
            for key in ("width", "height"):
                issues.extend(ShapeValidator._non_negative(shape, key, required=False))

        if shape_type == ShapeType.IMAGE and not shape.get("src"):
            issues.append(ValidationIssue(message="IMAGE shape needs a 'src'", field="src"))

        return issues

    @staticmethod
    def _non_negative(shape: Shape, key: str, required: bool) -> List[ValidationIssue]:
        value = shape.get(key)
        if value is None:
            if required:
                return [ValidationIssue(message=f"{shape['type'].upper()} shape needs '{key}'", field=key)]
            return []
        if not _is_number(value) or value < 0:
            return [ValidationIssue(message=f"{key} must be a non-negative number", field=key)]
        return []
