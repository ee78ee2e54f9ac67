from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

# --- Shared DTOs ---

ShapeTypeName = Literal["rectangle", "circle", "text", "image"]


class ShapeFieldsDTO(BaseModel):
    # Editable fields; everything optional so the same DTO carries partial updates.
    x: Optional[float] = None
    y: Optional[float] = None
    color: Optional[str] = None
    rotation: Optional[float] = None
    z_index: Optional[int] = None

    # Rectangle / image (and optional text box)
    width: Optional[float] = None
    height: Optional[float] = None

    # Circle
    radius: Optional[float] = None

    # Text
    text: Optional[str] = None
    font_size: Optional[float] = None
    font_style: Optional[Literal["normal", "italic"]] = None
    font_weight: Optional[Literal["normal", "bold"]] = None
    text_decoration: Optional[Literal["none", "underline"]] = None

    # Image
    src: Optional[str] = None


class ShapeDTO(ShapeFieldsDTO):
    id: str
    type: ShapeTypeName
    x: float
    y: float
    created_by: Optional[str] = None
    created_at: Optional[int] = None
    last_modified_by: Optional[str] = None
    last_modified_at: Optional[int] = None
    locked_by: Optional[str] = None
    locked_at: Optional[int] = None


class ErrorDTO(BaseModel):
    code: str
    message: str
    field: Optional[str] = None


class SessionStateDTO(BaseModel):
    sessionId: str
    actorId: str
    shapes: List[ShapeDTO]
    selectedIds: List[str] = Field(default_factory=list)
    canUndo: bool = False
    canRedo: bool = False


# --- Request DTOs ---

class CreateSessionRequest(BaseModel):
    actorId: str


class CreateShapeRequest(ShapeFieldsDTO):
    type: ShapeTypeName
    x: float
    y: float


# Fields a stored shape can never hold as null; rotation, z_index and the text
# box size may be cleared.
NON_NULLABLE_FIELDS = ("x", "y", "color", "radius", "text", "font_size", "src")


class UpdateShapeRequest(BaseModel):
    updates: ShapeFieldsDTO
    action: Literal["update", "move", "resize", "color_change", "text_update", "rotate"] = "update"

    @field_validator("updates")
    @classmethod
    def _reject_null_required_fields(cls, updates: ShapeFieldsDTO) -> ShapeFieldsDTO:
        nulls = [name for name in NON_NULLABLE_FIELDS if name in updates.model_fields_set and getattr(updates, name) is None]
        if nulls:
            raise ValueError(f"fields cannot be null: {', '.join(nulls)}")
        return updates


class AreaDTO(BaseModel):
    x1: float
    y1: float
    x2: float
    y2: float


class SelectionRequest(BaseModel):
    shapeIds: List[str] = Field(default_factory=list)
    area: Optional[AreaDTO] = None


class NudgeRequest(BaseModel):
    shapeIds: List[str]
    dx: float = 0
    dy: float = 0


class AlignRequest(BaseModel):
    mode: Literal["left", "right", "top", "bottom", "center", "middle"]


class DistributeRequest(BaseModel):
    axis: Literal["horizontal", "vertical"]


class ReorderRequest(BaseModel):
    how: Literal["front", "back", "forward", "backward"]


# --- Response DTOs ---

class ActionResponse(BaseModel):
    ok: bool
    state: Optional[SessionStateDTO] = None
    error: Optional[ErrorDTO] = None


class LockResponse(BaseModel):
    ok: bool
    lockedBy: Optional[str] = None
