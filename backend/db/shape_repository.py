import json
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import ShapeModel


def shape_to_json(shape: Dict[str, Any]) -> str:
    """Serialize a shape record into the `shape_json` column."""
    return json.dumps(shape, sort_keys=True)


def shape_from_model(model: ShapeModel) -> Dict[str, Any]:
    """Deserialize a shape record; the row id always wins over the payload."""
    data = json.loads(model.shape_json)
    data["id"] = model.id
    return data


class ShapeRepository:
    """Data-access layer for persisted canvas shapes.

    Why this exists:
    - Keeps SQLAlchemy/DB code out of the persistence service and router.
    - Central place to evolve storage format and constraints.
    """

    def __init__(self, db: Session):
        self._db = db

    def list_all(self) -> List[Dict[str, Any]]:
        models = self._db.scalars(select(ShapeModel).order_by(ShapeModel.id))
        return [shape_from_model(m) for m in models]

    def get(self, shape_id: str) -> Optional[Dict[str, Any]]:
        model = self._db.get(ShapeModel, shape_id)
        if model is None:
            return None
        return shape_from_model(model)

    def put(self, shape: Dict[str, Any]) -> bool:
        """Insert or overwrite a shape. Returns True when it did not exist yet."""
        model = self._db.get(ShapeModel, shape["id"])
        created = model is None
        if created:
            model = ShapeModel(id=shape["id"], type=shape["type"], shape_json=shape_to_json(shape))
            self._db.add(model)
        else:
            model.type = shape["type"]
            model.shape_json = shape_to_json(shape)
        self._db.commit()
        return created

    def update(self, shape_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Merge `fields` into a stored shape; None when the shape does not exist."""
        model = self._db.get(ShapeModel, shape_id)
        if model is None:
            return None
        merged = {**shape_from_model(model), **fields, "id": shape_id}
        model.shape_json = shape_to_json(merged)
        self._db.commit()
        return merged

    def update_many(self, updates: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Merge several partial updates in one commit; missing ids are left out of the result."""
        merged: Dict[str, Dict[str, Any]] = {}
        for shape_id, fields in updates.items():
            model = self._db.get(ShapeModel, shape_id)
            if model is None:
                continue
            merged[shape_id] = {**shape_from_model(model), **fields, "id": shape_id}
            model.shape_json = shape_to_json(merged[shape_id])
        self._db.commit()
        return merged

    def delete(self, shape_id: str) -> Optional[Dict[str, Any]]:
        model = self._db.get(ShapeModel, shape_id)
        if model is None:
            return None
        shape = shape_from_model(model)
        self._db.delete(model)
        self._db.commit()
        return shape
