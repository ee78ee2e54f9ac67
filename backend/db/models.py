import datetime as dt

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ShapeModel(Base):
    """Persisted (globally shared) canvas shape.

    This is intentionally a *simple* table:
    - The full shape record is stored as JSON text in `shape_json`, which keeps
      every variant (rectangle/circle/text/image) in one table and lets lock
      fields ride along with the rest of the shape.
    - `type` is duplicated as a column for cheap filtering.
    """

    __tablename__ = "shapes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    shape_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
