"""SQLAlchemy wiring for the shared shape store.

`CANVAS_DATABASE_URL` selects the database; without it shapes live in a local
SQLite file. Tests build a throwaway engine with `make_engine("sqlite://")`.
"""

import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.getenv("CANVAS_DATABASE_URL", "sqlite:///./canvas.db")

_IN_MEMORY_SQLITE = ("sqlite://", "sqlite:///:memory:")


def make_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url)
    # In-memory SQLite only exists per connection, so share one.
    if url in _IN_MEMORY_SQLITE:
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, connect_args={"check_same_thread": False})


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the `shapes` table if it does not exist yet."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
