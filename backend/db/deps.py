"""FastAPI dependencies.

Why this module exists:
- Endpoints `Depends(get_persistence)` / `Depends(get_session_store)` instead
  of importing process-wide objects, so tests can override them.
- The persistence service owns its SQLAlchemy sessions and always closes them,
  even if a request fails.
"""

from functools import lru_cache

from collab.session_store import SessionStore

from .database import SessionLocal
from .persistence_service import SqlPersistenceService


@lru_cache(maxsize=None)
def get_persistence() -> SqlPersistenceService:
    """One persistence service per process; every session subscribes to it."""
    return SqlPersistenceService(SessionLocal)


@lru_cache(maxsize=None)
def get_session_store() -> SessionStore:
    return SessionStore()
