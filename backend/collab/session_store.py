import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from .canvas_controller import CanvasController
from .collab_errors import SessionNotFoundError


@dataclass(frozen=True)
class Session:
    """A server-held collaborative session for one actor.

    The frontend holds only the `session_id`; the engine instance (shape
    store, history, locks) lives on the backend.
    """

    session_id: str
    controller: CanvasController


class SessionStore:
    """In-memory registry of live canvas sessions.

    Why this exists:
    - Each connected actor gets its own engine instance; nothing is shared
      between sessions except the persistence service they all subscribe to.
    - Easy to replace later with a per-connection registry (websockets).

    Note: This store is process-local. Sessions do not survive a restart; the
    shapes themselves do, through the persistence service.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, CanvasController] = {}

    def create(self, controller: CanvasController) -> Session:
        session_id = str(uuid.uuid4())
        with self._lock:
            self._sessions[session_id] = controller
        return Session(session_id=session_id, controller=controller)

    def get(self, session_id: str) -> Optional[CanvasController]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[CanvasController]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def require(self, session_id: str) -> CanvasController:
        controller = self.get(session_id)
        if controller is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return controller
