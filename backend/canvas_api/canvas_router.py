"""Collaborative canvas HTTP API.

Key concepts:
- Sessions are server-owned: each one is an engine instance (shape store,
  history, locks) for a single actor.
- The frontend sends gestures; the engine applies them optimistically, records
  them for undo and pushes them to the shared persistence service.
- Every session subscribes to the persistence service, so writes from one
  session show up in all the others.
"""

import logging
import re
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException

from canvas.shape import ShapeType
from collab.canvas_controller import CanvasController
from collab.collab_errors import CollabError, InvalidShapeError, SessionNotFoundError
from collab.history_manager import ActionType
from collab.session_store import SessionStore
from db.deps import get_persistence, get_session_store
from db.persistence_service import PersistenceError

from .canvas_dtos import (
    ActionResponse,
    AlignRequest,
    CreateSessionRequest,
    CreateShapeRequest,
    DistributeRequest,
    ErrorDTO,
    LockResponse,
    NudgeRequest,
    ReorderRequest,
    SelectionRequest,
    SessionStateDTO,
    ShapeDTO,
    UpdateShapeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/canvas", tags=["canvas"])


# ------------------------
# Serialization helpers
# ------------------------

def _state_to_dto(session_id: str, controller: CanvasController) -> SessionStateDTO:
    return SessionStateDTO(
        sessionId=session_id,
        actorId=controller.actor_id,
        shapes=[ShapeDTO(**shape) for shape in controller.store.all()],
        selectedIds=controller.store.selected_ids,
        canUndo=controller.history.can_undo(),
        canRedo=controller.history.can_redo(),
    )


def _error_code(exc: Exception) -> str:
    name = re.sub(r"Error$", "", exc.__class__.__name__)
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).upper()


def _session_not_found(exc: SessionNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "SESSION_NOT_FOUND", "message": str(exc)})


def _get_controller(session_id: str, sessions: SessionStore) -> CanvasController:
    try:
        return sessions.require(session_id)
    except SessionNotFoundError as e:
        raise _session_not_found(e) from e


async def _run_action(session_id: str, sessions: SessionStore, action: Callable[[CanvasController], Awaitable]) -> ActionResponse:
    controller = _get_controller(session_id, sessions)

    try:
        await action(controller)
    except InvalidShapeError as e:
        first = e.issues[0] if e.issues else None
        return ActionResponse(
            ok=False,
            error=ErrorDTO(code="INVALID_SHAPE", message=str(e), field=first.field if first else None),
        )
    except (CollabError, PersistenceError) as e:
        return ActionResponse(ok=False, error=ErrorDTO(code=_error_code(e), message=str(e)))

    return ActionResponse(ok=True, state=_state_to_dto(session_id, controller))


# ------------------------
# Routes
# ------------------------

@router.post("/sessions", response_model=SessionStateDTO)
async def create_session(
    req: CreateSessionRequest,
    persistence=Depends(get_persistence),
    sessions: SessionStore = Depends(get_session_store),
):
    controller = CanvasController(req.actorId, persistence)
    await controller.connect()
    session = sessions.create(controller)
    logger.info("Session %s opened for actor %s", session.session_id, req.actorId)
    return _state_to_dto(session.session_id, controller)


@router.get("/sessions/{session_id}", response_model=SessionStateDTO)
async def get_session(session_id: str, sessions: SessionStore = Depends(get_session_store)):
    return _state_to_dto(session_id, _get_controller(session_id, sessions))


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, sessions: SessionStore = Depends(get_session_store)):
    controller = _get_controller(session_id, sessions)
    sessions.remove(session_id)
    await controller.close()
    logger.info("Session %s closed", session_id)
    return {"ok": True}


@router.post("/sessions/{session_id}/shapes", response_model=ActionResponse)
async def create_shape(session_id: str, req: CreateShapeRequest, sessions: SessionStore = Depends(get_session_store)):
    fields = req.model_dump(exclude_none=True, exclude={"type"})
    return await _run_action(session_id, sessions, lambda c: c.add_shape(ShapeType(req.type), fields))


@router.patch("/sessions/{session_id}/shapes/{shape_id}", response_model=ActionResponse)
async def update_shape(session_id: str, shape_id: str, req: UpdateShapeRequest, sessions: SessionStore = Depends(get_session_store)):
    updates = req.updates.model_dump(exclude_unset=True)
    return await _run_action(session_id, sessions, lambda c: c.update_shape(shape_id, updates, ActionType(req.action)))


@router.delete("/sessions/{session_id}/shapes/{shape_id}", response_model=ActionResponse)
async def delete_shape(session_id: str, shape_id: str, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.remove_shape(shape_id))


@router.put("/sessions/{session_id}/selection", response_model=ActionResponse)
async def set_selection(session_id: str, req: SelectionRequest, sessions: SessionStore = Depends(get_session_store)):
    async def action(controller: CanvasController) -> None:
        if req.area is not None:
            controller.store.select_in_area(req.area.x1, req.area.y1, req.area.x2, req.area.y2)
        else:
            controller.store.select_many(req.shapeIds)

    return await _run_action(session_id, sessions, action)


@router.post("/sessions/{session_id}/selection:duplicate", response_model=ActionResponse)
async def duplicate_selection(session_id: str, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.duplicate_selected())


@router.post("/sessions/{session_id}/selection:delete", response_model=ActionResponse)
async def delete_selection(session_id: str, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.remove_selected())


@router.post("/sessions/{session_id}/selection:align", response_model=ActionResponse)
async def align_selection(session_id: str, req: AlignRequest, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.align_selected(req.mode))


@router.post("/sessions/{session_id}/selection:distribute", response_model=ActionResponse)
async def distribute_selection(session_id: str, req: DistributeRequest, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.distribute_selected(req.axis))


@router.post("/sessions/{session_id}/shapes/{shape_id}:reorder", response_model=ActionResponse)
async def reorder_shape(session_id: str, shape_id: str, req: ReorderRequest, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.reorder(shape_id, req.how))


@router.post("/sessions/{session_id}:nudge", response_model=ActionResponse)
async def nudge(session_id: str, req: NudgeRequest, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.nudge(req.shapeIds, req.dx, req.dy))


@router.post("/sessions/{session_id}:undo", response_model=ActionResponse)
async def undo(session_id: str, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.undo())


@router.post("/sessions/{session_id}:redo", response_model=ActionResponse)
async def redo(session_id: str, sessions: SessionStore = Depends(get_session_store)):
    return await _run_action(session_id, sessions, lambda c: c.redo())


@router.post("/sessions/{session_id}/shapes/{shape_id}/lock", response_model=LockResponse)
async def acquire_lock(session_id: str, shape_id: str, sessions: SessionStore = Depends(get_session_store)):
    controller = _get_controller(session_id, sessions)
    ok = await controller.acquire_lock(shape_id)
    shape = controller.store.get(shape_id)
    return LockResponse(ok=ok, lockedBy=shape.get("locked_by") if shape else None)


@router.delete("/sessions/{session_id}/shapes/{shape_id}/lock", response_model=LockResponse)
async def release_lock(session_id: str, shape_id: str, sessions: SessionStore = Depends(get_session_store)):
    controller = _get_controller(session_id, sessions)
    ok = await controller.release_lock(shape_id)
    shape = controller.store.get(shape_id)
    return LockResponse(ok=ok, lockedBy=shape.get("locked_by") if shape else None)
