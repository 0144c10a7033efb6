"""
Preview endpoints

The live preview reports errors and health after each reload and pushes its
current file map; the ghost-fix engine of that project reacts to them.
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user_id, get_preview_registry
from app.core.exceptions import PreviewNotFoundError
from app.schemas.generation import (
    FixAttemptSchema,
    GhostFixStateResponse,
    PreviewErrorIn,
    PreviewFilesIn,
    PreviewHealthIn,
)
from app.services.preview_state import PreviewError, PreviewSession, PreviewSessionRegistry

router = APIRouter(prefix="/previews", tags=["Previews"])


def _state(session: PreviewSession) -> GhostFixStateResponse:
    snapshot = session.engine.snapshot()
    return GhostFixStateResponse(
        project_id=session.project_id,
        status=snapshot["status"],
        attempts=snapshot["attempts"],
        max_attempts=snapshot["max_attempts"],
        history=[FixAttemptSchema(**a) for a in snapshot["history"]],
        errors=len(session.errors.errors),
        preview_healthy=session.errors.preview_healthy,
    )


def _existing(registry: PreviewSessionRegistry, project_id: str) -> PreviewSession:
    session = registry.get(project_id)
    if session is None:
        raise PreviewNotFoundError(project_id)
    return session


@router.post("/{project_id}/errors", response_model=GhostFixStateResponse)
async def report_preview_error(
    project_id: str,
    error: PreviewErrorIn,
    user_id: str = Depends(get_current_user_id),
    registry: PreviewSessionRegistry = Depends(get_preview_registry),
):
    session = registry.get_or_create(project_id)
    session.errors.add_error(PreviewError(
        message=error.message,
        is_build_error=error.is_build_error,
        stack=error.stack,
        line=error.line,
        col=error.col,
    ))
    return _state(session)


@router.post("/{project_id}/health", response_model=GhostFixStateResponse)
async def report_preview_health(
    project_id: str,
    health: PreviewHealthIn,
    user_id: str = Depends(get_current_user_id),
    registry: PreviewSessionRegistry = Depends(get_preview_registry),
):
    session = registry.get_or_create(project_id)
    session.errors.set_healthy(health.healthy)
    return _state(session)


@router.put("/{project_id}/files", response_model=GhostFixStateResponse)
async def set_preview_files(
    project_id: str,
    body: PreviewFilesIn,
    user_id: str = Depends(get_current_user_id),
    registry: PreviewSessionRegistry = Depends(get_preview_registry),
):
    session = registry.get_or_create(project_id)
    if body.merge:
        session.workspace.apply_files(body.files)
    else:
        session.workspace.set_files(body.files)
    return _state(session)


@router.get("/{project_id}/ghost-fix", response_model=GhostFixStateResponse)
async def get_ghost_fix_state(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: PreviewSessionRegistry = Depends(get_preview_registry),
):
    return _state(_existing(registry, project_id))


@router.post("/{project_id}/ghost-fix/retry")
async def retry_ghost_fix(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: PreviewSessionRegistry = Depends(get_preview_registry),
):
    """Manual retry: resets the attempt counter and fixes the latest error now"""
    session = _existing(registry, project_id)
    started = session.engine.retry()
    return {"started": started, **_state(session).model_dump(by_alias=True)}


@router.delete("/{project_id}")
async def dispose_preview(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: PreviewSessionRegistry = Depends(get_preview_registry),
):
    if not registry.dispose(project_id):
        raise PreviewNotFoundError(project_id)
    return {"ok": True}
