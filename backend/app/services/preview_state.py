"""
Preview State - server-side mirror of a live preview

A preview reports two signals: errors ({message, isBuildError, stack, line,
col}) and a boolean "healthy" after each reload. It accepts a file map as its
only control input. PreviewErrorStore holds the signals and notifies
subscribers with (state, previous_state) on every change, PreviewWorkspace
holds the files, and PreviewSessionRegistry keeps one of each, plus a
GhostFixEngine, per project.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.logging_config import logger
from app.core.types import generate_uuid
from app.services.ghost_fix_engine import FixRequester, GhostFixConfig, GhostFixEngine, GhostFixStatus


GHOST_FIX_SNAPSHOT_TITLE = "Ghost Fix"


@dataclass(frozen=True)
class PreviewError:
    message: str
    is_build_error: bool = False
    stack: Optional[str] = None
    line: Optional[int] = None
    col: Optional[int] = None
    id: str = field(default_factory=generate_uuid)
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class PreviewState:
    errors: Tuple[PreviewError, ...] = ()
    preview_healthy: bool = False


StateListener = Callable[[PreviewState, PreviewState], None]


class PreviewErrorStore:
    """Error/health signals of one preview with change subscriptions"""

    def __init__(self):
        self._state = PreviewState()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> PreviewState:
        return self._state

    @property
    def errors(self) -> Tuple[PreviewError, ...]:
        return self._state.errors

    @property
    def preview_healthy(self) -> bool:
        return self._state.preview_healthy

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register listener(state, prev); returns an unsubscribe callable"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add_error(self, error: PreviewError) -> None:
        self._set(errors=self._state.errors + (error,))

    def set_healthy(self, healthy: bool) -> None:
        self._set(preview_healthy=healthy)

    def clear_errors(self) -> None:
        self._set(errors=())

    def _set(self, **changes: Any) -> None:
        prev = self._state
        self._state = replace(prev, **changes)
        # Listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(self._state, prev)
            except Exception as e:
                logger.log_error_with_context(e, context="PreviewErrorStore listener")


class PreviewWorkspace:
    """Current file map loaded into the preview"""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self._files: Dict[str, str] = dict(files or {})

    @property
    def files(self) -> Dict[str, str]:
        return dict(self._files)

    def set_files(self, files: Dict[str, str]) -> None:
        self._files = dict(files)

    def apply_files(self, files: Dict[str, str]) -> None:
        """Merge changed files over the current map (triggers a preview rebuild)"""
        self._files.update(files)


@dataclass
class PreviewSession:
    project_id: str
    errors: PreviewErrorStore
    workspace: PreviewWorkspace
    engine: GhostFixEngine
    unsubscribe: Callable[[], None]


class PreviewSessionRegistry:
    """
    One preview session per project.

    Wiring per session: a new preview error starts the fix engine only when
    the error count grew, the engine is idle and the workspace has files.
    Files applied by a fix are saved as a "Ghost Fix" snapshot when a
    repository is configured.
    """

    def __init__(
        self,
        requester: FixRequester,
        repository: Any = None,
        config: Optional[GhostFixConfig] = None,
    ):
        self.requester = requester
        self.repository = repository
        self.config = config or GhostFixConfig.from_settings()
        self._sessions: Dict[str, PreviewSession] = {}

    def get(self, project_id: str) -> Optional[PreviewSession]:
        return self._sessions.get(project_id)

    def get_or_create(self, project_id: str) -> PreviewSession:
        session = self._sessions.get(project_id)
        if session is not None:
            return session

        errors = PreviewErrorStore()
        workspace = PreviewWorkspace()
        engine = GhostFixEngine(
            errors=errors,
            workspace=workspace,
            requester=self.requester,
            config=self.config,
            name=project_id,
            on_files_applied=lambda files: self._persist_fix(project_id, files),
        )

        def on_change(state: PreviewState, prev: PreviewState) -> None:
            if len(state.errors) <= len(prev.errors):
                return
            if engine.status != GhostFixStatus.IDLE or not workspace.files:
                return
            engine.handle_error()

        session = PreviewSession(
            project_id=project_id,
            errors=errors,
            workspace=workspace,
            engine=engine,
            unsubscribe=errors.subscribe(on_change),
        )
        self._sessions[project_id] = session
        logger.info(f"[PreviewRegistry] Created preview session for project {project_id}")
        return session

    def dispose(self, project_id: str) -> bool:
        session = self._sessions.pop(project_id, None)
        if session is None:
            return False
        session.unsubscribe()
        session.engine.dispose()
        logger.info(f"[PreviewRegistry] Disposed preview session for project {project_id}")
        return True

    def dispose_all(self) -> None:
        for project_id in list(self._sessions):
            self.dispose(project_id)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def _persist_fix(self, project_id: str, files: Dict[str, str]) -> None:
        if self.repository is None:
            return
        try:
            await self.repository.save_project_files(project_id, files, GHOST_FIX_SNAPSHOT_TITLE)
        except Exception as e:
            logger.warning(f"[PreviewRegistry] Failed to save ghost fix for project {project_id}: {e}")
