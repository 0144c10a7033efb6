"""
Ghost Fix Engine - autonomous error -> fix -> verify loop for a live preview

States:
    idle -> fixing -> verifying -> success -> idle
                               \-> failed (until a manual retry)

Flow:
1. handle_error() debounces a burst of preview errors into one fix attempt
2. The latest error, current files, failed-attempt history and the
   classifier's context are sent to the fix requester; the streamed reply is
   fully buffered and parsed for file actions
3. Fixed files are applied and outstanding errors cleared
4. Verification: a new error means failure, a healthy preview with zero
   errors means success; a timeout makes the same check once
5. Failure loops back to handle_error() until max_attempts, then "failed"

One engine per preview. Only one fix is ever in flight: handle_error()
refuses to schedule while fixing or verifying.
"""

import asyncio
import inspect
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from app.core.config import settings
from app.core.exceptions import NoFileChangesError
from app.core.logging_config import logger
from app.modules.parser import extract_files
from app.schemas.generation import FixAttemptSchema, GhostFixRequest, PreviewErrorIn
from app.services.error_classifier import ErrorClassifier
from app.utils.pending_timer import PendingTimer


class GhostFixStatus(str, Enum):
    IDLE = "idle"
    FIXING = "fixing"
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class GhostFixConfig:
    max_attempts: int = 3
    debounce_seconds: float = 2.0
    verify_timeout_seconds: float = 5.0
    success_display_seconds: float = 3.0

    @classmethod
    def from_settings(cls) -> "GhostFixConfig":
        return cls(
            max_attempts=settings.GHOST_FIX_MAX_ATTEMPTS,
            debounce_seconds=settings.GHOST_FIX_DEBOUNCE_SECONDS,
            verify_timeout_seconds=settings.GHOST_FIX_VERIFY_TIMEOUT_SECONDS,
            success_display_seconds=settings.GHOST_FIX_SUCCESS_DISPLAY_SECONDS,
        )


@dataclass
class FixAttempt:
    error: str
    attempt_number: int


FixRequester = Callable[[GhostFixRequest], AsyncIterator[str]]
StatusListener = Callable[[GhostFixStatus], None]
FilesAppliedCallback = Callable[[Dict[str, str]], Union[None, Awaitable[Any]]]


class GhostFixEngine:
    """
    Fix/verify controller for one preview.

    `errors` is a PreviewErrorStore-like object (errors, preview_healthy,
    subscribe, clear_errors) and `workspace` a PreviewWorkspace-like object
    (files, apply_files).
    """

    def __init__(
        self,
        errors: Any,
        workspace: Any,
        requester: FixRequester,
        config: Optional[GhostFixConfig] = None,
        name: str = "preview",
        on_files_applied: Optional[FilesAppliedCallback] = None,
    ):
        self.errors = errors
        self.workspace = workspace
        self.requester = requester
        self.config = config or GhostFixConfig.from_settings()
        self.name = name
        self.on_files_applied = on_files_applied

        self.status = GhostFixStatus.IDLE
        self.attempt_count = 0
        self.history: List[FixAttempt] = []

        self._fix_task: Optional[asyncio.Task] = None
        self._verify_unsubscribe: Optional[Callable[[], None]] = None
        self._verifying_error: Optional[str] = None
        self._status_listeners: List[StatusListener] = []

        self._debounce_timer = PendingTimer(self.config.debounce_seconds, self._spawn_fix, name=f"ghost-fix-debounce:{name}")
        self._verify_timer = PendingTimer(self.config.verify_timeout_seconds, self._on_verify_timeout, name=f"ghost-fix-verify:{name}")
        self._success_timer = PendingTimer(self.config.success_display_seconds, self._on_success_elapsed, name=f"ghost-fix-success:{name}")

    @property
    def fix_task(self) -> Optional[asyncio.Task]:
        return self._fix_task

    # ==========================================
    # Triggers
    # ==========================================

    def handle_error(self) -> None:
        """A new preview error arrived; schedule a fix after errors settle"""
        if not self.workspace.files:
            return
        if self.status in (GhostFixStatus.FIXING, GhostFixStatus.VERIFYING):
            return
        if self.attempt_count >= self.config.max_attempts:
            self._set_status(GhostFixStatus.FAILED)
            return

        self._debounce_timer.arm(restart=True)

    def retry(self) -> bool:
        """Manual retry: reset attempts and fix the latest error right away"""
        if self.status in (GhostFixStatus.FIXING, GhostFixStatus.VERIFYING):
            return False
        if not self.errors.errors:
            return False

        logger.info(f"[GhostFix:{self.name}] Manual retry")
        self.history = []
        self.attempt_count = 0
        self._debounce_timer.cancel()
        self._spawn_fix()
        return True

    def dispose(self) -> None:
        """Stop everything in flight and return to idle; safe in any state"""
        self._debounce_timer.cancel()
        self._success_timer.cancel()
        self._cleanup_verification()
        if self._fix_task is not None and not self._fix_task.done():
            self._fix_task.cancel()
        self._fix_task = None
        self._set_status(GhostFixStatus.IDLE)

    # ==========================================
    # Status
    # ==========================================

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "attempts": self.attempt_count,
            "max_attempts": self.config.max_attempts,
            "history": [asdict(a) for a in self.history],
        }

    def _set_status(self, status: GhostFixStatus) -> None:
        if status == self.status:
            return
        logger.info(f"[GhostFix:{self.name}] {self.status.value} -> {status.value}")
        self.status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.log_error_with_context(e, context=f"GhostFix:{self.name} status listener")

    # ==========================================
    # Fix attempt
    # ==========================================

    def _spawn_fix(self) -> None:
        self._fix_task = asyncio.get_running_loop().create_task(
            self._start_fix(), name=f"ghost-fix:{self.name}"
        )

    async def _start_fix(self) -> None:
        errors = self.errors.errors
        if not errors:
            return
        latest = errors[-1]
        files = self.workspace.files
        if not files:
            return

        self._set_status(GhostFixStatus.FIXING)
        self.attempt_count += 1
        logger.info(
            f"[GhostFix:{self.name}] Attempt {self.attempt_count}/{self.config.max_attempts}: "
            f"{latest.message[:120]}"
        )

        try:
            request = GhostFixRequest(
                error=PreviewErrorIn(
                    message=latest.message,
                    is_build_error=latest.is_build_error,
                    stack=latest.stack,
                    line=latest.line,
                    col=latest.col,
                ),
                files=files,
                previous_attempts=[
                    FixAttemptSchema(error=a.error, attempt_number=a.attempt_number) for a in self.history
                ],
                classification_context=ErrorClassifier.build_fix_context(latest.message, files),
            )

            parts: List[str] = []
            async for chunk in self.requester(request):
                parts.append(chunk)

            fixed_files = extract_files("".join(parts))
            if not fixed_files:
                raise NoFileChangesError(attempt=self.attempt_count)

            self.workspace.apply_files(fixed_files)
            self.errors.clear_errors()
            self._set_status(GhostFixStatus.VERIFYING)
            self._wait_for_verification(latest.message)
            logger.info(f"[GhostFix:{self.name}] Applied {len(fixed_files)} file(s), verifying")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[GhostFix:{self.name}] Attempt {self.attempt_count} failed: {e}")
            self.history.append(FixAttempt(error=latest.message, attempt_number=len(self.history) + 1))
            if self.attempt_count >= self.config.max_attempts:
                self._set_status(GhostFixStatus.FAILED)
            else:
                self._set_status(GhostFixStatus.IDLE)
            return

        if self.on_files_applied is not None:
            try:
                result = self.on_files_applied(fixed_files)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"[GhostFix:{self.name}] files-applied callback failed: {e}")

    # ==========================================
    # Verification
    # ==========================================

    def _wait_for_verification(self, original_error: str) -> None:
        self._cleanup_verification()
        self._verifying_error = original_error
        self._verify_unsubscribe = self.errors.subscribe(self._on_verify_state)
        self._verify_timer.arm(restart=True)

    def _on_verify_state(self, state: Any, prev: Any) -> None:
        if self.status != GhostFixStatus.VERIFYING:
            return
        if len(state.errors) > len(prev.errors):
            self._on_fix_failed()
        elif state.preview_healthy and not state.errors:
            self._on_fix_success()

    def _on_verify_timeout(self) -> None:
        if self.status != GhostFixStatus.VERIFYING:
            return
        if self.errors.preview_healthy and not self.errors.errors:
            self._on_fix_success()
        else:
            self._on_fix_failed()

    def _on_fix_success(self) -> None:
        self._cleanup_verification()
        self.history = []
        self.attempt_count = 0
        self._set_status(GhostFixStatus.SUCCESS)
        self._success_timer.arm(restart=True)

    def _on_success_elapsed(self) -> None:
        if self.status == GhostFixStatus.SUCCESS:
            self._set_status(GhostFixStatus.IDLE)

    def _on_fix_failed(self) -> None:
        original_error = self._verifying_error or ""
        self._cleanup_verification()
        self.history.append(FixAttempt(error=original_error, attempt_number=len(self.history) + 1))

        if self.attempt_count >= self.config.max_attempts:
            self._set_status(GhostFixStatus.FAILED)
        else:
            # Automatic retry
            self._set_status(GhostFixStatus.IDLE)
            self.handle_error()

    def _cleanup_verification(self) -> None:
        if self._verify_unsubscribe is not None:
            self._verify_unsubscribe()
            self._verify_unsubscribe = None
        self._verify_timer.cancel()
        self._verifying_error = None
