"""
Generation Manager - in-process registry of streaming model responses

One GenerationSession per model response. The session buffers every chunk
so that any number of subscribers (a chat open in two tabs, a reconnecting
browser) can replay from an offset and then follow the live stream.

Lifecycle:
    start() -> streaming -> completed | error | cancelled -> evicted after
    GENERATION_CLEANUP_DELAY seconds

Status only moves forward: once terminal, nothing changes it again.
Persistence is best-effort; the in-memory session is authoritative until
finalization.
"""

import asyncio
import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.core.config import settings
from app.core.logging_config import logger
from app.models.chat import MessageRole
from app.models.generation import GenerationStatus
from app.modules.parser.message_parser import extract_files, strip_tool_activity
from app.schemas.stream_events import StreamEvent, TextDelta, ToolCall, ToolResult, ToolError
from app.services.generation_repository import GenerationRepository
from app.utils.claude_client import calculate_cost, chat_tools, serialize_tool_output
from app.utils.pending_timer import PendingTimer
from app.utils.system_prompts import get_system_prompt


Subscriber = Callable[[str, bool], None]

STALE_GENERATION_ERROR = "Server restarted during generation"
TOOL_ERROR_RESULT = "Tool execution failed"
AI_UPDATE_SNAPSHOT_TITLE = "AI Update"


@dataclass
class StartGenerationParams:
    chat_id: str
    user_id: str
    project_id: Optional[str]
    messages: List[Dict[str, Any]]
    model_id: Optional[str] = None
    provider: str = "anthropic"
    project_context: Optional[str] = None
    plan_mode: bool = False
    last_user_message: Optional[Dict[str, Any]] = None


def message_text(message: Optional[Dict[str, Any]]) -> str:
    """Plain text of a chat message whose content is a string or a list of blocks"""
    if not message:
        return ""
    content = message.get("content", "")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return ""


def _escape_attr(value: str) -> str:
    return value.replace('"', "&quot;")


@dataclass
class GenerationSession:
    """Live state of one model response"""
    id: str
    chat_id: str
    user_id: str
    project_id: Optional[str]
    model_id: Optional[str]
    provider: str
    input_messages: List[Dict[str, Any]]
    last_user_message: Optional[Dict[str, Any]] = None

    status: GenerationStatus = GenerationStatus.STREAMING
    chunks: List[str] = field(default_factory=list)
    full_content: str = ""
    last_flush_index: int = 0
    error: Optional[str] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    subscribers: List[Subscriber] = field(default_factory=list)
    task: Optional[asyncio.Task] = None
    flush_timer: Optional[PendingTimer] = None
    cleanup_timer: Optional[PendingTimer] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_streaming(self) -> bool:
        return self.status is GenerationStatus.STREAMING

    def transition(self, status: GenerationStatus) -> bool:
        """Move from streaming to a terminal status; refused once terminal"""
        if not self.is_streaming or status is GenerationStatus.STREAMING:
            return False
        self.status = status
        return True

    def append(self, chunk: str) -> None:
        self.chunks.append(chunk)
        self.full_content += chunk
        for subscriber in list(self.subscribers):
            self._deliver(subscriber, chunk, False)

    def notify_done(self) -> None:
        subscribers, self.subscribers = self.subscribers, []
        for subscriber in subscribers:
            self._deliver(subscriber, "", True)

    def _deliver(self, subscriber: Subscriber, chunk: str, done: bool) -> None:
        try:
            subscriber(chunk, done)
        except Exception as e:
            logger.warning(f"[GenerationManager:{self.id}] Subscriber failed: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation_id": self.id,
            "chat_id": self.chat_id,
            "status": self.status.value,
            "chunk_count": len(self.chunks),
            "error": self.error,
        }


class GenerationManager:
    """
    Registry of GenerationSessions.

    Constructed once at application startup and shut down with it; there
    is no module-level instance.
    """

    def __init__(
        self,
        repository: GenerationRepository,
        client: Any,
        flush_interval: Optional[float] = None,
        cleanup_delay: Optional[float] = None,
        tool_result_max_chars: Optional[int] = None,
        default_chat_title: Optional[str] = None,
    ):
        self.repository = repository
        self.client = client
        self.flush_interval = settings.GENERATION_DB_FLUSH_INTERVAL if flush_interval is None else flush_interval
        self.cleanup_delay = settings.GENERATION_CLEANUP_DELAY if cleanup_delay is None else cleanup_delay
        self.tool_result_max_chars = tool_result_max_chars or settings.GENERATION_TOOL_RESULT_MAX_CHARS
        self.default_chat_title = default_chat_title or settings.DEFAULT_CHAT_TITLE
        self._sessions: Dict[str, GenerationSession] = {}

    # ==========================================
    # Public API
    # ==========================================

    async def start(self, params: StartGenerationParams) -> str:
        """Persist a streaming row, register the session and spawn the stream loop"""
        model_id = params.model_id or settings.CLAUDE_DEFAULT_MODEL
        generation_id = await self.repository.create_generation(
            chat_id=params.chat_id,
            user_id=params.user_id,
            project_id=params.project_id,
            model_id=model_id,
            provider=params.provider,
        )

        session = GenerationSession(
            id=generation_id,
            chat_id=params.chat_id,
            user_id=params.user_id,
            project_id=params.project_id,
            model_id=model_id,
            provider=params.provider,
            input_messages=params.messages,
            last_user_message=params.last_user_message,
        )
        session.flush_timer = PendingTimer(
            self.flush_interval, lambda: self._flush(session), name=f"flush:{generation_id}"
        )
        session.cleanup_timer = PendingTimer(
            self.cleanup_delay, lambda: self._evict(generation_id), name=f"cleanup:{generation_id}"
        )

        self._sessions[generation_id] = session
        session.task = asyncio.create_task(self._run(session, params), name=f"generation:{generation_id}")

        logger.log_generation_event(generation_id, "started", status=session.status.value, chat_id=params.chat_id)
        return generation_id

    def get(self, generation_id: str) -> Optional[GenerationSession]:
        return self._sessions.get(generation_id)

    def subscribe(
        self,
        generation_id: str,
        from_chunk: int,
        callback: Subscriber,
    ) -> Optional[Callable[[], None]]:
        """
        Replay chunks from `from_chunk`, then follow the live stream.

        Returns None for an unknown session, otherwise an unsubscribe
        callable. A terminal session gets ("", True) right after the replay
        and is not registered.
        """
        session = self._sessions.get(generation_id)
        if session is None:
            return None

        for chunk in session.chunks[max(from_chunk, 0):]:
            callback(chunk, False)

        if not session.is_streaming:
            callback("", True)
            return lambda: None

        session.subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in session.subscribers:
                session.subscribers.remove(callback)

        return unsubscribe

    async def cancel(self, generation_id: str, user_id: str) -> bool:
        """Owner-only cancellation of a streaming session"""
        session = self._sessions.get(generation_id)
        if session is None or session.user_id != user_id:
            return False
        if not session.transition(GenerationStatus.CANCELLED):
            return False

        session.cancel_event.set()
        if session.task is not None and not session.task.done():
            session.task.cancel()
        await session.flush_timer.drain()

        session.last_flush_index = len(session.chunks)
        await self._best_effort(
            session,
            "cancel update",
            self.repository.update_generation(
                generation_id, status=GenerationStatus.CANCELLED, content=session.full_content
            ),
        )

        clean_text = strip_tool_activity(session.full_content)
        if clean_text.strip():
            await self._best_effort(
                session,
                "save partial message",
                self.repository.add_message(session.chat_id, MessageRole.ASSISTANT, clean_text),
            )

        session.notify_done()
        session.cleanup_timer.arm()
        logger.log_generation_event(generation_id, "cancelled", status=session.status.value)
        return True

    def find_active(self, chat_id: str, user_id: str) -> Optional[GenerationSession]:
        """First streaming session for (chat, user); uniqueness is not enforced"""
        for session in self._sessions.values():
            if session.chat_id == chat_id and session.user_id == user_id and session.is_streaming:
                return session
        return None

    async def mark_stale_on_startup(self) -> int:
        """Streaming rows left over from a previous process can never finish"""
        try:
            count = await self.repository.mark_streaming_as_error(STALE_GENERATION_ERROR)
        except Exception as e:
            logger.log_error_with_context(e, context="GenerationManager.mark_stale_on_startup")
            return 0
        if count:
            logger.warning(f"[GenerationManager] Marked {count} stale generation(s) as error")
        return count

    async def shutdown(self) -> None:
        """Cancel every running stream loop and pending timer"""
        tasks = [s.task for s in self._sessions.values() if s.task is not None and not s.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for session in self._sessions.values():
            session.flush_timer.cancel()
            session.cleanup_timer.cancel()
        self._sessions.clear()
        logger.info(f"[GenerationManager] Shutdown complete ({len(tasks)} stream(s) stopped)")

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # ==========================================
    # Stream loop
    # ==========================================

    async def _run(self, session: GenerationSession, params: StartGenerationParams) -> None:
        try:
            events = self.client.stream_chat(
                messages=params.messages,
                system_prompt=get_system_prompt(params.project_context, params.plan_mode),
                model=session.model_id,
                tools=chat_tools(),
                cancel_event=session.cancel_event,
            )
            try:
                async for event in events:
                    if not session.is_streaming:
                        break
                    chunk = self._to_chunk(event)
                    if chunk:
                        session.append(chunk)
                        session.flush_timer.arm()
            finally:
                aclose = getattr(events, "aclose", None)
                if aclose is not None:
                    await aclose()

            if session.transition(GenerationStatus.COMPLETED):
                await session.flush_timer.drain()
                await self._finalize(session)

        except asyncio.CancelledError:
            if session.status is GenerationStatus.CANCELLED:
                return
            raise
        except Exception as e:
            if session.status is GenerationStatus.CANCELLED:
                return
            logger.log_error_with_context(e, context=f"GenerationManager:{session.id}")
            if session.transition(GenerationStatus.ERROR):
                session.error = str(e) or type(e).__name__
                await session.flush_timer.drain()
                await self._best_effort(
                    session,
                    "error update",
                    self.repository.update_generation(
                        session.id,
                        status=GenerationStatus.ERROR,
                        content=session.full_content,
                        error=session.error,
                    ),
                )
                logger.log_generation_event(session.id, "failed", status=session.status.value)
        finally:
            session.flush_timer.cancel()
            session.notify_done()
            session.cleanup_timer.arm()

    def _to_chunk(self, event: StreamEvent) -> str:
        """Wire-format chunk for one model event"""
        if isinstance(event, TextDelta):
            return event.text

        if isinstance(event, ToolCall):
            args = json.dumps(event.input, separators=(",", ":"), default=str)
            return f'<tool-activity name="{event.tool_name}" status="calling" args="{_escape_attr(args)}" />\n'

        if isinstance(event, ToolResult):
            result = serialize_tool_output(event.output)
            if len(result) > self.tool_result_max_chars:
                result = result[:self.tool_result_max_chars] + "..."
            return f'<tool-activity name="{event.tool_name}" status="complete" result="{_escape_attr(result)}" />\n'

        if isinstance(event, ToolError):
            return f'<tool-activity name="{event.tool_name}" status="error" result="{TOOL_ERROR_RESULT}" />\n'

        return ""

    # ==========================================
    # Persistence
    # ==========================================

    async def _finalize(self, session: GenerationSession) -> None:
        """Runs once, after a stream ends normally"""
        clean_text = strip_tool_activity(session.full_content)

        await self._best_effort(
            session,
            "save message",
            self.repository.add_message(session.chat_id, MessageRole.ASSISTANT, clean_text),
        )

        if len(session.input_messages) <= 2:
            title = message_text(session.last_user_message)[:80] or self.default_chat_title
            await self._best_effort(
                session,
                "rename chat",
                self.repository.rename_chat_if_default(session.chat_id, title, self.default_chat_title),
            )

        # Rough estimate: ~4 characters per token
        input_tokens = math.ceil(len(json.dumps(session.input_messages, separators=(",", ":"), default=str)) / 4)
        output_tokens = math.ceil(len(session.full_content) / 4)
        cost = calculate_cost(input_tokens, output_tokens, session.model_id)
        logger.log_agent_event(
            "generation",
            "usage estimated",
            tokens_used=input_tokens + output_tokens,
            generation_id=session.id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
        )
        await self._best_effort(
            session,
            "log usage",
            self.repository.log_usage(
                user_id=session.user_id,
                project_id=session.project_id,
                model=session.model_id,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_usd=cost,
            ),
        )

        files = extract_files(clean_text)
        if files and session.project_id:
            await self._best_effort(
                session,
                "save files",
                self.repository.save_project_files(
                    session.project_id, files, AI_UPDATE_SNAPSHOT_TITLE, chat_id=session.chat_id
                ),
            )

        session.last_flush_index = len(session.chunks)
        await self._best_effort(
            session,
            "complete update",
            self.repository.update_generation(session.id, status=GenerationStatus.COMPLETED, content=clean_text),
        )
        logger.log_generation_event(
            session.id, "completed", status=session.status.value, chunks=len(session.chunks), files=len(files)
        )

    async def _flush(self, session: GenerationSession) -> None:
        if session.last_flush_index >= len(session.chunks):
            return
        session.last_flush_index = len(session.chunks)
        await self._best_effort(
            session,
            "flush",
            self.repository.update_generation(session.id, content=session.full_content),
        )

    async def _best_effort(self, session: GenerationSession, label: str, operation) -> None:
        try:
            await operation
        except Exception as e:
            logger.warning(f"[GenerationManager:{session.id}] {label} failed: {type(e).__name__}: {e}")

    def _evict(self, generation_id: str) -> None:
        if self._sessions.pop(generation_id, None) is not None:
            logger.debug(f"[GenerationManager:{generation_id}] Evicted")
