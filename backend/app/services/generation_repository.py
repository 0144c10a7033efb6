"""
Generation Repository - durable storage for chats, generations and project files

Every method opens its own session so it can be called from background
tasks (stream loops, flush timers) that outlive the request that started
them. Methods raise on database errors; best-effort callers catch.
"""

from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session_local
from app.core.logging_config import logger
from app.models.chat import Chat, ChatMessage, MessageRole
from app.models.generation import Generation, GenerationStatus
from app.models.project_file import ProjectFiles, FileSnapshot
from app.models.usage import UsageLog


class GenerationRepository:
    """SQLAlchemy-backed storage used by the generation manager and preview registry"""

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self._session_factory = session_factory

    def _session(self) -> AsyncSession:
        factory = self._session_factory or get_session_local()
        return factory()

    # ==========================================
    # Chats & messages
    # ==========================================

    async def ensure_chat(
        self,
        chat_id: str,
        user_id: str,
        project_id: Optional[str] = None,
        title: str = "New Chat",
    ) -> Chat:
        """Return the chat, creating it on first use"""
        async with self._session() as session:
            chat = await session.get(Chat, chat_id)
            if chat is None:
                chat = Chat(id=chat_id, user_id=user_id, project_id=project_id, title=title)
                session.add(chat)
                await session.commit()
                await session.refresh(chat)
                logger.debug(f"Created chat {chat_id} for user {user_id}")
            return chat

    async def add_message(self, chat_id: str, role: MessageRole, content: str) -> ChatMessage:
        async with self._session() as session:
            message = ChatMessage(
                chat_id=chat_id,
                role=role.value if isinstance(role, MessageRole) else role,
                content=content,
                created_at=datetime.utcnow(),
            )
            session.add(message)
            await session.commit()
            await session.refresh(message)
            return message

    async def rename_chat_if_default(self, chat_id: str, title: str, default_title: str) -> bool:
        """Set the title only while the chat still carries the default one"""
        async with self._session() as session:
            result = await session.execute(
                update(Chat)
                .where(Chat.id == chat_id, Chat.title == default_title)
                .values(title=title, updated_at=datetime.utcnow())
            )
            await session.commit()
            return result.rowcount > 0

    # ==========================================
    # Generations
    # ==========================================

    async def create_generation(
        self,
        chat_id: str,
        user_id: str,
        project_id: Optional[str],
        model_id: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> str:
        async with self._session() as session:
            generation = Generation(
                chat_id=chat_id,
                user_id=user_id,
                project_id=project_id,
                status=GenerationStatus.STREAMING.value,
                content="",
                model_id=model_id,
                provider=provider,
            )
            session.add(generation)
            await session.commit()
            await session.refresh(generation)
            return str(generation.id)

    async def get_generation(self, generation_id: str) -> Optional[Generation]:
        async with self._session() as session:
            return await session.get(Generation, generation_id)

    async def update_generation(
        self,
        generation_id: str,
        status: Optional[GenerationStatus] = None,
        content: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Partial update; a terminal status also stamps completed_at"""
        values: Dict[str, object] = {}
        if status is not None:
            values["status"] = status.value
            if status.is_terminal:
                values["completed_at"] = datetime.utcnow()
        if content is not None:
            values["content"] = content
        if error is not None:
            values["error"] = error
        if not values:
            return

        async with self._session() as session:
            await session.execute(
                update(Generation).where(Generation.id == generation_id).values(**values)
            )
            await session.commit()

    async def find_streaming_generation(self, chat_id: str, user_id: str) -> Optional[Generation]:
        """Most recent durable row still marked streaming for (chat, user)"""
        async with self._session() as session:
            result = await session.execute(
                select(Generation)
                .where(
                    Generation.chat_id == chat_id,
                    Generation.user_id == user_id,
                    Generation.status == GenerationStatus.STREAMING.value,
                )
                .order_by(Generation.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def mark_streaming_as_error(self, error: str) -> int:
        """Force every streaming row to error; returns the number of rows touched"""
        async with self._session() as session:
            result = await session.execute(
                update(Generation)
                .where(Generation.status == GenerationStatus.STREAMING.value)
                .values(
                    status=GenerationStatus.ERROR.value,
                    error=error,
                    completed_at=datetime.utcnow(),
                )
            )
            await session.commit()
            return result.rowcount or 0

    # ==========================================
    # Project files
    # ==========================================

    async def save_project_files(
        self,
        project_id: str,
        files: Dict[str, str],
        snapshot_title: str,
        chat_id: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Merge `files` over the stored map, then record the merged map as an
        immutable snapshot. Returns the merged map.
        """
        async with self._session() as session:
            row = await session.get(ProjectFiles, project_id)
            merged = {**(row.files if row else {}), **files}

            if row is None:
                session.add(ProjectFiles(project_id=project_id, files=merged))
            else:
                row.files = merged
                row.updated_at = datetime.utcnow()

            session.add(FileSnapshot(
                chat_id=chat_id,
                project_id=project_id,
                title=snapshot_title,
                files=merged,
                file_count=len(merged),
            ))
            await session.commit()

        logger.info(f"[GenerationRepository] Saved {len(files)} file(s) to project {project_id} ({snapshot_title})")
        return merged

    # ==========================================
    # Usage
    # ==========================================

    async def log_usage(
        self,
        user_id: str,
        project_id: Optional[str],
        model: Optional[str],
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
    ) -> None:
        async with self._session() as session:
            session.add(UsageLog(
                user_id=user_id,
                project_id=project_id,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_usd=round(cost_usd, 6),
            ))
            await session.commit()
