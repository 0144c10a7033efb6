"""
In-memory stand-in for GenerationRepository

Records every call; any method named in `failing` raises instead.
Content-only updates (debounced flushes) wait `flush_delay` seconds
before they land, like a slow commit.
"""
import asyncio
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Set

from app.core.types import generate_uuid
from app.models.generation import GenerationStatus


class RepositoryDown(Exception):
    pass


class MockGenerationRepository:

    def __init__(self):
        self.chats: Dict[str, SimpleNamespace] = {}
        self.messages: List[SimpleNamespace] = []
        self.generations: Dict[str, SimpleNamespace] = {}
        self.project_files: Dict[str, Dict[str, str]] = {}
        self.snapshots: List[SimpleNamespace] = []
        self.usage: List[Dict[str, Any]] = []
        self.updates: List[Dict[str, Any]] = []
        self.failing: Set[str] = set()
        self.flush_delay = 0.0

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise RepositoryDown(f"{name} unavailable")

    async def ensure_chat(self, chat_id, user_id, project_id=None, title="New Chat"):
        self._check("ensure_chat")
        if chat_id not in self.chats:
            self.chats[chat_id] = SimpleNamespace(id=chat_id, user_id=user_id, project_id=project_id, title=title)
        return self.chats[chat_id]

    async def add_message(self, chat_id, role, content):
        self._check("add_message")
        message = SimpleNamespace(chat_id=chat_id, role=getattr(role, "value", role), content=content)
        self.messages.append(message)
        return message

    async def rename_chat_if_default(self, chat_id, title, default_title):
        self._check("rename_chat_if_default")
        chat = self.chats.get(chat_id)
        if chat is None or chat.title != default_title:
            return False
        chat.title = title
        return True

    async def create_generation(self, chat_id, user_id, project_id, model_id=None, provider=None):
        self._check("create_generation")
        generation_id = generate_uuid()
        self.generations[generation_id] = SimpleNamespace(
            id=generation_id,
            chat_id=chat_id,
            user_id=user_id,
            project_id=project_id,
            status=GenerationStatus.STREAMING.value,
            content="",
            error=None,
            model_id=model_id,
            provider=provider,
            created_at=datetime.utcnow(),
            completed_at=None,
        )
        return generation_id

    async def get_generation(self, generation_id):
        self._check("get_generation")
        return self.generations.get(generation_id)

    async def update_generation(self, generation_id, status=None, content=None, error=None):
        self._check("update_generation")
        await asyncio.sleep(self.flush_delay if status is None else 0)
        self.updates.append({"id": generation_id, "status": status, "content": content, "error": error})
        row = self.generations.get(generation_id)
        if row is None:
            return
        if status is not None:
            row.status = status.value
            if status.is_terminal:
                row.completed_at = datetime.utcnow()
        if content is not None:
            row.content = content
        if error is not None:
            row.error = error

    async def find_streaming_generation(self, chat_id, user_id):
        rows = [
            g for g in self.generations.values()
            if g.chat_id == chat_id and g.user_id == user_id and g.status == GenerationStatus.STREAMING.value
        ]
        return max(rows, key=lambda g: g.created_at) if rows else None

    async def mark_streaming_as_error(self, error):
        self._check("mark_streaming_as_error")
        count = 0
        for row in self.generations.values():
            if row.status == GenerationStatus.STREAMING.value:
                row.status = GenerationStatus.ERROR.value
                row.error = error
                count += 1
        return count

    async def save_project_files(self, project_id, files, snapshot_title, chat_id=None):
        self._check("save_project_files")
        merged = {**self.project_files.get(project_id, {}), **files}
        self.project_files[project_id] = merged
        self.snapshots.append(SimpleNamespace(
            project_id=project_id, chat_id=chat_id, title=snapshot_title, files=dict(merged)
        ))
        return merged

    async def log_usage(self, user_id, project_id, model, input_tokens, output_tokens, cost_usd):
        self._check("log_usage")
        self.usage.append({
            "user_id": user_id,
            "project_id": project_id,
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost_usd": cost_usd,
        })

    def content_updates(self, generation_id: str) -> List[Optional[str]]:
        return [u["content"] for u in self.updates if u["id"] == generation_id and u["status"] is None]
