"""
Unit Tests for GenerationRepository (SQLite via aiosqlite)
"""
import asyncio

from sqlalchemy import select

from app.models.chat import ChatMessage, MessageRole
from app.models.generation import GenerationStatus
from app.models.project_file import FileSnapshot
from app.models.usage import UsageLog


class TestChats:

    async def test_ensure_chat_creates_once(self, repository):
        chat = await repository.ensure_chat("c1", "u1", project_id="p1")
        again = await repository.ensure_chat("c1", "u1", title="Other")

        assert chat.title == "New Chat"
        assert chat.project_id == "p1"
        assert again.title == "New Chat"

    async def test_ensure_chat_persists_row(self, repository, stored_chat):
        await repository.ensure_chat("c1", "u1", project_id="p1")

        chat = await stored_chat("c1")
        assert chat.user_id == "u1"
        assert chat.project_id == "p1"
        assert await stored_chat("missing") is None

    async def test_add_message(self, repository, session_factory):
        await repository.ensure_chat("c1", "u1")
        await repository.add_message("c1", MessageRole.USER, "hello")
        await asyncio.sleep(0.01)
        await repository.add_message("c1", "assistant", "hi")

        async with session_factory() as session:
            rows = (await session.execute(select(ChatMessage).order_by(ChatMessage.created_at))).scalars().all()

        assert [(m.role, m.content) for m in rows] == [("user", "hello"), ("assistant", "hi")]

    async def test_rename_only_default_title(self, repository, stored_chat):
        await repository.ensure_chat("c1", "u1")

        assert await repository.rename_chat_if_default("c1", "Todo app", "New Chat") is True
        assert await repository.rename_chat_if_default("c1", "Again", "New Chat") is False
        assert (await stored_chat("c1")).title == "Todo app"


class TestGenerations:

    async def test_create_and_get(self, repository):
        generation_id = await repository.create_generation("c1", "u1", "p1", model_id="m", provider="anthropic")

        row = await repository.get_generation(generation_id)
        assert row.status == GenerationStatus.STREAMING.value
        assert row.content == ""
        assert row.model_id == "m"
        assert row.completed_at is None

    async def test_partial_update_keeps_other_fields(self, repository):
        generation_id = await repository.create_generation("c1", "u1", None)

        await repository.update_generation(generation_id, content="partial")
        await repository.update_generation(generation_id)
        row = await repository.get_generation(generation_id)

        assert row.content == "partial"
        assert row.status == GenerationStatus.STREAMING.value

    async def test_terminal_update_stamps_completed_at(self, repository):
        generation_id = await repository.create_generation("c1", "u1", None)

        await repository.update_generation(generation_id, status=GenerationStatus.ERROR, error="boom")
        row = await repository.get_generation(generation_id)

        assert row.status == "error"
        assert row.error == "boom"
        assert row.completed_at is not None

    async def test_find_streaming_generation_returns_latest(self, repository):
        await repository.create_generation("c1", "u1", None)
        await asyncio.sleep(0.01)
        latest = await repository.create_generation("c1", "u1", None)
        await repository.create_generation("c1", "someone-else", None)
        done = await repository.create_generation("c2", "u1", None)
        await repository.update_generation(done, status=GenerationStatus.COMPLETED)

        row = await repository.find_streaming_generation("c1", "u1")

        assert row.id == latest
        assert await repository.find_streaming_generation("c2", "u1") is None

    async def test_mark_streaming_as_error(self, repository):
        first = await repository.create_generation("c1", "u1", None)
        await repository.create_generation("c2", "u2", None)
        done = await repository.create_generation("c3", "u1", None)
        await repository.update_generation(done, status=GenerationStatus.COMPLETED)

        count = await repository.mark_streaming_as_error("Server restarted")

        assert count == 2
        row = await repository.get_generation(first)
        assert row.status == "error"
        assert row.error == "Server restarted"
        assert (await repository.get_generation(done)).status == "completed"


class TestProjectFiles:

    async def test_projects_are_kept_apart(self, repository, stored_files):
        await repository.save_project_files("p1", {"a.ts": "1"}, "AI Update")

        assert await stored_files("p1") == {"a.ts": "1"}
        assert await stored_files("p2") == {}

    async def test_save_merges_and_snapshots(self, repository, session_factory, stored_files):
        await repository.save_project_files("p1", {"a.ts": "1", "b.ts": "2"}, "AI Update", chat_id="c1")
        await asyncio.sleep(0.01)
        merged = await repository.save_project_files("p1", {"b.ts": "two"}, "Ghost Fix")

        assert merged == {"a.ts": "1", "b.ts": "two"}
        assert await stored_files("p1") == merged

        async with session_factory() as session:
            snapshots = (await session.execute(
                select(FileSnapshot).order_by(FileSnapshot.created_at)
            )).scalars().all()

        assert [s.title for s in snapshots] == ["AI Update", "Ghost Fix"]
        assert snapshots[0].files == {"a.ts": "1", "b.ts": "2"}
        assert snapshots[0].chat_id == "c1"
        assert snapshots[1].file_count == 2


class TestUsage:

    async def test_log_usage(self, repository, session_factory):
        await repository.log_usage("u1", "p1", "claude-sonnet", 100, 250, 0.0041234567)

        async with session_factory() as session:
            row = (await session.execute(select(UsageLog))).scalar_one()

        assert row.input_tokens == 100
        assert row.output_tokens == 250
        assert row.cost_usd == 0.004123
