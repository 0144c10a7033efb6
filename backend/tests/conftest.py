"""
SparkBuild - Test Configuration and Fixtures
"""
import os
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from faker import Faker

# Set testing environment
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test.db'
os.environ['ANTHROPIC_API_KEY'] = 'test-api-key'

from app.main import app
from app.core.database import Base
from app.models.chat import Chat
from app.models.project_file import ProjectFiles
from app.services.generation_manager import GenerationManager
from app.services.generation_repository import GenerationRepository
from app.services.ghost_fix_engine import GhostFixConfig
from app.services.ghost_fix_service import GhostFixService
from app.services.preview_state import PreviewSessionRegistry
import app.models as _models  # noqa: F401

from mocks.mock_claude import MockClaudeClient
from mocks.mock_fix_requester import MockFixRequester
from mocks.mock_repository import MockGenerationRepository

fake = Faker()

# Test database setup
TEST_DATABASE_URL = 'sqlite+aiosqlite:///./test.db'

# Short timers so lifecycle tests finish quickly; verification stays open
# long enough for a test to report health over HTTP
FAST_FIX_CONFIG = GhostFixConfig(
    max_attempts=3,
    debounce_seconds=0.01,
    verify_timeout_seconds=1.0,
    success_display_seconds=0.05,
)


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh tables for each test"""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def repository(session_factory) -> GenerationRepository:
    return GenerationRepository(session_factory)


@pytest.fixture
def stored_chat(session_factory):
    """Read a chat row straight from the test database"""
    async def lookup(chat_id: str):
        async with session_factory() as session:
            return await session.get(Chat, chat_id)
    return lookup


@pytest.fixture
def stored_files(session_factory):
    """Read a project's current file map straight from the test database"""
    async def lookup(project_id: str):
        async with session_factory() as session:
            row = await session.get(ProjectFiles, project_id)
            return dict(row.files) if row else {}
    return lookup


@pytest.fixture
def mock_repository() -> MockGenerationRepository:
    return MockGenerationRepository()


@pytest.fixture
def mock_claude() -> MockClaudeClient:
    return MockClaudeClient()


@pytest.fixture
async def manager(mock_repository, mock_claude) -> AsyncGenerator[GenerationManager, None]:
    manager = GenerationManager(
        mock_repository,
        mock_claude,
        flush_interval=0.01,
        cleanup_delay=60,
    )
    yield manager
    await manager.shutdown()


@pytest.fixture
def mock_fix_requester() -> MockFixRequester:
    return MockFixRequester()


@pytest.fixture
async def client(repository, mock_claude, mock_fix_requester) -> AsyncGenerator[AsyncClient, None]:
    """Test client with services wired to the test database and mocks"""
    manager = GenerationManager(repository, mock_claude, flush_interval=0.01, cleanup_delay=60)
    registry = PreviewSessionRegistry(mock_fix_requester, repository=repository, config=FAST_FIX_CONFIG)

    app.state.repository = repository
    app.state.generation_manager = manager
    app.state.ghost_fix_service = GhostFixService(mock_claude)
    app.state.preview_registry = registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    registry.dispose_all()
    await manager.shutdown()


@pytest.fixture
def user_id() -> str:
    return fake.uuid4()


@pytest.fixture
def auth_headers(user_id: str) -> dict:
    """Identity header for the test user"""
    return {'X-User-Id': user_id}
