"""
Pytest configuration and fixtures for backend tests.
"""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DEBUG", "true")

import pytest
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from clawkpit.core import rate_limit
from clawkpit.core.database import Base, get_db
from clawkpit.models.user import User
from clawkpit.services.board_broadcast import board_hub
from clawkpit.services.caller import CallerIdentity
from tests.factories import create_test_user, create_session_token, create_api_token


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(autouse=True)
def reset_process_state():
    """Quotas and open channels are process-wide; start every test clean."""
    rate_limit.reset()
    board_hub._channels.clear()
    yield


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def file_sessions(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory over a file-backed database.

    Each session gets its own connection, so tasks run with
    ``asyncio.gather`` really contend for the database.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'board.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    return await create_test_user(db_session)


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """A second board owner, for isolation checks."""
    return await create_test_user(db_session, email="other@example.com", name="Other User")


@pytest.fixture
def user_caller(test_user: User) -> CallerIdentity:
    return CallerIdentity.session(test_user.id)


@pytest.fixture
def agent_caller(test_user: User) -> CallerIdentity:
    return CallerIdentity.api_key(test_user.id)


@pytest.fixture
async def auth_headers(db_session: AsyncSession, test_user: User) -> dict:
    """Session (human) headers for the test user."""
    token = await create_session_token(db_session, test_user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def agent_headers(db_session: AsyncSession, test_user: User) -> dict:
    """API key (agent) headers for the test user."""
    token = await create_api_token(db_session, test_user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def other_headers(db_session: AsyncSession, other_user: User) -> dict:
    token = await create_session_token(db_session, other_user)
    return {"Authorization": f"Bearer {token}"}
