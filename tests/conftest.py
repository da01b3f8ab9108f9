"""
Shared Test Fixtures
====================

The app runs against a mocked async session and a fake Redis client,
so tests need neither PostgreSQL nor Redis.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.db.session import get_db
from app.dependencies import get_current_user
from app.main import app
from app.models.user import User

USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


def make_result(scalar=None, rows=None, count=0) -> MagicMock:
    """A stand-in for ``AsyncSession.execute()``'s Result."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar_one.return_value = count
    result.scalars.return_value.all.return_value = list(rows or [])
    result.all.return_value = list(rows or [])
    return result


def make_session() -> AsyncMock:
    """AsyncSession mock whose queries find nothing unless told otherwise."""
    session = AsyncMock()
    session.add = MagicMock()
    session.begin_nested = MagicMock(return_value=AsyncMock())
    session.execute.return_value = make_result()
    session.get.return_value = None
    return session


@pytest.fixture
def db_session() -> AsyncMock:
    return make_session()


@pytest.fixture
def current_user() -> User:
    return User(
        user_id=USER_ID,
        email="owner@example.com",
        admin=False,
        agent_auto_mode=True,
        agent_name="Clawd",
        agent_emoji="🦀",
    )


@pytest.fixture(autouse=True)
def fake_redis():
    """Redis client shared by the rate limiter and broadcasts."""
    client = AsyncMock()
    client.get.return_value = None
    client.ttl.return_value = 60
    client.publish.return_value = 1
    with patch("app.core.rate_limit.get_redis", new=AsyncMock(return_value=client)), \
         patch("app.services.broadcast.get_redis", new=AsyncMock(return_value=client)):
        yield client


@pytest_asyncio.fixture
async def client(db_session):
    """Unauthenticated client; the real auth dependency runs."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_client(client, current_user):
    """Client signed in as ``current_user``."""
    app.dependency_overrides[get_current_user] = lambda: current_user
    yield client
