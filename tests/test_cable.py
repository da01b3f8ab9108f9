"""
Cable WebSocket Tests
=====================

Subscription rejections for the real-time channels:
- 4401 when the token is missing or unknown
- 4404 when the board or task belongs to someone else
"""

from contextlib import asynccontextmanager
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.main import app
from app.models.user import User
from conftest import USER_ID, make_session


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

CHANNELS = ("kanban", "agent_activity", "chat")


def _patch_session(session):
    @asynccontextmanager
    async def open_session():
        yield session

    return patch("app.api.v1.cable.get_session_factory", return_value=open_session)


def _patch_resolve_token(user):
    return patch("app.api.v1.cable.resolve_token", new=AsyncMock(return_value=(user, "web")))


def _close_code(url: str) -> int:
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(url) as websocket:
                websocket.receive_text()
    return exc.value.code


@pytest.fixture(autouse=True)
def offline_lifespan():
    """Skip the database and Redis connections made at startup."""
    with patch("app.main.init_db", new=AsyncMock()), \
         patch("app.main.init_redis", new=AsyncMock()), \
         patch("app.main.close_db", new=AsyncMock()), \
         patch("app.main.close_redis", new=AsyncMock()):
        yield


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------

class TestCableAuthorization:
    """Tests for cable subscription checks."""

    @pytest.mark.parametrize("channel", CHANNELS)
    def test_missing_token(self, channel):
        session = make_session()

        with _patch_session(session):
            code = _close_code(f"/api/v1/cable/{channel}/{uuid.uuid4()}")

        assert code == 4401
        session.execute.assert_not_awaited()

    @pytest.mark.parametrize("channel", CHANNELS)
    def test_unknown_token(self, channel):
        with _patch_session(make_session()), _patch_resolve_token(None) as resolve:
            code = _close_code(f"/api/v1/cable/{channel}/{uuid.uuid4()}?token=not-a-real-token")

        assert code == 4401
        assert resolve.await_args.args[0] == "not-a-real-token"

    @pytest.mark.parametrize("channel", CHANNELS)
    def test_resource_of_another_user(self, channel):
        owner = User(user_id=USER_ID, email="owner@example.com")
        session = make_session()

        with _patch_session(session), _patch_resolve_token(owner):
            code = _close_code(f"/api/v1/cable/{channel}/{uuid.uuid4()}?token=valid-token")

        assert code == 4404
        session.execute.assert_awaited_once()
        session.commit.assert_not_awaited()
