"""
Authentication Tests
====================

Tests for token helpers, API token verification and the bearer
authentication dependency:
- JWT vs API token dispatch
- 401 responses with WWW-Authenticate
- last_used_at debounce
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from app.core.security import (
    create_access_token,
    create_refresh_token,
    create_tokens_for_user,
    decode_token,
    digest_token,
    extract_bearer_token,
    generate_api_token,
    generate_numeric_code,
    looks_like_jwt,
    secure_compare,
)
from app.models.api_token import ApiToken
from app.models.user import User
from app.services.api_token_service import ApiTokenService
from conftest import USER_ID, make_result, make_session


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_user(**overrides) -> User:
    fields = {"user_id": USER_ID, "email": "owner@example.com", "agent_auto_mode": True}
    fields.update(overrides)
    return User(**fields)


def _make_token(user: User, **overrides) -> ApiToken:
    token = ApiToken.build(user.user_id, name="Laptop")
    token.user = user
    for key, value in overrides.items():
        setattr(token, key, value)
    return token


NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------

class TestBearerParsing:
    """Tests for extract_bearer_token and looks_like_jwt."""

    def test_extracts_token(self):
        assert extract_bearer_token("Bearer abc123") == "abc123"

    def test_rejects_other_schemes(self):
        assert extract_bearer_token("Token abc123") is None
        assert extract_bearer_token("Bearer") is None
        assert extract_bearer_token(None) is None
        assert extract_bearer_token("") is None

    def test_jwt_shape(self):
        jwt = create_access_token({"sub": str(USER_ID)})
        assert looks_like_jwt(jwt)
        assert not looks_like_jwt(generate_api_token())


class TestJwt:
    """Tests for access and refresh tokens."""

    def test_access_token_round_trip(self):
        payload = decode_token(create_access_token({"sub": "user-1"}))
        assert payload["sub"] == "user-1"
        assert payload["type"] == "access"

    def test_refresh_token_type(self):
        assert decode_token(create_refresh_token({"sub": "user-1"}))["type"] == "refresh"

    def test_expired_token_is_rejected(self):
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-1))
        assert decode_token(token) is None

    def test_garbage_is_rejected(self):
        assert decode_token("not.a.jwt") is None

    def test_token_pair(self):
        tokens = create_tokens_for_user(USER_ID, "owner@example.com")
        assert tokens["token_type"] == "bearer"
        assert tokens["expires_in"] > 0
        assert decode_token(tokens["refresh_token"])["sub"] == str(USER_ID)


class TestOpaqueTokens:
    """Tests for API token generation and comparison."""

    def test_api_token_is_64_hex(self):
        token = generate_api_token()
        assert len(token) == 64
        int(token, 16)

    def test_digest_is_stable(self):
        assert digest_token("abc") == digest_token("abc")
        assert len(digest_token("abc")) == 64

    def test_numeric_code(self):
        code = generate_numeric_code()
        assert len(code) == 6
        assert code.isdigit()

    def test_secure_compare(self):
        assert secure_compare("secret", "secret")
        assert not secure_compare("secret", "other")
        assert not secure_compare("", "")
        assert not secure_compare(None, "secret")


# ---------------------------------------------------------------------------
# ApiToken model
# ---------------------------------------------------------------------------

class TestApiTokenModel:
    """Tests for ApiToken helpers."""

    def test_build_stores_only_digest(self):
        token = ApiToken.build(USER_ID)
        assert token.token_digest == digest_token(token.raw_token)
        assert token.token_prefix == token.raw_token[:8]
        assert token.name == "Default"

    def test_masked_token(self):
        token = ApiToken.build(USER_ID)
        assert token.masked_token == f"{token.raw_token[:8]}••••••••"
        assert token.to_api_dict()["token"] == token.masked_token
        assert token.to_api_dict(include_raw=True)["token"] == token.raw_token

    def test_expiry(self):
        token = ApiToken.build(USER_ID, expires_at=NOW)
        assert token.is_expired(NOW)
        assert not token.is_expired(NOW - timedelta(seconds=1))
        assert not ApiToken.build(USER_ID).is_expired(NOW)

    def test_touch_debounce(self):
        token = ApiToken.build(USER_ID)
        assert token.needs_touch(NOW)
        token.last_used_at = NOW - timedelta(seconds=30)
        assert not token.needs_touch(NOW)
        token.last_used_at = NOW - timedelta(seconds=61)
        assert token.needs_touch(NOW)


# ---------------------------------------------------------------------------
# ApiTokenService.authenticate
# ---------------------------------------------------------------------------

class TestAuthenticate:
    """Tests for resolving raw API tokens."""

    @pytest.mark.asyncio
    async def test_blank_token(self):
        db = make_session()
        assert await ApiTokenService(db).authenticate("   ") is None
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_token(self):
        db = make_session()
        assert await ApiTokenService(db).authenticate("deadbeef") is None

    @pytest.mark.asyncio
    async def test_valid_token_touches_last_used(self):
        user = _make_user()
        token = _make_token(user)
        db = make_session()
        db.execute.return_value = make_result(scalar=token)

        result = await ApiTokenService(db).authenticate(token.raw_token)

        assert result is user
        assert token.last_used_at is not None
        assert user.agent_last_active_at == token.last_used_at
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_recent_use_is_not_rewritten(self):
        user = _make_user()
        recent = datetime.now(timezone.utc) - timedelta(seconds=10)
        token = _make_token(user, last_used_at=recent)
        db = make_session()
        db.execute.return_value = make_result(scalar=token)

        assert await ApiTokenService(db).authenticate(token.raw_token) is user
        assert token.last_used_at == recent
        db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_token(self):
        user = _make_user()
        token = _make_token(user, expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        db = make_session()
        db.execute.return_value = make_result(scalar=token)

        assert await ApiTokenService(db).authenticate(token.raw_token) is None


# ---------------------------------------------------------------------------
# Bearer dependency
# ---------------------------------------------------------------------------

class TestCurrentUserDependency:
    """Tests for get_current_user through a protected route."""

    @pytest.mark.asyncio
    async def test_missing_header(self, client: AsyncClient):
        response = await client.get("/api/v1/tasks")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_malformed_header(self, client: AsyncClient):
        response = await client.get("/api/v1/tasks", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_jwt_goes_to_auth_service(self, client: AsyncClient):
        user = _make_user()
        jwt = create_access_token({"sub": str(USER_ID)})

        with patch("app.dependencies.AuthService.verify_token", new=AsyncMock(return_value=user)) as verify, \
             patch("app.dependencies.ApiTokenService.authenticate", new=AsyncMock()) as authenticate:
            response = await client.get("/api/v1/tasks", headers={"Authorization": f"Bearer {jwt}"})

        assert response.status_code == 200
        assert response.json() == []
        verify.assert_awaited_once_with(jwt)
        authenticate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_api_token_goes_to_token_service(self, client: AsyncClient):
        user = _make_user()
        raw = generate_api_token()

        with patch("app.dependencies.ApiTokenService.authenticate", new=AsyncMock(return_value=user)) as authenticate:
            response = await client.get("/api/v1/tasks", headers={"Authorization": f"Bearer {raw}"})

        assert response.status_code == 200
        authenticate.assert_awaited_once_with(raw)

    @pytest.mark.asyncio
    async def test_unknown_api_token(self, client: AsyncClient):
        with patch("app.dependencies.ApiTokenService.authenticate", new=AsyncMock(return_value=None)):
            response = await client.get("/api/v1/tasks", headers={"Authorization": "Bearer feedface"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_005"
