"""
Account Service Tests
=====================

Tests for account creation and sign-in:
- Password registration and invite rules
- Email sign-in codes (attempts, burning, new accounts)
- GitHub account matching and the OAuth exchange
- The onboarding board given to new users
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.config import settings
from app.core.errors import AuthenticationError, ConflictError, ServiceUnavailableError, UnprocessableError
from app.core.security import digest_token
from app.models.email_code import EmailVerificationCode
from app.models.task import Task, TaskStatus
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.board_service import BoardService
from app.services.github_oauth import GitHubOAuthService
from app.utils.helpers import utc_now
from conftest import USER_ID, make_result, make_session


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

REAL_ASYNC_CLIENT = httpx.AsyncClient


def _make_user(**overrides) -> User:
    fields = {"user_id": USER_ID, "email": "owner@example.com", "agent_auto_mode": True}
    fields.update(overrides)
    return User(**fields)


def _make_code(code: str = "123456", **overrides) -> EmailVerificationCode:
    fields = {
        "email": "owner@example.com",
        "code_digest": digest_token(code),
        "attempts": 0,
        "expires_at": utc_now() + timedelta(minutes=10),
    }
    fields.update(overrides)
    return EmailVerificationCode(**fields)


def _patch_onboarding():
    return patch("app.services.auth_service.BoardService.create_onboarding_for", new=AsyncMock())


def _patch_github(handler):
    """Route GitHub calls made by the OAuth service to ``handler``."""
    def build(**kwargs):
        return REAL_ASYNC_CLIENT(transport=httpx.MockTransport(handler), **kwargs)

    return patch("app.services.github_oauth.httpx.AsyncClient", new=build)


def _github_configured():
    return patch.multiple(settings, GITHUB_CLIENT_ID="client-id", GITHUB_CLIENT_SECRET="client-secret")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

class TestAuthService:
    """Tests for AuthService account creation and sign-in."""

    @pytest.mark.asyncio
    async def test_register_existing_email(self):
        db = make_session()
        db.execute.return_value = make_result(scalar=_make_user())

        with pytest.raises(ConflictError) as exc:
            await AuthService(db).register("Owner@Example.com", "password123")

        assert exc.value.status_code == 409
        assert exc.value.code == "AUTH_004"
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_register_requires_invite(self):
        db = make_session()

        with patch.object(settings, "REQUIRE_INVITE_CODE", True), pytest.raises(UnprocessableError) as exc:
            await AuthService(db).register("new@example.com", "password123")

        assert exc.value.status_code == 422
        assert exc.value.field == "invite_code"
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_register_creates_onboarding_board(self):
        db = make_session()

        with _patch_onboarding() as onboarding:
            user = await AuthService(db).register(" New@Example.com ", "password123")

        assert user.email == "new@example.com"
        assert user.password_hash and user.password_hash != "password123"
        assert user.last_login is not None
        db.add.assert_called_once_with(user)
        onboarding.assert_awaited_once_with(user)

    # -----------------------------------------------------------------------
    # Email codes
    # -----------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_request_code_invalidates_earlier_codes(self):
        db = make_session()

        with patch("app.services.auth_service.EmailService.send_sign_in_code", new=AsyncMock()) as send:
            await AuthService(db).request_email_code("Owner@Example.com")

        update_stmt = db.execute.await_args.args[0]
        assert update_stmt.is_dml
        [pending] = [c.args[0] for c in db.add.call_args_list]
        assert isinstance(pending, EmailVerificationCode)
        assert pending.email == "owner@example.com"
        email, code, ttl = send.await_args.args
        assert email == "owner@example.com"
        assert len(code) == 6 and code.isdigit()
        assert pending.code_digest == digest_token(code)
        assert ttl == settings.EMAIL_CODE_TTL_MINUTES

    @pytest.mark.asyncio
    async def test_verify_without_pending_code(self):
        with pytest.raises(AuthenticationError) as exc:
            await AuthService(make_session()).verify_email_code("owner@example.com", "123456")

        assert exc.value.status_code == 401
        assert exc.value.code == "AUTH_006"

    @pytest.mark.asyncio
    async def test_verify_expired_code(self):
        db = make_session()
        db.execute.return_value = make_result(scalar=_make_code(expires_at=utc_now() - timedelta(seconds=1)))

        with pytest.raises(AuthenticationError) as exc:
            await AuthService(db).verify_email_code("owner@example.com", "123456")

        assert exc.value.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempt(self):
        pending = _make_code()
        db = make_session()
        db.execute.return_value = make_result(scalar=pending)

        with pytest.raises(AuthenticationError):
            await AuthService(db).verify_email_code("owner@example.com", "000000")

        assert pending.attempts == 1
        assert pending.consumed_at is None
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_code_burns_at_attempt_limit(self):
        pending = _make_code(attempts=settings.EMAIL_CODE_MAX_ATTEMPTS - 1)
        db = make_session()
        db.execute.return_value = make_result(scalar=pending)

        with pytest.raises(AuthenticationError):
            await AuthService(db).verify_email_code("owner@example.com", "000000")

        assert pending.attempts == settings.EMAIL_CODE_MAX_ATTEMPTS
        assert pending.consumed_at is not None

    @pytest.mark.asyncio
    async def test_code_signs_in_existing_user(self):
        pending = _make_code()
        user = _make_user()
        db = make_session()
        db.execute.side_effect = [make_result(scalar=pending), make_result(scalar=user)]

        with _patch_onboarding() as onboarding:
            result = await AuthService(db).verify_email_code("owner@example.com", " 123456 ")

        assert result is user
        assert user.last_login is not None
        assert pending.consumed_at is not None
        onboarding.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_code_creates_new_user(self):
        pending = _make_code(email="new@example.com")
        db = make_session()
        db.execute.side_effect = [make_result(scalar=pending), make_result()]

        with _patch_onboarding() as onboarding:
            user = await AuthService(db).verify_email_code("new@example.com", "123456")

        assert user.email == "new@example.com"
        assert user.password_hash is None
        assert pending.consumed_at is not None
        onboarding.assert_awaited_once_with(user)

    # -----------------------------------------------------------------------
    # GitHub accounts
    # -----------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_github_matches_uid(self):
        user = _make_user(provider="github", uid="42", avatar_url=None)
        db = make_session()
        db.execute.return_value = make_result(scalar=user)

        result = await AuthService(db).find_or_create_from_github(
            {"uid": "42", "email": "other@example.com", "avatar_url": "https://avatars.test/42.png"}
        )

        assert result is user
        assert user.avatar_url == "https://avatars.test/42.png"
        assert db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_github_links_existing_email(self):
        user = _make_user()
        db = make_session()
        db.execute.side_effect = [make_result(), make_result(scalar=user)]

        result = await AuthService(db).find_or_create_from_github(
            {"uid": "42", "email": "Owner@Example.com", "avatar_url": None}
        )

        assert result is user
        assert (user.provider, user.uid) == ("github", "42")
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_github_creates_user(self):
        db = make_session()

        with _patch_onboarding() as onboarding:
            user = await AuthService(db).find_or_create_from_github(
                {"uid": "42", "email": "Octo@Example.com", "avatar_url": "https://avatars.test/42.png"}
            )

        assert user.email == "octo@example.com"
        assert (user.provider, user.uid) == ("github", "42")
        assert user.password_hash is None
        onboarding.assert_awaited_once_with(user)


# ---------------------------------------------------------------------------
# GitHub OAuth exchange
# ---------------------------------------------------------------------------

class TestGitHubOAuth:
    """Tests for GitHubOAuthService.fetch_profile."""

    @pytest.mark.asyncio
    async def test_profile_with_primary_email(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/login/oauth/access_token":
                return httpx.Response(200, json={"access_token": "gho_test"})
            if request.url.path == "/user":
                return httpx.Response(200, json={"id": 42, "login": "octo", "avatar_url": "https://avatars.test/42.png"})
            return httpx.Response(200, json=[
                {"email": "old@example.com", "verified": True, "primary": False},
                {"email": "octo@example.com", "verified": True, "primary": True},
            ])

        with _github_configured(), _patch_github(handler):
            profile = await GitHubOAuthService().fetch_profile("code-1")

        assert profile == {
            "uid": "42",
            "email": "octo@example.com",
            "avatar_url": "https://avatars.test/42.png",
            "login": "octo",
        }

    @pytest.mark.asyncio
    async def test_non_json_reply_is_401(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>Service unavailable</html>")

        with _github_configured(), _patch_github(handler), pytest.raises(AuthenticationError) as exc:
            await GitHubOAuthService().fetch_profile("code-1")

        assert exc.value.status_code == 401
        assert exc.value.code == "AUTH_008"

    @pytest.mark.asyncio
    async def test_unexpected_profile_shape_is_401(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/login/oauth/access_token":
                return httpx.Response(200, json={"access_token": "gho_test"})
            return httpx.Response(200, json=["not", "a", "profile"])

        with _github_configured(), _patch_github(handler), pytest.raises(AuthenticationError) as exc:
            await GitHubOAuthService().fetch_profile("code-1")

        assert exc.value.status_code == 401

    def test_disabled_without_credentials(self):
        with patch.multiple(settings, GITHUB_CLIENT_ID=None, GITHUB_CLIENT_SECRET=None):
            with pytest.raises(ServiceUnavailableError) as exc:
                GitHubOAuthService()

        assert exc.value.status_code == 503


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------

class TestOnboardingBoard:
    """Tests for BoardService.create_onboarding_for."""

    @pytest.mark.asyncio
    async def test_getting_started_board(self):
        db = make_session()

        board = await BoardService(db).create_onboarding_for(_make_user())

        assert (board.name, board.icon, board.color) == ("Getting Started", "🚀", "blue")
        tasks = [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], Task)]
        assert len(tasks) == 7
        assert all(task.user_id == USER_ID for task in tasks)
        assert [t.position for t in tasks if t.status == TaskStatus.INBOX] == [0, 1, 2, 3, 4, 5]
        [up_next] = [t for t in tasks if t.status == TaskStatus.UP_NEXT]
        assert up_next.name == "🎯 Try it yourself!"
        assert up_next.position == 0
