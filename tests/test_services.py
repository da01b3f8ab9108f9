"""
Service Tests
=============

Tests for supporting services:
- Real-time broadcast payloads
- Redis rate limiting (including fail-open)
- Email delivery fallbacks
- Chat relay to the agent gateway
- Notification deduplication, invites and comments
- Analytics period helpers and snapshot capture
"""

from datetime import date, datetime, timezone
import json
import smtplib
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from app.api.v1.analytics import token_period_start
from app.api.v1.cable import send_chat_message
from app.config import settings
from app.core.context import ActorContext
from app.core.errors import NotFoundError, RateLimitError, UnprocessableError
from app.core.rate_limit import RateLimiter, client_identifier, enforce_rate_limit
from app.core.security import create_access_token
from app.models.cost_snapshot import CostSnapshot
from app.models.invite_code import InviteCode
from app.models.notification import Notification
from app.models.task import Task, TaskComment, TaskStatus
from app.presenters.budget import format_summary
from app.presenters.cost_analytics import normalize_period, projected_monthly
from app.services.broadcast import AgentActivityChannel, ChatChannel, KanbanChannel
from app.services.comment_service import CommentService
from app.services.cost_snapshot_service import CostSnapshotService, previous_month, previous_week
from app.services.email_service import EmailService
from app.services.gateway_client import GatewayClient, chat_session_key
from app.services.invite_service import InviteService
from app.services.notification_service import CAP_PER_USER, NotificationService
from conftest import USER_ID, make_result, make_session


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TASK_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
BOARD_ID = uuid.UUID("00000000-0000-0000-0000-0000000000b1")


def _make_task(**overrides) -> Task:
    fields = {
        "task_id": TASK_ID,
        "user_id": USER_ID,
        "board_id": BOARD_ID,
        "name": "Migrate the billing tables",
        "status": TaskStatus.IN_PROGRESS,
    }
    fields.update(overrides)
    return Task(**fields)


def _make_request(authorization: str | None = None, ip: str = "10.0.0.7") -> Request:
    headers = [(b"authorization", authorization.encode())] if authorization else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers, "client": (ip, 1234)})


def _published(fake_redis) -> list[tuple[str, dict]]:
    return [(c.args[0], json.loads(c.args[1])) for c in fake_redis.publish.await_args_list]


# ---------------------------------------------------------------------------
# Broadcasts
# ---------------------------------------------------------------------------

class TestBroadcasts:
    """Tests for the pub/sub channels."""

    @pytest.mark.asyncio
    async def test_kanban_refresh(self, fake_redis):
        ok = await KanbanChannel.broadcast_refresh(BOARD_ID, TASK_ID, "update", old_status="inbox", new_status="done")

        assert ok is True
        [(stream, payload)] = _published(fake_redis)
        assert stream == f"kanban_board_{BOARD_ID}"
        assert payload["type"] == "refresh"
        assert payload["task_id"] == str(TASK_ID)
        assert payload["action"] == "update"
        assert (payload["old_status"], payload["new_status"]) == ("inbox", "done")
        assert "timestamp" in payload

    @pytest.mark.asyncio
    async def test_kanban_refresh_without_statuses(self, fake_redis):
        await KanbanChannel.broadcast_refresh(BOARD_ID, TASK_ID, "create")
        [(_, payload)] = _published(fake_redis)
        assert "old_status" not in payload

    @pytest.mark.asyncio
    async def test_agent_activity_extra_fields(self, fake_redis):
        await AgentActivityChannel.broadcast_status(TASK_ID, "in_progress", {"agent_claimed": True})

        [(stream, payload)] = _published(fake_redis)
        assert stream == f"agent_activity_task_{TASK_ID}"
        assert payload["status"] == "in_progress"
        assert payload["agent_claimed"] is True

    @pytest.mark.asyncio
    async def test_chat_message(self, fake_redis):
        await ChatChannel.broadcast_message(TASK_ID, "user", "hello")

        [(stream, payload)] = _published(fake_redis)
        assert stream == f"chat_task_{TASK_ID}"
        assert payload["role"] == "user"
        assert payload["content"] == "hello"

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self, fake_redis):
        fake_redis.publish.side_effect = ConnectionError("Redis down")
        assert await KanbanChannel.broadcast_refresh(BOARD_ID) is False


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class TestRateLimiter:
    """Tests for the fixed-window limiter."""

    @pytest.mark.asyncio
    async def test_first_request_opens_window(self, fake_redis):
        result = await RateLimiter.check_rate_limit("user:1", "auth")

        assert result == {"allowed": True, "limit": 5, "remaining": 4, "reset_in": 60}
        fake_redis.setex.assert_awaited_once_with("ratelimit:auth:user:1", 60, 1)

    @pytest.mark.asyncio
    async def test_counts_within_window(self, fake_redis):
        fake_redis.get.return_value = "2"
        fake_redis.ttl.return_value = 42

        result = await RateLimiter.check_rate_limit("user:1", "auth")

        assert result["allowed"] is True
        assert result["remaining"] == 2
        assert result["reset_in"] == 42
        fake_redis.incr.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_blocks_when_exhausted(self, fake_redis):
        fake_redis.get.return_value = "3"
        fake_redis.ttl.return_value = 500

        result = await RateLimiter.check_rate_limit("ip:1.2.3.4", "email_code")

        assert result["allowed"] is False
        assert result["limit"] == 3
        fake_redis.incr.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fails_open(self, fake_redis):
        fake_redis.get.side_effect = ConnectionError("Redis down")
        result = await RateLimiter.check_rate_limit("user:1", "create")
        assert result["allowed"] is True

    @pytest.mark.asyncio
    async def test_enforce_raises_429(self, fake_redis):
        fake_redis.get.return_value = "100"
        fake_redis.ttl.return_value = 12

        with pytest.raises(RateLimitError) as exc:
            await enforce_rate_limit(_make_request(), "read")

        assert exc.value.status_code == 429
        assert exc.value.headers["Retry-After"] == "12"
        assert exc.value.headers["X-RateLimit-Limit"] == "100"

    def test_identifier(self):
        jwt = create_access_token({"sub": "user-9"})

        assert client_identifier(_make_request()) == "ip:10.0.0.7"
        assert client_identifier(_make_request(f"Bearer {jwt}")) == "user:user-9"
        assert client_identifier(_make_request("Bearer abcdef")).startswith("token:")
        assert client_identifier(_make_request(f"Bearer {jwt}"), per_ip=True) == "ip:10.0.0.7"


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------

class TestEmailService:
    """Tests for SMTP delivery."""

    @pytest.mark.asyncio
    async def test_unconfigured_smtp_logs_instead(self, caplog):
        with patch.object(settings, "SMTP_HOST", ""), caplog.at_level("INFO"):
            sent = await EmailService().send_sign_in_code("ada@example.com", "123456", 15)

        assert sent is True
        assert "SMTP not configured" in caplog.text
        assert "123456" in caplog.text

    @pytest.mark.asyncio
    async def test_delivers_in_thread(self):
        with patch.object(settings, "SMTP_HOST", "smtp.example.com"), \
             patch.object(EmailService, "_deliver") as deliver:
            sent = await EmailService().send_invite("ada@example.com", "ABCD1234")

        assert sent is True
        to_email, message = deliver.call_args.args
        assert to_email == "ada@example.com"
        assert message["Subject"] == "You're invited to ClawDeck"

    @pytest.mark.asyncio
    async def test_smtp_failure(self):
        with patch.object(settings, "SMTP_HOST", "smtp.example.com"), \
             patch.object(EmailService, "_deliver", side_effect=smtplib.SMTPException("refused")):
            assert await EmailService().send_email("ada@example.com", "Hi", "Body") is False


# ---------------------------------------------------------------------------
# Gateway chat
# ---------------------------------------------------------------------------

class TestChatRelay:
    """Tests for forwarding chat messages to the agent gateway."""

    @pytest.mark.asyncio
    async def test_unconfigured_gateway(self):
        result = await GatewayClient(base_url="", token="").send_message("k", "hi")
        assert result["ok"] is False

    def test_session_key(self):
        assert chat_session_key(TASK_ID) == f"hook:chat:task-{TASK_ID}"

    @pytest.mark.asyncio
    async def test_sent(self):
        with patch(
            "app.api.v1.cable.GatewayClient.send_message",
            new=AsyncMock(return_value={"ok": True, "runId": "run-7"}),
        ) as send, \
             patch("app.api.v1.cable.ChatChannel.broadcast_message", new=AsyncMock()) as message, \
             patch("app.api.v1.cable.ChatChannel.broadcast_status", new=AsyncMock()) as status:
            await send_chat_message(TASK_ID, {"message": "  please add tests  "})

        message.assert_awaited_once_with(TASK_ID, "user", "please add tests")
        send.assert_awaited_once_with(chat_session_key(TASK_ID), "please add tests")
        status.assert_awaited_once_with(TASK_ID, "sent", "runId: run-7")

    @pytest.mark.asyncio
    async def test_gateway_error(self):
        with patch(
            "app.api.v1.cable.GatewayClient.send_message",
            new=AsyncMock(return_value={"ok": False, "error": "timed out"}),
        ), \
             patch("app.api.v1.cable.ChatChannel.broadcast_message", new=AsyncMock()), \
             patch("app.api.v1.cable.ChatChannel.broadcast_status", new=AsyncMock()) as status:
            await send_chat_message(TASK_ID, {"message": "hi"})

        status.assert_awaited_once_with(TASK_ID, "error", "timed out")

    @pytest.mark.asyncio
    async def test_blank_message_is_ignored(self):
        with patch("app.api.v1.cable.GatewayClient.send_message", new=AsyncMock()) as send:
            await send_chat_message(TASK_ID, {"message": "   "})
        send.assert_not_awaited()


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class TestNotificationService:
    """Tests for deduplicated notifications."""

    @pytest.mark.asyncio
    async def test_creates_notification(self):
        db = make_session()
        notification = await NotificationService(db).create_for_error(_make_task(), "boom")

        assert notification.event_type == "task_errored"
        assert notification.message == "Migrate the billing tables encountered an error: boom"
        db.add.assert_called_once_with(notification)

    @pytest.mark.asyncio
    async def test_deduplicates_recent(self):
        db = make_session()
        db.execute.return_value = make_result(scalar=uuid.uuid4())

        assert await NotificationService(db).create_for_agent_claim(_make_task()) is None
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_change_events(self):
        db = make_session()
        service = NotificationService(db)

        review = await service.create_for_status_change(_make_task(), "in_review")
        assert review.message == "Migrate the billing tables is ready for review"
        assert await service.create_for_status_change(_make_task(), "in_progress") is None

    @pytest.mark.asyncio
    async def test_mark_read_missing(self):
        with pytest.raises(NotFoundError):
            await NotificationService(make_session()).mark_read(USER_ID, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_mark_read(self):
        notification = Notification(event_type="task_completed", message="Done")
        db = make_session()
        db.execute.return_value = make_result(scalar=notification)

        result = await NotificationService(db).mark_read(USER_ID, uuid.uuid4())
        assert result.is_read

    @pytest.mark.asyncio
    async def test_cap_deletes_overflow(self):
        overflow_ids = [uuid.uuid4(), uuid.uuid4()]
        db = make_session()
        db.execute.side_effect = [make_result(rows=overflow_ids), make_result()]

        await NotificationService(db).enforce_cap(USER_ID)

        select_stmt, delete_stmt = [c.args[0] for c in db.execute.await_args_list]
        assert select_stmt._offset == CAP_PER_USER == 200
        assert delete_stmt.is_delete
        assert [list(ids) for ids in delete_stmt.compile().params.values()] == [overflow_ids]

    @pytest.mark.asyncio
    async def test_create_enforces_cap(self):
        db = make_session()

        with patch.object(NotificationService, "enforce_cap", new=AsyncMock()) as enforce_cap:
            await NotificationService(db).create_for_error(_make_task())

        enforce_cap.assert_awaited_once_with(USER_ID)

    @pytest.mark.asyncio
    async def test_cap_within_limit(self):
        db = make_session()

        await NotificationService(db).enforce_cap(USER_ID)

        db.execute.assert_awaited_once()


# ---------------------------------------------------------------------------
# Invites and comments
# ---------------------------------------------------------------------------

class TestInviteService:
    """Tests for invite checks at registration."""

    @pytest.mark.asyncio
    async def test_not_required(self):
        with patch.object(settings, "REQUIRE_INVITE_CODE", False):
            assert await InviteService(make_session()).check_for_registration("a@b.co", None) is None

    @pytest.mark.asyncio
    async def test_required_and_missing(self):
        with patch.object(settings, "REQUIRE_INVITE_CODE", True):
            with pytest.raises(UnprocessableError) as exc:
                await InviteService(make_session()).check_for_registration("a@b.co", None)
        assert exc.value.code == "AUTH_007"

    @pytest.mark.asyncio
    async def test_required_and_valid(self):
        invite = InviteCode(code="ABCD1234")
        db = make_session()
        db.execute.return_value = make_result(scalar=invite)

        with patch.object(settings, "REQUIRE_INVITE_CODE", True):
            result = await InviteService(db).check_for_registration("a@b.co", " abcd1234 ")

        assert result is invite

    @pytest.mark.asyncio
    async def test_used_code_cannot_be_deleted(self):
        db = make_session()
        db.get.return_value = InviteCode(code="ABCD1234", used_at=datetime.now(timezone.utc))

        with pytest.raises(UnprocessableError):
            await InviteService(db).delete_code(uuid.uuid4())
        db.delete.assert_not_awaited()


class TestCommentService:
    """Tests for task comments."""

    @pytest.mark.asyncio
    async def test_agent_comment(self):
        db = make_session()
        context = ActorContext(source="api", actor_name="Clawd", actor_emoji="🦀")

        with patch("app.services.comment_service.KanbanChannel.broadcast_refresh", new=AsyncMock()) as refresh:
            comment = await CommentService(db, context).create(_make_task(), "Started on the migration")

        assert isinstance(comment, TaskComment)
        assert comment.author_type == "agent"
        assert comment.actor_name == "Clawd"
        refresh.assert_awaited_once_with(BOARD_ID, TASK_ID, "comment")

    @pytest.mark.asyncio
    async def test_blank_body(self):
        with pytest.raises(UnprocessableError):
            await CommentService(make_session()).create(_make_task(), "   ")


# ---------------------------------------------------------------------------
# Analytics helpers
# ---------------------------------------------------------------------------

class TestAnalyticsPeriods:
    """Tests for period windows and projections."""

    NOW = datetime(2026, 3, 4, 15, 30, tzinfo=timezone.utc)

    def test_token_periods(self):
        assert token_period_start("today", self.NOW) == datetime(2026, 3, 4, tzinfo=timezone.utc)
        assert token_period_start("week", self.NOW) == datetime(2026, 2, 25, 15, 30, tzinfo=timezone.utc)
        assert token_period_start("month", self.NOW) == datetime(2026, 2, 2, 15, 30, tzinfo=timezone.utc)
        assert token_period_start("all", self.NOW).year == 2025
        assert token_period_start("bogus", self.NOW) == token_period_start("week", self.NOW)

    def test_snapshot_periods(self):
        assert previous_week(date(2026, 3, 4)) == (date(2026, 2, 23), date(2026, 3, 1))
        assert previous_month(date(2026, 3, 4)) == (date(2026, 2, 1), date(2026, 2, 28))

    def test_cost_period(self):
        assert normalize_period("30d") == "30d"
        assert normalize_period("forever") == "7d"

    def test_projection(self):
        assert projected_monthly("7d", 14.0, 7) == 60.0
        assert projected_monthly("24h", 14.0, 1) is None
        assert projected_monthly("30d", 0.0, 0) is None

    def test_budget_summary(self):
        assert format_summary({}, 10.0) == {"empty": True}
        assert format_summary({"total": 3.0}, 10.0) == {"total": 3.0, "budget": 10.0}


# ---------------------------------------------------------------------------
# Cost snapshots
# ---------------------------------------------------------------------------

class TestCostSnapshotCapture:
    """Tests for CostSnapshotService capture windows."""

    @pytest.mark.asyncio
    async def test_existing_snapshot_is_not_recaptured(self):
        db = make_session()
        db.execute.return_value = make_result(scalar=CostSnapshot(period="daily", total_cost=1.0))

        assert await CostSnapshotService(db).capture_daily(USER_ID, date(2026, 3, 3)) is None
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_weekly_and_monthly_windows(self):
        service = CostSnapshotService(make_session())

        with patch.object(service, "_capture", new=AsyncMock(return_value=None)) as capture:
            await service.capture_weekly(USER_ID, date(2026, 3, 4))
            await service.capture_monthly(USER_ID, date(2026, 3, 4))

        assert capture.await_args_list[0].args == (
            USER_ID, "weekly", date(2026, 2, 23), date(2026, 2, 23), date(2026, 3, 1)
        )
        assert capture.await_args_list[1].args == (
            USER_ID, "monthly", date(2026, 2, 1), date(2026, 2, 1), date(2026, 2, 28)
        )

    @pytest.mark.asyncio
    async def test_capture_all_continues_after_failure(self):
        user_ids = [uuid.uuid4() for _ in range(3)]
        db = make_session()
        db.execute.return_value = make_result(rows=user_ids)
        service = CostSnapshotService(db)
        outcomes = [CostSnapshot(period="daily"), SQLAlchemyError("boom"), CostSnapshot(period="daily")]

        with patch.object(service, "capture_daily", new=AsyncMock(side_effect=outcomes)) as capture:
            captured = await service.capture_all(date(2026, 3, 3))

        assert captured == 2
        assert capture.await_count == 3
