"""
API Endpoint Tests
==================

Request/response tests for the v1 routers with a mocked session:
- Task workflow routes and their response shapes
- Error envelope for 4xx responses
- Admin access control
- Token analytics breakdown
"""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from app.models.board import Board
from app.models.task import Task, TaskPriority, TaskStatus
from conftest import USER_ID, make_result


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

BOARD_ID = uuid.UUID("00000000-0000-0000-0000-0000000000b1")


def _make_task(**overrides) -> Task:
    fields = {
        "task_id": uuid.uuid4(),
        "user_id": USER_ID,
        "board_id": BOARD_ID,
        "name": "Audit dependencies",
        "status": TaskStatus.UP_NEXT,
        "priority": TaskPriority.MEDIUM,
        "tags": ["security"],
        "output_files": [],
        "blocked": False,
        "completed": False,
        "assigned_to_agent": True,
        "run_count": 0,
    }
    fields.update(overrides)
    return Task(**fields)


def _patch_get_task(task: Task):
    return patch("app.api.v1.tasks.TaskService.get_task", new=AsyncMock(return_value=task))


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TestTaskRoutes:
    """Tests for /api/v1/tasks."""

    @pytest.mark.asyncio
    async def test_next_without_work_is_204(self, auth_client: AsyncClient):
        response = await auth_client.get("/api/v1/tasks/next")

        assert response.status_code == 204
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_next_returns_task(self, auth_client: AsyncClient, db_session):
        task = _make_task()
        db_session.execute.return_value = make_result(scalar=task)

        response = await auth_client.get("/api/v1/tasks/next")

        assert response.status_code == 200
        assert response.json()["id"] == str(task.task_id)

    @pytest.mark.asyncio
    async def test_errored_count(self, auth_client: AsyncClient, db_session):
        db_session.execute.return_value = make_result(count=3)

        response = await auth_client.get("/api/v1/tasks/errored_count")

        assert response.json() == {"count": 3}

    @pytest.mark.asyncio
    async def test_missing_task(self, auth_client: AsyncClient):
        response = await auth_client.get(f"/api/v1/tasks/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": {"code": "TASK_001", "message": "Task not found"},
        }

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_status(self, auth_client: AsyncClient):
        response = await auth_client.post("/api/v1/tasks", json={"name": "x", "status": "someday"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_move_rejects_unknown_status(self, auth_client: AsyncClient):
        with _patch_get_task(_make_task()):
            response = await auth_client.patch(
                f"/api/v1/tasks/{uuid.uuid4()}/move", json={"status": "someday"}
            )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "TASK_002"

    @pytest.mark.asyncio
    async def test_claim_without_body(self, auth_client: AsyncClient):
        task = _make_task()

        with _patch_get_task(task):
            response = await auth_client.patch(f"/api/v1/tasks/{task.task_id}/claim")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "in_progress"
        assert data["agent_claimed_at"] is not None

    @pytest.mark.asyncio
    async def test_link_session(self, auth_client: AsyncClient):
        task = _make_task(status=TaskStatus.IN_PROGRESS)

        with _patch_get_task(task):
            response = await auth_client.patch(
                f"/api/v1/tasks/{task.task_id}/link_session",
                json={"session_id": "sess-9", "session_key": "agent:main:9"},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["task_id"] == str(task.task_id)
        assert data["task"]["agent_session_id"] == "sess-9"
        assert data["task"]["agent_session_key"] == "agent:main:9"

    @pytest.mark.asyncio
    async def test_agent_log(self, auth_client: AsyncClient):
        task = _make_task(agent_session_key="agent:main:9", run_count=0)

        with _patch_get_task(task):
            response = await auth_client.get(f"/api/v1/tasks/{task.task_id}/agent_log")

        assert response.json() == {
            "task_id": str(task.task_id),
            "agent_session_id": None,
            "agent_session_key": "agent:main:9",
            "has_session": True,
            "claimed": False,
            "run_count": 0,
            "runs": [],
        }

    @pytest.mark.asyncio
    async def test_update_with_null_priority(self, auth_client: AsyncClient):
        task = _make_task(priority=TaskPriority.HIGH)

        with _patch_get_task(task):
            response = await auth_client.patch(
                f"/api/v1/tasks/{task.task_id}", json={"priority": None, "tags": None, "blocked": None}
            )

        assert response.status_code == 200
        data = response.json()
        assert data["priority"] == "high"
        assert data["tags"] == ["security"]
        assert data["blocked"] is False

    @pytest.mark.asyncio
    async def test_toggle_complete(self, auth_client: AsyncClient):
        task = _make_task(status=TaskStatus.IN_REVIEW)

        with _patch_get_task(task):
            response = await auth_client.patch(f"/api/v1/tasks/{task.task_id}/complete")

        assert response.json()["status"] == "done"
        assert response.json()["completed"] is True


# ---------------------------------------------------------------------------
# Boards
# ---------------------------------------------------------------------------

class TestBoardRoutes:
    """Tests for /api/v1/boards."""

    @pytest.mark.asyncio
    async def test_archived_column_is_rejected(self, auth_client: AsyncClient):
        board = Board(board_id=BOARD_ID, user_id=USER_ID, name="Personal")

        with patch("app.api.v1.boards.BoardService.get_board", new=AsyncMock(return_value=board)):
            response = await auth_client.get(f"/api/v1/boards/{BOARD_ID}/columns/archived")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_column_page(self, auth_client: AsyncClient, db_session):
        board = Board(board_id=BOARD_ID, user_id=USER_ID, name="Personal")
        db_session.execute.return_value = make_result(rows=[_make_task() for _ in range(26)])

        with patch("app.api.v1.boards.BoardService.get_board", new=AsyncMock(return_value=board)):
            response = await auth_client.get(f"/api/v1/boards/{BOARD_ID}/columns/up_next?page=2")

        data = response.json()
        assert len(data["tasks"]) == 25
        assert data["has_more"] is True
        assert data["page"] == 2

    @pytest.mark.asyncio
    async def test_unknown_board(self, auth_client: AsyncClient):
        response = await auth_client.get(f"/api/v1/boards/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "BOARD_001"


# ---------------------------------------------------------------------------
# Tokens and notifications
# ---------------------------------------------------------------------------

class TestAccountRoutes:
    """Tests for tokens and notifications."""

    @pytest.mark.asyncio
    async def test_create_token_shows_raw_once(self, auth_client: AsyncClient):
        response = await auth_client.post("/api/v1/tokens", json={"name": "CI"})

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "CI"
        assert len(data["token"]) == 64

    @pytest.mark.asyncio
    async def test_notifications_empty(self, auth_client: AsyncClient):
        response = await auth_client.get("/api/v1/notifications")

        assert response.json() == {"notifications": [], "unread_count": 0, "total": 0}

    @pytest.mark.asyncio
    async def test_read_all(self, auth_client: AsyncClient):
        response = await auth_client.post("/api/v1/notifications/read_all")
        assert response.json() == {"success": True, "unread_count": 0}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class TestAdminRoutes:
    """Tests for admin access control."""

    @pytest.mark.asyncio
    async def test_non_admin_is_forbidden(self, auth_client: AsyncClient):
        response = await auth_client.get("/api/v1/admin/dashboard")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_admin_lists_invites(self, auth_client: AsyncClient, current_user, db_session):
        current_user.admin = True

        with patch("app.api.v1.admin.InviteService.counts", new=AsyncMock(return_value={"available": 2, "used": 1})):
            response = await auth_client.get("/api/v1/admin/invite_codes")

        assert response.status_code == 200
        assert response.json() == {"invite_codes": [], "available": 2, "used": 1}


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

class TestAnalyticsRoutes:
    """Tests for /api/v1/analytics/tokens."""

    @pytest.mark.asyncio
    async def test_token_breakdown(self, auth_client: AsyncClient):
        totals = {
            "total_cost": 1.23456789,
            "input_tokens": 1000,
            "output_tokens": 500,
            "total_tokens": 1500,
            "api_calls": 2,
        }
        by_model = [
            {"model": "sonnet", "input_tokens": 100, "output_tokens": 50, "total_cost": 0.2, "usage_count": 1},
            {"model": "opus", "input_tokens": 900, "output_tokens": 450, "total_cost": 1.03456789, "usage_count": 1},
        ]

        with patch("app.api.v1.analytics.TokenUsageService.totals", new=AsyncMock(return_value=totals)), \
             patch("app.api.v1.analytics.TokenUsageService.tokens_by_model", new=AsyncMock(return_value=by_model)), \
             patch("app.api.v1.analytics.TokenUsageService.daily_usage", new=AsyncMock(return_value=[])), \
             patch("app.api.v1.analytics.TokenUsageService.by_board", new=AsyncMock(return_value=[])):
            response = await auth_client.get("/api/v1/analytics/tokens?period=decade")

        data = response.json()
        assert data["period"] == "week"
        assert data["summary"] == {
            "total_input_tokens": 1000,
            "total_output_tokens": 500,
            "total_tokens": 1500,
            "total_cost": 1.234568,
        }
        assert [row["model"] for row in data["by_model"]] == ["opus", "sonnet"]
        assert data["by_model"][0]["cost"] == 1.034568
        assert data["by_model"][0]["total_tokens"] == 1350
        assert "total_cost" not in data["by_model"][0]
