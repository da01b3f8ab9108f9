"""
Agent Hook Tests
================

Tests for the gateway hooks:
- Description block building and the preserved user text
- OutcomeContract v1 validation
- Idempotent run recording
- X-Hook-Token authentication
"""

import uuid
from unittest.mock import patch

import pytest
from httpx import AsyncClient

from app.config import settings
from app.core.errors import NotFoundError, UnprocessableError
from app.models.task import Task, TaskPriority, TaskStatus
from app.models.task_run import TaskRun
from app.services.hook_service import (
    HookService,
    as_list,
    build_description,
    files_from_findings,
    normalized_files,
    preserved_description,
)
from conftest import USER_ID, make_result, make_session


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

RUN_ID = "3f2b8c9e-1d4a-4b6f-9a7e-2c5d8e1f0a3b"
HOOK_SECRET = "hook-secret-for-tests"


def _make_task(**overrides) -> Task:
    fields = {
        "task_id": uuid.uuid4(),
        "user_id": USER_ID,
        "board_id": uuid.uuid4(),
        "name": "Fix login redirect",
        "description": None,
        "status": TaskStatus.IN_PROGRESS,
        "priority": TaskPriority.NONE,
        "tags": [],
        "output_files": [],
        "assigned_to_agent": False,
        "run_count": 0,
    }
    fields.update(overrides)
    return Task(**fields)


def _outcome(**overrides) -> dict:
    payload = {
        "version": "1",
        "run_id": RUN_ID,
        "recommended_action": "in_review",
        "needs_follow_up": False,
        "summary": "Fixed it",
        "achieved": ["Redirect works"],
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Description building
# ---------------------------------------------------------------------------

class TestDescriptionBlocks:
    """Tests for the agent block placed on top of the description."""

    def test_first_completion_keeps_user_text_below(self):
        result = build_description("Please fix the redirect", "Fixed", "Session: `s1`")

        assert result == (
            "## Agent Activity\n\nSession: `s1`\n\n## Agent Output\n\nFixed"
            "\n\n---\n\nPlease fix the redirect"
        )

    def test_replaces_previous_block(self):
        first = build_description("Brief", "Old findings", "Session: `s1`")
        second = build_description(first, "New findings", "Session: `s2`")

        assert "Old findings" not in second
        assert second.endswith("\n\n---\n\nBrief")
        assert second.count("## Agent Output") == 1

    def test_empty_description(self):
        result = build_description("   ", "Findings", "")
        assert result.startswith("## Agent Activity\n\n(No transcript available)")
        assert "---" not in result

    def test_preserved_description(self):
        assert preserved_description("Brief") == "Brief"
        assert preserved_description("") is None
        assert preserved_description("## Agent Output\n\nonly agent text") is None
        assert preserved_description("## Agent Activity\n\nx\n\n---\n\nBrief") == "Brief"

    def test_normalized_files(self):
        assert normalized_files(None) == []
        assert normalized_files("a.py") == ["a.py"]
        assert normalized_files([" a.py", "a.py", "", "b.py"]) == ["a.py", "b.py"]

    def test_as_list(self):
        assert as_list(None) == []
        assert as_list("Fixed login") == ["Fixed login"]
        assert as_list(("a", "b")) == ["a", "b"]

    def test_files_from_findings(self):
        text = "Edited app/auth.py and ./tests/test_auth.py, see https://example.com/docs/page.html"
        assert files_from_findings(text) == ["app/auth.py", "tests/test_auth.py"]
        assert files_from_findings("No paths here, just README") == []
        assert files_from_findings("") == []


# ---------------------------------------------------------------------------
# agent_complete
# ---------------------------------------------------------------------------

class TestHookAgentComplete:
    """Tests for HookService.agent_complete."""

    @pytest.mark.asyncio
    async def test_writes_findings(self):
        task = _make_task(description="Please fix the redirect", output_files=["app.py"])
        db = make_session()
        db.execute.return_value = make_result(scalar=task)

        result = await HookService(db).agent_complete({
            "session_key": "agent:main:42",
            "session_id": "sess-42",
            "findings": "Redirect fixed",
            "files": ["app.py", "tests/test_app.py"],
        })

        assert result == {"success": True, "task_id": str(task.task_id), "status": "in_review"}
        assert task.status == TaskStatus.IN_REVIEW
        assert task.assigned_to_agent is True
        assert task.assigned_at is not None
        assert task.agent_session_id == "sess-42"
        assert task.output_files == ["app.py", "tests/test_app.py"]
        assert task.original_description == "Please fix the redirect"
        assert task.description.startswith("## Agent Activity\n\nSession: `sess-42`")
        assert f"/api/v1/tasks/{task.task_id}/agent_log" in task.description
        assert "## Agent Output\n\nRedirect fixed" in task.description
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_findings(self):
        task = _make_task()
        db = make_session()
        db.get.return_value = task

        await HookService(db).agent_complete({"task_id": str(task.task_id)})

        assert "Agent completed (no findings provided)" in task.description

    @pytest.mark.asyncio
    async def test_files_parsed_from_findings_when_none_posted(self):
        task = _make_task()
        db = make_session()
        db.get.return_value = task

        await HookService(db).agent_complete({
            "task_id": str(task.task_id),
            "findings": "Updated app/auth.py and added tests/test_auth.py",
        })

        assert task.output_files == ["app/auth.py", "tests/test_auth.py"]

    @pytest.mark.asyncio
    async def test_posted_files_win_over_findings(self):
        task = _make_task()
        db = make_session()
        db.get.return_value = task

        await HookService(db).agent_complete({
            "task_id": str(task.task_id),
            "findings": "Updated app/auth.py",
            "files": ["app/login.py"],
        })

        assert task.output_files == ["app/login.py"]

    @pytest.mark.asyncio
    async def test_unknown_task(self):
        with pytest.raises(NotFoundError) as exc:
            await HookService(make_session()).agent_complete({"task_id": "not-a-uuid"})
        assert exc.value.status_code == 404


# ---------------------------------------------------------------------------
# task_outcome
# ---------------------------------------------------------------------------

class TestValidateOutcome:
    """Tests for HookService.validate_outcome."""

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"version": "2"}, "invalid version"),
            ({"run_id": "run-1"}, "invalid run_id"),
            ({"recommended_action": "ship_it"}, "invalid recommended_action"),
            (
                {"needs_follow_up": True, "recommended_action": "requeue_same_task"},
                "next_prompt required for requeue_same_task",
            ),
        ],
    )
    def test_rejections(self, overrides, message):
        with pytest.raises(UnprocessableError) as exc:
            HookService.validate_outcome(_outcome(**overrides))
        assert exc.value.message == message
        assert exc.value.status_code == 422

    def test_defaults(self):
        run_id, follow_up, action = HookService.validate_outcome(
            _outcome(recommended_action="", needs_follow_up="yes")
        )
        assert run_id == RUN_ID
        assert follow_up is True
        assert action == "in_review"

    def test_requeue_with_prompt(self):
        _, follow_up, action = HookService.validate_outcome(_outcome(
            needs_follow_up=True,
            recommended_action="requeue_same_task",
            next_prompt="Also cover the logout path",
        ))
        assert (follow_up, action) == (True, "requeue_same_task")


class TestTaskOutcome:
    """Tests for HookService.task_outcome."""

    @pytest.mark.asyncio
    async def test_records_new_run(self):
        task = _make_task(run_count=2)
        db = make_session()
        db.get.return_value = task

        result = await HookService(db).task_outcome(_outcome(task_id=str(task.task_id)))

        runs = [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], TaskRun)]
        assert len(runs) == 1
        assert runs[0].run_number == 3
        assert runs[0].achieved == ["Redirect works"]
        assert result == {
            "success": True,
            "idempotent": False,
            "task_id": str(task.task_id),
            "run_number": 3,
            "status": "in_review",
        }
        assert task.run_count == 3
        assert task.last_run_id == RUN_ID
        assert task.last_recommended_action == "in_review"
        assert task.agent_claimed_at is None
        assert task.status == TaskStatus.IN_REVIEW

    @pytest.mark.asyncio
    async def test_scalar_lists_are_wrapped(self):
        task = _make_task()
        db = make_session()
        db.get.return_value = task

        await HookService(db).task_outcome(_outcome(
            task_id=str(task.task_id),
            achieved="Fixed login",
            evidence="CI green",
            remaining=None,
        ))

        [run] = [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], TaskRun)]
        assert run.achieved == ["Fixed login"]
        assert run.evidence == ["CI green"]
        assert run.remaining == []

    @pytest.mark.asyncio
    async def test_repeated_run_is_idempotent(self):
        task = _make_task(run_count=1, status=TaskStatus.IN_REVIEW)
        existing = TaskRun(task_id=task.task_id, run_id=RUN_ID, run_number=1)
        db = make_session()
        db.get.return_value = task
        db.execute.return_value = make_result(scalar=existing)

        result = await HookService(db).task_outcome(_outcome(task_id=str(task.task_id)))

        assert result["idempotent"] is True
        assert result["run_number"] == 1
        assert task.run_count == 1
        db.add.assert_not_called()
        db.commit.assert_not_awaited()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class TestHookEndpoints:
    """Tests for /api/v1/hooks authentication."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        with patch.object(settings, "HOOKS_TOKEN", HOOK_SECRET):
            response = await client.post("/api/v1/hooks/agent_complete", json={"task_id": "x"})

        assert response.status_code == 401
        assert response.json()["error"] == {"code": "HOOK_001", "message": "unauthorized"}

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects_everything(self, client: AsyncClient):
        with patch.object(settings, "HOOKS_TOKEN", ""):
            response = await client.post(
                "/api/v1/hooks/task_outcome",
                json=_outcome(),
                headers={"X-Hook-Token": ""},
            )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_task_not_found(self, client: AsyncClient):
        with patch.object(settings, "HOOKS_TOKEN", HOOK_SECRET):
            response = await client.post(
                "/api/v1/hooks/agent_complete",
                json={"task_id": str(uuid.uuid4()), "findings": "done"},
                headers={"X-Hook-Token": HOOK_SECRET},
            )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "HOOK_002"
