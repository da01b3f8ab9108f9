"""
Hook Service
============

Handles reports posted by the external agent runtime: completion
findings and versioned run outcomes.
"""

from datetime import datetime
import logging
import re
from typing import Any, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import SYSTEM_CONTEXT
from app.core.errors import ErrorCodes, NotFoundError, UnprocessableError
from app.models.task import Task, TaskStatus
from app.models.task_run import RECOMMENDED_ACTIONS, TaskRun
from app.services.task_service import TaskService, status_value
from app.utils.helpers import parse_date, present, unique_ordered, utc_now

logger = logging.getLogger(__name__)

ACTIVITY_MARKER = "## Agent Activity"
OUTPUT_MARKER = "## Agent Output"
SEPARATOR = "\n\n---\n\n"
NO_FINDINGS = "Agent completed (no findings provided)"

OUTCOME_VERSION = "1"
RUN_ID_PATTERN = re.compile(r"^[0-9a-fA-F-]{36}$")
_TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
FILE_PATH_PATTERN = re.compile(
    r"(?<![\w./-])(?:\./|/)?[\w@%+=:,~.-]+(?:/[\w@%+=:,~.-]+)+\.[A-Za-z0-9_]{1,10}(?![\w./-])"
)


def normalized_files(files: Any) -> list[str]:
    """Stripped, non-blank, de-duplicated file paths."""
    if files is None:
        return []
    items = files if isinstance(files, (list, tuple)) else [files]
    return unique_ordered([str(f).strip() for f in items if str(f).strip()])


def as_list(value: Any) -> list:
    """None is empty, a list is copied, anything else is a single item."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def files_from_findings(findings: str) -> list[str]:
    """Relative or absolute paths with an extension mentioned in the findings text."""
    paths = [p[2:] if p.startswith("./") else p for p in FILE_PATH_PATTERN.findall(findings or "")]
    return unique_ordered([p for p in paths if "//" not in p])


def preserved_description(description: str) -> Optional[str]:
    """The user's own text in a description, before any agent block is added."""
    if SEPARATOR in description:
        rest = description.split(SEPARATOR, 1)[1]
        return rest or None
    if description.startswith(ACTIVITY_MARKER) or description.startswith(OUTPUT_MARKER):
        return None
    return description or None


def build_description(current: str, findings: str, activity: str) -> str:
    """Put the agent block on top, replacing a previous one."""
    top_block = f"{ACTIVITY_MARKER}\n\n{activity or '(No transcript available)'}\n\n{OUTPUT_MARKER}\n\n{findings}"

    if current.startswith(ACTIVITY_MARKER) or current.startswith(OUTPUT_MARKER):
        if SEPARATOR in current:
            return f"{top_block}{SEPARATOR}{current.split(SEPARATOR, 1)[1]}"
        return top_block

    if not current.strip():
        return top_block
    return f"{top_block}{SEPARATOR}{current}"


def activity_markdown(task: Task, session_id: Optional[str]) -> str:
    lines = []
    if present(session_id):
        lines.append(f"Session: `{session_id}`")
    lines.append(f"Live log endpoint: `/api/v1/tasks/{task.task_id}/agent_log`")
    return "\n".join(lines)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES if value is not None else False


def _parse_ended_at(raw: Any) -> datetime:
    if present(raw):
        try:
            return parse_date(str(raw))
        except ValueError:
            logger.debug("Unparseable ended_at %r, using now", raw)
    return utc_now()


class HookService:
    """Service for agent runtime hooks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_task(self, payload: dict[str, Any]) -> Task:
        """Locate by session_key, then session_id, then task_id."""
        lookups = (
            (Task.agent_session_key, payload.get("session_key")),
            (Task.agent_session_id, payload.get("session_id")),
        )
        for column, value in lookups:
            if present(value):
                stmt = select(Task).where(column == str(value)).limit(1)
                task = (await self.db.execute(stmt)).scalar_one_or_none()
                if task is not None:
                    return task

        raw_id = payload.get("task_id")
        if present(raw_id):
            try:
                task = await self.db.get(Task, uuid.UUID(str(raw_id)))
            except ValueError:
                task = None
            if task is not None:
                return task

        raise NotFoundError(code=ErrorCodes.HOOK_TASK_NOT_FOUND, message="task not found")

    # =========================================================================
    # agent_complete
    # =========================================================================

    async def agent_complete(self, payload: dict[str, Any]) -> dict:
        task = await self.find_task(payload)

        findings = next(
            (str(payload[k]) for k in ("findings", "output") if present(payload.get(k))),
            NO_FINDINGS,
        )

        changes: dict[str, Any] = {
            "status": TaskStatus.IN_REVIEW,
            "assigned_to_agent": True,
            "assigned_at": task.assigned_at or utc_now(),
        }

        session_id = payload.get("session_id") or payload.get("agent_session_id")
        session_key = payload.get("session_key") or payload.get("agent_session_key")
        if present(session_id) and not present(task.agent_session_id):
            changes["agent_session_id"] = str(session_id)
        if present(session_key) and not present(task.agent_session_key):
            changes["agent_session_key"] = str(session_key)
        effective_session_id = changes.get("agent_session_id") or task.agent_session_id

        provided = payload.get("output_files") or payload.get("files")
        candidates = normalized_files(provided) or files_from_findings(findings)
        merged = normalized_files(list(task.output_files or []) + candidates)
        if merged:
            changes["output_files"] = merged

        current = task.description or ""
        if not present(task.original_description):
            original = preserved_description(current)
            if original:
                changes["original_description"] = original

        changes["description"] = build_description(
            current, findings, activity_markdown(task, effective_session_id)
        )

        tasks = TaskService(self.db, SYSTEM_CONTEXT)
        await tasks.apply_changes(task, changes)
        await tasks.commit()

        logger.info("Hook agent_complete for task %s (%d files)", task.task_id, len(merged))
        return {"success": True, "task_id": str(task.task_id), "status": status_value(task.status)}

    # =========================================================================
    # task_outcome
    # =========================================================================

    @staticmethod
    def validate_outcome(payload: dict[str, Any]) -> tuple[str, bool, str]:
        """
        Check an OutcomeContract v1 payload.

        Returns:
            (run_id, needs_follow_up, recommended_action)
        """
        def invalid(message: str) -> UnprocessableError:
            return UnprocessableError(message=message, code=ErrorCodes.HOOK_INVALID_PAYLOAD)

        if str(payload.get("version") or "") != OUTCOME_VERSION:
            raise invalid("invalid version")

        run_id = str(payload.get("run_id") or "")
        if not RUN_ID_PATTERN.match(run_id):
            raise invalid("invalid run_id")

        action = str(payload.get("recommended_action") or "").strip() or "in_review"
        if action not in RECOMMENDED_ACTIONS:
            raise invalid("invalid recommended_action")

        needs_follow_up = _as_bool(payload.get("needs_follow_up"))
        if needs_follow_up and action == "requeue_same_task" and not present(payload.get("next_prompt")):
            raise invalid("next_prompt required for requeue_same_task")

        return run_id, needs_follow_up, action

    async def _existing_run(self, run_id: str) -> Optional[TaskRun]:
        stmt = select(TaskRun).where(TaskRun.run_id == run_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def task_outcome(self, payload: dict[str, Any]) -> dict:
        task = await self.find_task(payload)
        run_id, needs_follow_up, action = self.validate_outcome(payload)

        existing = await self._existing_run(run_id)
        if existing is not None:
            return self._outcome_result(task, existing, idempotent=True)

        ended_at = _parse_ended_at(payload.get("ended_at"))
        run_number = (task.run_count or 0) + 1
        task_run = TaskRun(
            task_id=task.task_id,
            run_id=run_id,
            run_number=run_number,
            ended_at=ended_at,
            needs_follow_up=needs_follow_up,
            recommended_action=action,
            summary=payload.get("summary"),
            achieved=as_list(payload.get("achieved")),
            evidence=as_list(payload.get("evidence")),
            remaining=as_list(payload.get("remaining")),
            next_prompt=payload.get("next_prompt"),
            model_used=payload.get("model_used"),
            session_id=payload.get("session_id"),
            session_key=payload.get("session_key"),
            raw_payload={k: v for k, v in payload.items()},
        )
        try:
            async with self.db.begin_nested():
                self.db.add(task_run)
        except IntegrityError:
            # Concurrent report of the same run
            existing = await self._existing_run(run_id)
            return self._outcome_result(task, existing, idempotent=True)

        tasks = TaskService(self.db, SYSTEM_CONTEXT)
        await tasks.apply_changes(task, {
            "run_count": run_number,
            "last_run_id": run_id,
            "last_outcome_at": ended_at,
            "last_needs_follow_up": needs_follow_up,
            "last_recommended_action": action,
            "agent_claimed_at": None,
            "status": TaskStatus.IN_REVIEW,
        })
        await tasks.commit()

        logger.info("Recorded run %s (#%d) for task %s: %s", run_id, run_number, task.task_id, action)
        return self._outcome_result(task, task_run, idempotent=False)

    @staticmethod
    def _outcome_result(task: Task, task_run: Optional[TaskRun], idempotent: bool) -> dict:
        return {
            "success": True,
            "idempotent": idempotent,
            "task_id": str(task.task_id),
            "run_number": task_run.run_number if task_run else None,
            "status": status_value(task.status),
        }
