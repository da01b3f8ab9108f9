"""
Task Service
============

Business logic for tasks: lifecycle rules, agent workflow operations
and the side effects every write shares (activities, notifications,
real-time broadcasts).
"""

import logging
from typing import Any, Awaitable, Callable, Optional
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import ActorContext
from app.core.errors import ErrorCodes, NotFoundError, UnprocessableError, ValidationError
from app.models.board import Board
from app.models.task import Task, TaskPriority, TaskStatus
from app.models.task_activity import TRACKED_FIELDS, TaskActivity
from app.models.task_run import TaskRun
from app.models.user import User
from app.services.activity_service import ActivityService
from app.services.board_service import BoardService, TaskListService
from app.services.broadcast import AgentActivityChannel, KanbanChannel
from app.services.notification_service import NotificationService
from app.services.token_usage_service import TokenUsageService
from app.utils.helpers import present, unique_ordered, utc_now

logger = logging.getLogger(__name__)

AGENT_OUTPUT_HEADER = "## Agent Output"
OUTPUT_KEYS = ("output", "description", "summary", "result", "text", "message", "content")
FILE_KEYS = ("output_files", "files", "created_files", "changed_files", "modified_files")
COLUMN_PAGE_SIZE = 25

# Fields whose change triggers an agent activity broadcast
_AGENT_FIELDS = ("status", "agent_session_id", "agent_claimed_at")

# NOT NULL columns; an explicit null in an update leaves them unchanged
REQUIRED_FIELDS = ("status", "priority", "tags", "blocked", "assigned_to_agent", "output_files", "retry_count")


def status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return status.value if isinstance(status, TaskStatus) else str(status)


def parse_status(value: Any) -> TaskStatus:
    """TaskStatus from a raw value; unknown values are a 422."""
    try:
        return TaskStatus(status_value(value))
    except ValueError:
        raise UnprocessableError(
            message=f"Invalid status: {value}",
            code=ErrorCodes.TASK_INVALID_STATUS,
            field="status",
        )


def first_present(payload: dict, keys: tuple[str, ...]) -> Any:
    """Value of the first key in ``keys`` holding a present value."""
    for key in keys:
        value = payload.get(key)
        if present(value):
            return value
    return None


def as_file_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    items = raw if isinstance(raw, (list, tuple)) else [raw]
    return [str(item).strip() for item in items if str(item).strip()]


def ordered_for_column(stmt, status: TaskStatus):
    """In review: newest update first. Done: newest first. Others: by position."""
    if status == TaskStatus.IN_REVIEW:
        return stmt.order_by(Task.updated_at.desc(), Task.task_id.desc())
    if status == TaskStatus.DONE:
        return stmt.order_by(Task.created_at.desc(), Task.task_id.desc())
    return stmt.order_by(Task.position.asc(), Task.task_id.asc())


class TaskService:
    """Service for task operations."""

    def __init__(self, db: AsyncSession, context: Optional[ActorContext] = None):
        self.db = db
        self.context = context or ActorContext()
        self.activities = ActivityService(db)
        self.notifications = NotificationService(db)
        self._pending: list[Callable[[], Awaitable[Any]]] = []

    # =========================================================================
    # Lookup
    # =========================================================================

    async def get_task(self, user_id: uuid.UUID, task_id: uuid.UUID) -> Task:
        """Task owned by the user, else 404."""
        stmt = select(Task).where(Task.task_id == task_id, Task.user_id == user_id)
        task = (await self.db.execute(stmt)).scalar_one_or_none()
        if task is None:
            raise NotFoundError(code=ErrorCodes.TASK_NOT_FOUND, message="Task not found")
        return task

    async def list_tasks(
        self,
        user_id: uuid.UUID,
        board_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        blocked: Optional[bool] = None,
        tag: Optional[str] = None,
        completed: Optional[bool] = None,
        priority: Optional[str] = None,
        assigned: Optional[bool] = None,
    ) -> list[Task]:
        """User's tasks; unknown status or priority filters are ignored."""
        stmt = select(Task).where(Task.user_id == user_id)

        if board_id is not None:
            stmt = stmt.where(Task.board_id == board_id)
        if status in TaskStatus._value2member_map_:
            stmt = stmt.where(Task.status == TaskStatus(status))
        if blocked is not None:
            stmt = stmt.where(Task.blocked.is_(blocked))
        if tag:
            stmt = stmt.where(Task.tags.contains([tag]))
        if completed is not None:
            stmt = stmt.where(Task.completed.is_(completed))
        if priority in TaskPriority._value2member_map_:
            stmt = stmt.where(Task.priority == TaskPriority(priority))
        if assigned is not None:
            stmt = stmt.where(Task.assigned_to_agent.is_(assigned))

        if assigned:
            stmt = stmt.order_by(Task.assigned_at.asc())
        else:
            stmt = stmt.order_by(Task.status.asc(), Task.position.asc())

        return list((await self.db.execute(stmt)).scalars().all())

    async def list_column(
        self,
        board: Board,
        status: str,
        page: int = 1,
        tag: Optional[str] = None,
    ) -> dict:
        """One kanban column, paginated for infinite scroll."""
        if status not in TaskStatus._value2member_map_ or status == TaskStatus.ARCHIVED.value:
            raise ValidationError(message=f"Invalid column: {status}", field="status")
        column = TaskStatus(status)

        stmt = select(Task).where(Task.board_id == board.board_id, Task.status == column)
        if tag:
            stmt = stmt.where(Task.tags.contains([tag]))
        offset = (max(page, 1) - 1) * COLUMN_PAGE_SIZE
        stmt = ordered_for_column(stmt, column).offset(offset).limit(COLUMN_PAGE_SIZE + 1)

        tasks = list((await self.db.execute(stmt)).scalars().all())
        return {
            "tasks": tasks[:COLUMN_PAGE_SIZE],
            "has_more": len(tasks) > COLUMN_PAGE_SIZE,
        }

    async def next_task(self, user: User) -> Optional[Task]:
        """Highest-priority unclaimed, unblocked up-next task; None when auto mode is off."""
        if not user.agent_auto_mode:
            return None
        stmt = (
            select(Task)
            .where(
                Task.user_id == user.user_id,
                Task.status == TaskStatus.UP_NEXT,
                Task.blocked.is_(False),
                Task.agent_claimed_at.is_(None),
            )
            .order_by(Task.priority.desc(), Task.position.asc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def pending_attention(self, user: User) -> list[Task]:
        if not user.agent_auto_mode:
            return []
        stmt = select(Task).where(
            Task.user_id == user.user_id,
            Task.status == TaskStatus.IN_PROGRESS,
            Task.agent_claimed_at.is_not(None),
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def errored_count(self, user_id: uuid.UUID) -> int:
        stmt = select(func.count()).select_from(Task).where(
            Task.user_id == user_id,
            Task.error_at.is_not(None),
        )
        return (await self.db.execute(stmt)).scalar_one()

    async def list_activities(self, task: Task) -> list[TaskActivity]:
        return await self.activities.list_for_task(task.task_id)

    async def list_runs(self, task: Task) -> list[TaskRun]:
        """Reported runs, newest first."""
        stmt = (
            select(TaskRun)
            .where(TaskRun.task_id == task.task_id)
            .order_by(TaskRun.run_number.desc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _queue(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> None:
        self._pending.append(lambda: fn(*args, **kwargs))

    async def commit(self) -> None:
        """Commit, then publish queued broadcasts."""
        await self.db.commit()
        pending, self._pending = self._pending, []
        for publish in pending:
            await publish()

    async def _next_position(self, board_id: uuid.UUID, status: TaskStatus) -> int:
        stmt = select(func.max(Task.position)).where(Task.board_id == board_id, Task.status == status)
        return ((await self.db.execute(stmt)).scalar_one_or_none() or 0) + 1

    @staticmethod
    def _track_completion(task: Task) -> None:
        now = utc_now()
        if task.status == TaskStatus.DONE:
            task.completed_at = now
            task.archived_at = None
        elif task.status == TaskStatus.ARCHIVED:
            task.archived_at = now
        else:
            task.completed_at = None
            task.archived_at = None

    async def apply_changes(self, task: Task, changes: dict[str, Any], agent_broadcast: bool = True) -> bool:
        """
        Write ``changes`` and run the shared update side effects.

        Callers that queue their own agent activity frame pass
        ``agent_broadcast=False``.

        Returns:
            True if the status changed
        """
        watched = set(TRACKED_FIELDS) | set(_AGENT_FIELDS)
        before = {field: getattr(task, field) for field in watched}

        for field, value in changes.items():
            if field == "status":
                value = parse_status(value)
            elif field == "priority" and value is not None:
                value = TaskPriority(value)
            setattr(task, field, value)

        status_changed = task.status != before["status"]
        if status_changed:
            self._track_completion(task)
        task.completed = task.status == TaskStatus.DONE
        await self.db.flush()

        old_status, new_status = status_value(before["status"]), status_value(task.status)
        if status_changed:
            await self.activities.record_status_change(task, old_status, new_status, self.context)
        tracked = {
            field: (before[field], getattr(task, field))
            for field in TRACKED_FIELDS
            if before[field] != getattr(task, field)
        }
        if tracked:
            await self.activities.record_changes(task, tracked, self.context)
        if status_changed:
            await self.notifications.create_for_status_change(task, new_status)

        if status_changed:
            self._queue(
                KanbanChannel.broadcast_refresh,
                task.board_id, task.task_id, "update", old_status=old_status, new_status=new_status,
            )
        else:
            self._queue(KanbanChannel.broadcast_refresh, task.board_id, task.task_id, "update")
        if agent_broadcast and any(before[field] != getattr(task, field) for field in _AGENT_FIELDS):
            self._queue(AgentActivityChannel.broadcast_status, task.task_id, new_status)

        return status_changed

    # =========================================================================
    # CRUD
    # =========================================================================

    async def _check_placement(self, user_id: uuid.UUID, board_id: uuid.UUID, task_list_id: Optional[uuid.UUID]) -> None:
        if task_list_id is not None:
            await TaskListService(self.db).get_task_list(board_id, task_list_id)

    async def create_task(self, user: User, data: dict[str, Any]) -> Task:
        data = dict(data)
        boards = BoardService(self.db)
        board_id = data.pop("board_id", None)
        if board_id:
            board = await boards.get_board(user.user_id, board_id)
        else:
            board = await boards.first_or_create_default(user.user_id)

        if not present(data.get("name")):
            raise UnprocessableError(message="Name can't be blank", code=ErrorCodes.TASK_INVALID_DATA, field="name")
        await self._check_placement(user.user_id, board.board_id, data.get("task_list_id"))

        status = parse_status(data.pop("status", None) or TaskStatus.INBOX)
        priority = TaskPriority(data.pop("priority", None) or TaskPriority.NONE)
        position = data.pop("position", None)
        if position is None:
            position = await self._next_position(board.board_id, status)

        task = Task(
            user_id=user.user_id,
            board_id=board.board_id,
            status=status,
            priority=priority,
            position=position,
            **data,
        )
        task.completed = status == TaskStatus.DONE
        if task.assigned_to_agent and task.assigned_at is None:
            task.assigned_at = utc_now()
        self.db.add(task)
        await self.db.flush()

        await self.activities.record_creation(task, self.context)
        self._queue(KanbanChannel.broadcast_refresh, task.board_id, task.task_id, "create")
        await self.commit()

        logger.info("Created task %s on board %s (%s)", task.task_id, task.board_id, self.context.source)
        return task

    async def update_task(self, user: User, task: Task, changes: dict[str, Any]) -> Task:
        changes = {
            field: value for field, value in changes.items()
            if not (value is None and field in REQUIRED_FIELDS)
        }
        if "name" in changes and not present(changes["name"]):
            raise UnprocessableError(message="Name can't be blank", code=ErrorCodes.TASK_INVALID_DATA, field="name")
        if changes.get("board_id") and changes["board_id"] != task.board_id:
            await BoardService(self.db).get_board(user.user_id, changes["board_id"])
            changes.setdefault("task_list_id", None)
        elif "board_id" in changes and not changes["board_id"]:
            changes.pop("board_id")
        await self._check_placement(user.user_id, changes.get("board_id", task.board_id), changes.get("task_list_id"))

        if changes.get("assigned_to_agent") and not task.assigned_to_agent:
            changes.setdefault("assigned_at", utc_now())

        await self.apply_changes(task, changes)
        await self.commit()
        return task

    async def delete_task(self, task: Task) -> None:
        board_id, task_id = task.board_id, task.task_id
        await self.db.delete(task)
        self._queue(KanbanChannel.broadcast_refresh, board_id, task_id, "destroy")
        await self.commit()
        logger.info("Deleted task %s", task_id)

    # =========================================================================
    # Workflow
    # =========================================================================

    async def toggle_complete(self, task: Task) -> Task:
        new_status = TaskStatus.INBOX if task.status == TaskStatus.DONE else TaskStatus.DONE
        await self.apply_changes(task, {"status": new_status})
        await self.commit()
        return task

    async def move(self, task: Task, status: Any) -> Task:
        await self.apply_changes(task, {"status": parse_status(status)})
        await self.commit()
        return task

    async def claim(self, task: Task, session_id: Optional[str] = None, session_key: Optional[str] = None) -> Task:
        changes: dict[str, Any] = {"agent_claimed_at": utc_now(), "status": TaskStatus.IN_PROGRESS}
        if present(session_id):
            changes["agent_session_id"] = session_id
        if present(session_key):
            changes["agent_session_key"] = session_key

        await self.apply_changes(task, changes, agent_broadcast=False)
        await self.notifications.create_for_agent_claim(task)
        self._queue(
            AgentActivityChannel.broadcast_status,
            task.task_id,
            "in_progress",
            {"agent_claimed": True, "session_linked": present(session_id)},
        )
        await self.commit()
        return task

    async def unclaim(self, task: Task) -> Task:
        await self.apply_changes(task, {"agent_claimed_at": None})
        await self.commit()
        return task

    async def assign(self, task: Task) -> Task:
        await self.apply_changes(task, {"assigned_to_agent": True, "assigned_at": utc_now()})
        await self.commit()
        return task

    async def unassign(self, task: Task) -> Task:
        await self.apply_changes(task, {"assigned_to_agent": False, "assigned_at": None})
        await self.commit()
        return task

    async def link_session(self, task: Task, session_id: Optional[str] = None, session_key: Optional[str] = None) -> Task:
        changes = {}
        if present(session_id):
            changes["agent_session_id"] = session_id
        if present(session_key):
            changes["agent_session_key"] = session_key

        await self.apply_changes(task, changes, agent_broadcast=False)
        self._queue(
            AgentActivityChannel.broadcast_status,
            task.task_id,
            status_value(task.status),
            {"session_linked": True, "has_session": present(task.agent_session_id)},
        )
        await self.commit()
        return task

    async def agent_complete(self, task: Task, payload: dict[str, Any]) -> Task:
        """
        Record an agent's finished work on a task.

        Output text and files are accepted under several key names. Output
        is appended under a single "## Agent Output" header; files are merged
        into ``output_files``. The task moves to ``status`` (default in_review)
        and the claim is released.
        """
        session_id = first_present(payload, ("session_id", "agent_session_id"))
        session_key = first_present(payload, ("session_key", "agent_session_key"))
        output_text = first_present(payload, OUTPUT_KEYS)
        files = as_file_list(first_present(payload, FILE_KEYS))

        if output_text is None and not files:
            logger.warning("agent_complete with no output for task %s (keys: %s)", task.task_id, sorted(payload))

        changes: dict[str, Any] = {
            "status": parse_status(payload.get("status") or TaskStatus.IN_REVIEW),
            "agent_claimed_at": None,
        }
        if session_id and not present(task.agent_session_id):
            changes["agent_session_id"] = str(session_id)
        if session_key and not present(task.agent_session_key):
            changes["agent_session_key"] = str(session_key)

        if output_text is not None:
            description = task.description or ""
            if AGENT_OUTPUT_HEADER not in description:
                description += f"\n\n{AGENT_OUTPUT_HEADER}\n"
            changes["description"] = description + str(output_text)
        if files:
            changes["output_files"] = unique_ordered(list(task.output_files or []) + files)

        completed_at = task.completed_at
        await self.apply_changes(task, changes, agent_broadcast=False)
        task.completed_at = completed_at or utc_now()

        await TokenUsageService(self.db).record(
            task,
            input_tokens=payload.get("input_tokens"),
            output_tokens=payload.get("output_tokens"),
            model=payload.get("token_model"),
        )

        self._queue(
            AgentActivityChannel.broadcast_status,
            task.task_id,
            "in_review",
            {"output_present": output_text is not None, "files_count": len(task.output_files or [])},
        )
        await self.commit()

        logger.info(
            "agent_complete for task %s: output=%s files=%d",
            task.task_id, output_text is not None, len(files),
        )
        return task
