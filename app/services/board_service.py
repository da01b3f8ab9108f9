"""
Board Service
=============

Business logic for boards, task lists and the onboarding board.
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorCodes, NotFoundError, UnprocessableError
from app.models.board import DEFAULT_BOARD_COLOR, DEFAULT_BOARD_ICON, Board, TaskList
from app.models.task import Task, TaskStatus
from app.models.user import User
from app.utils.validators import validate_board_color

logger = logging.getLogger(__name__)

ONBOARDING_BOARD = {"name": "Getting Started", "icon": "🚀", "color": "blue"}

ONBOARDING_TASKS = (
    (
        "👋 Welcome to ClawDeck!",
        "Your mission control for AI agents. Drag tasks between columns, and your agent picks up "
        "what you assign. Think of it as a shared kanban with your AI coworker.",
        TaskStatus.INBOX,
        0,
    ),
    (
        "🔗 Connect your agent",
        "Go to Settings → copy the integration prompt → paste it into your agent's config. "
        "Once connected, you'll see your agent appear in the header.",
        TaskStatus.INBOX,
        1,
    ),
    (
        "✅ Assign your first task",
        "Create a task, then right-click → \"Assign to Agent\". Your agent will pick it up and "
        "start working. Watch the activity feed for updates!",
        TaskStatus.INBOX,
        2,
    ),
    (
        "💡 Example: Research task",
        "\"Research the top 5 competitors to [product] and summarize their pricing models.\" "
        "Great for agents with web access.",
        TaskStatus.INBOX,
        3,
    ),
    (
        "💡 Example: Code task",
        "\"Add a dark mode toggle to the settings page. Use Tailwind classes.\" Perfect for coding agents.",
        TaskStatus.INBOX,
        4,
    ),
    (
        "💡 Example: Writing task",
        "\"Draft a welcome email for new users. Keep it short, friendly, 3 paragraphs max.\" "
        "Works with any agent.",
        TaskStatus.INBOX,
        5,
    ),
    (
        "🎯 Try it yourself!",
        "Delete these cards and create your first real task. Be specific: your agent works best "
        "with clear instructions.",
        TaskStatus.UP_NEXT,
        0,
    ),
)


def board_fingerprint(task_count: int, latest_update: Optional[datetime], status_counts: dict[str, int]) -> str:
    """MD5 of ``"{count}-{latest_epoch}-{status_counts_json}"``; changes whenever the board does."""
    epoch = int(latest_update.timestamp()) if latest_update else 0
    counts_json = json.dumps(dict(sorted(status_counts.items())), separators=(",", ":"))
    return hashlib.md5(f"{task_count}-{epoch}-{counts_json}".encode("utf-8")).hexdigest()


class BoardService:
    """Service for board operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Lookup
    # =========================================================================

    async def get_board(self, user_id: uuid.UUID, board_id: uuid.UUID) -> Board:
        """Board owned by the user, else 404."""
        stmt = select(Board).where(Board.board_id == board_id, Board.user_id == user_id)
        board = (await self.db.execute(stmt)).scalar_one_or_none()
        if board is None:
            raise NotFoundError(code=ErrorCodes.BOARD_NOT_FOUND, message="Board not found")
        return board

    async def list_boards(self, user_id: uuid.UUID) -> list[Board]:
        stmt = (
            select(Board)
            .where(Board.user_id == user_id)
            .order_by(Board.position.asc(), Board.created_at.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def task_counts(self, board_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not board_ids:
            return {}
        stmt = (
            select(Task.board_id, func.count())
            .where(Task.board_id.in_(board_ids))
            .group_by(Task.board_id)
        )
        return {board_id: count for board_id, count in (await self.db.execute(stmt)).all()}

    async def board_tasks(self, board_id: uuid.UUID) -> list[Task]:
        stmt = (
            select(Task)
            .where(Task.board_id == board_id)
            .order_by(Task.status.asc(), Task.position.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def first_board(self, user_id: uuid.UUID) -> Optional[Board]:
        stmt = (
            select(Board)
            .where(Board.user_id == user_id)
            .order_by(Board.position.asc(), Board.created_at.asc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def first_or_create_default(self, user_id: uuid.UUID) -> Board:
        """The user's first board, creating "Personal" when there is none."""
        board = await self.first_board(user_id)
        if board is None:
            board = await self.create_board(user_id, name="Personal")
        return board

    # =========================================================================
    # Writes
    # =========================================================================

    async def _next_position(self, user_id: uuid.UUID) -> int:
        stmt = select(func.max(Board.position)).where(Board.user_id == user_id)
        return ((await self.db.execute(stmt)).scalar_one_or_none() or 0) + 1

    async def create_board(
        self,
        user_id: uuid.UUID,
        name: str,
        icon: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Board:
        if not name or not name.strip():
            raise UnprocessableError(
                message="Name can't be blank",
                code=ErrorCodes.BOARD_INVALID_DATA,
                field="name",
            )
        board = Board(
            user_id=user_id,
            name=name.strip(),
            icon=icon or DEFAULT_BOARD_ICON,
            color=validate_board_color(color) or DEFAULT_BOARD_COLOR,
            position=await self._next_position(user_id),
        )
        self.db.add(board)
        await self.db.flush()
        return board

    async def update_board(self, board: Board, changes: dict) -> Board:
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise UnprocessableError(
                    message="Name can't be blank",
                    code=ErrorCodes.BOARD_INVALID_DATA,
                    field="name",
                )
            board.name = name
        if changes.get("icon"):
            board.icon = changes["icon"]
        if changes.get("color") is not None:
            board.color = validate_board_color(changes["color"])
        await self.db.flush()
        return board

    async def delete_board(self, user_id: uuid.UUID, board: Board) -> None:
        count_stmt = select(func.count()).select_from(Board).where(Board.user_id == user_id)
        if (await self.db.execute(count_stmt)).scalar_one() <= 1:
            raise UnprocessableError(
                message="Cannot delete your only board",
                code=ErrorCodes.BOARD_LAST_BOARD,
            )
        await self.db.delete(board)
        await self.db.flush()
        logger.info("Deleted board %s for user %s", board.board_id, user_id)

    async def create_onboarding_for(self, user: User) -> Board:
        """Create the "Getting Started" board with its welcome cards."""
        board = await self.create_board(user.user_id, **ONBOARDING_BOARD)
        for name, description, status, position in ONBOARDING_TASKS:
            self.db.add(Task(
                user_id=user.user_id,
                board_id=board.board_id,
                name=name,
                description=description,
                status=status,
                position=position,
            ))
        await self.db.flush()
        return board

    # =========================================================================
    # Polling
    # =========================================================================

    async def status(self, board: Board) -> dict:
        """Cheap change-detection summary over non-archived tasks."""
        base = (Task.board_id == board.board_id, Task.status != TaskStatus.ARCHIVED)

        totals = await self.db.execute(select(func.count(), func.max(Task.updated_at)).where(*base))
        task_count, latest_update = totals.one()

        grouped = await self.db.execute(select(Task.status, func.count()).where(*base).group_by(Task.status))
        status_counts = {
            (status.value if isinstance(status, TaskStatus) else str(status)): count
            for status, count in grouped.all()
        }

        return {
            "fingerprint": board_fingerprint(task_count, latest_update, status_counts),
            "task_count": task_count,
            "updated_at": latest_update.isoformat() if latest_update else None,
        }


class TaskListService:
    """Service for task lists within a board."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_board(self, board_id: uuid.UUID) -> list[TaskList]:
        stmt = (
            select(TaskList)
            .where(TaskList.board_id == board_id)
            .order_by(TaskList.position.asc(), TaskList.created_at.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def get_task_list(self, board_id: uuid.UUID, task_list_id: uuid.UUID) -> TaskList:
        stmt = select(TaskList).where(
            TaskList.task_list_id == task_list_id,
            TaskList.board_id == board_id,
        )
        task_list = (await self.db.execute(stmt)).scalar_one_or_none()
        if task_list is None:
            raise NotFoundError(code=ErrorCodes.TASK_LIST_NOT_FOUND, message="Task list not found")
        return task_list

    @staticmethod
    def _clean_title(title: Optional[str]) -> str:
        title = (title or "").strip()
        if not title:
            raise UnprocessableError(message="Title can't be blank", field="title")
        return title

    async def create_task_list(self, board: Board, title: str) -> TaskList:
        max_stmt = select(func.max(TaskList.position)).where(TaskList.board_id == board.board_id)
        position = ((await self.db.execute(max_stmt)).scalar_one_or_none() or 0) + 1
        task_list = TaskList(
            board_id=board.board_id,
            user_id=board.user_id,
            title=self._clean_title(title),
            position=position,
        )
        self.db.add(task_list)
        await self.db.flush()
        return task_list

    async def update_task_list(self, task_list: TaskList, title: Optional[str], position: Optional[int]) -> TaskList:
        if title is not None:
            task_list.title = self._clean_title(title)
        if position is not None:
            task_list.position = position
        await self.db.flush()
        return task_list

    async def delete_task_list(self, task_list: TaskList) -> None:
        """Tasks in the list stay on the board, un-filed."""
        await self.db.execute(
            update(Task)
            .where(Task.task_list_id == task_list.task_list_id)
            .values(task_list_id=None)
        )
        await self.db.delete(task_list)
        await self.db.flush()
