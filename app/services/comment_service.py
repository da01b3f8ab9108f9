"""
Comment Service
===============

Comments on tasks, written by the user or by an agent.
"""

import logging
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import ActorContext
from app.core.errors import ErrorCodes, NotFoundError, UnprocessableError
from app.models.task import Task, TaskComment
from app.services.broadcast import KanbanChannel

logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 10_000


class CommentService:
    """Service for task comments."""

    def __init__(self, db: AsyncSession, context: Optional[ActorContext] = None):
        self.db = db
        self.context = context or ActorContext()

    async def list_for_task(self, task: Task) -> list[TaskComment]:
        """Oldest first."""
        stmt = (
            select(TaskComment)
            .where(TaskComment.task_id == task.task_id)
            .order_by(TaskComment.created_at.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def create(self, task: Task, body: str) -> TaskComment:
        if not body or not body.strip() or len(body) > MAX_BODY_LENGTH:
            raise UnprocessableError(
                message=f"Body must be between 1 and {MAX_BODY_LENGTH} characters",
                field="body",
            )

        comment = TaskComment(
            task_id=task.task_id,
            user_id=task.user_id,
            body=body,
            author_type="agent" if self.context.is_agent else "user",
            actor_name=self.context.actor_name,
            actor_emoji=self.context.actor_emoji,
        )
        self.db.add(comment)
        await self.db.flush()
        await self.db.commit()

        await KanbanChannel.broadcast_refresh(task.board_id, task.task_id, "comment")
        return comment

    async def delete(self, task: Task, comment_id: uuid.UUID) -> None:
        stmt = select(TaskComment).where(
            TaskComment.comment_id == comment_id,
            TaskComment.task_id == task.task_id,
        )
        comment = (await self.db.execute(stmt)).scalar_one_or_none()
        if comment is None:
            raise NotFoundError(code=ErrorCodes.COMMENT_NOT_FOUND, message="Comment not found")
        await self.db.delete(comment)
        await self.db.flush()
