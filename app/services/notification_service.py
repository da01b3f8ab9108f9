"""
Notification Service
====================

Creates deduplicated notifications and serves the bell menu.
"""

from datetime import timedelta
import logging
from typing import Optional
import uuid

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorCodes, NotFoundError
from app.models.notification import MAX_MESSAGE_LENGTH, Notification
from app.models.task import Task
from app.utils.helpers import present, truncate, utc_now

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(minutes=5)
CAP_PER_USER = 200
DEFAULT_LIMIT = 20
MAX_LIMIT = 50


class NotificationService:
    """Service for notification operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_deduped(
        self,
        user_id: uuid.UUID,
        event_type: str,
        message: str,
        task_id: Optional[uuid.UUID] = None,
    ) -> Optional[Notification]:
        """
        Create a notification unless an identical one was sent recently.

        Returns:
            The new notification, or None when deduplicated
        """
        conditions = [
            Notification.user_id == user_id,
            Notification.event_type == event_type,
            Notification.created_at >= utc_now() - DEDUP_WINDOW,
        ]
        if task_id is not None:
            conditions.append(Notification.task_id == task_id)

        existing = await self.db.execute(select(Notification.notification_id).where(*conditions).limit(1))
        if existing.scalar_one_or_none() is not None:
            logger.debug("Deduplicated %s notification for user %s", event_type, user_id)
            return None

        notification = Notification(
            user_id=user_id,
            task_id=task_id,
            event_type=event_type,
            message=truncate(message, MAX_MESSAGE_LENGTH),
        )
        self.db.add(notification)
        await self.db.flush()
        await self.enforce_cap(user_id)
        return notification

    async def enforce_cap(self, user_id: uuid.UUID) -> None:
        """Keep only the newest CAP_PER_USER notifications."""
        overflow = (
            select(Notification.notification_id)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .offset(CAP_PER_USER)
        )
        result = await self.db.execute(overflow)
        overflow_ids = list(result.scalars().all())
        if overflow_ids:
            await self.db.execute(delete(Notification).where(Notification.notification_id.in_(overflow_ids)))

    async def create_for_status_change(self, task: Task, new_status: str) -> Optional[Notification]:
        if new_status == "in_review":
            message = f"{truncate(task.name, 50)} is ready for review"
        elif new_status == "done":
            message = f"{truncate(task.name, 50)} completed"
        else:
            return None
        return await self.create_deduped(task.user_id, "task_completed", message, task.task_id)

    async def create_for_error(self, task: Task, error_message: Optional[str] = None) -> Optional[Notification]:
        message = f"{truncate(task.name, 40)} encountered an error"
        if present(error_message):
            message += f": {truncate(error_message, 60)}"
        return await self.create_deduped(task.user_id, "task_errored", message, task.task_id)

    async def create_for_review(self, task: Task, passed: bool) -> Optional[Notification]:
        outcome = "passed review" if passed else "failed review"
        return await self.create_deduped(
            task.user_id,
            "review_passed" if passed else "review_failed",
            f"{truncate(task.name, 50)} {outcome}",
            task.task_id,
        )

    async def create_for_agent_claim(self, task: Task) -> Optional[Notification]:
        return await self.create_deduped(
            task.user_id,
            "agent_claimed",
            f"Agent started working on {truncate(task.name, 50)}",
            task.task_id,
        )

    # =========================================================================
    # Reading
    # =========================================================================

    async def unread_count(self, user_id: uuid.UUID) -> int:
        stmt = select(func.count()).select_from(Notification).where(
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
        )
        return (await self.db.execute(stmt)).scalar_one()

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        limit: int = DEFAULT_LIMIT,
        unread_only: bool = False,
    ) -> dict:
        """Return ``{notifications, unread_count, total}``, newest first."""
        limit = max(1, min(limit or DEFAULT_LIMIT, MAX_LIMIT))

        stmt = select(Notification).where(Notification.user_id == user_id)
        total_stmt = select(func.count()).select_from(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.read_at.is_(None))
            total_stmt = total_stmt.where(Notification.read_at.is_(None))

        result = await self.db.execute(stmt.order_by(Notification.created_at.desc()).limit(limit))
        notifications = list(result.scalars().all())
        total = (await self.db.execute(total_stmt)).scalar_one()

        return {
            "notifications": notifications,
            "unread_count": await self.unread_count(user_id),
            "total": total,
        }

    async def mark_read(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        stmt = select(Notification).where(
            Notification.notification_id == notification_id,
            Notification.user_id == user_id,
        )
        notification = (await self.db.execute(stmt)).scalar_one_or_none()
        if notification is None:
            raise NotFoundError(
                code=ErrorCodes.NOTIFICATION_NOT_FOUND,
                message="Notification not found",
            )
        notification.mark_as_read()
        await self.db.flush()
        return notification

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        """Returns the number of notifications marked."""
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read_at.is_(None))
            .values(read_at=utc_now())
        )
        return result.rowcount or 0
