"""
Task Activity Service
=====================

Writes the per-task audit trail.
"""

from datetime import date
from typing import Any, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import ActorContext
from app.models.task import Task, TaskPriority
from app.models.task_activity import TRACKED_FIELDS, TaskActivity, humanize
from app.utils.helpers import format_due_date, truncate

ACTIVITY_FEED_LIMIT = 50


def format_value(field: str, value: Any) -> Optional[str]:
    """Render a tracked field value for the activity feed."""
    if value is None:
        return None
    if field == "priority":
        raw = value.value if isinstance(value, TaskPriority) else str(value)
        return humanize(raw)
    if field == "due_date":
        return format_due_date(value) if isinstance(value, date) else str(value)
    return truncate(str(value), 50)


class ActivityService:
    """Records and lists task activities."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _build(
        self,
        task: Task,
        context: ActorContext,
        action: str,
        user_id: Optional[uuid.UUID] = None,
        **fields,
    ) -> TaskActivity:
        activity = TaskActivity(
            task_id=task.task_id,
            user_id=user_id or task.user_id,
            action=action,
            source=context.source,
            actor_type=context.actor_type,
            actor_name=context.actor_name,
            actor_emoji=context.actor_emoji,
            note=context.note,
            **fields,
        )
        self.db.add(activity)
        return activity

    async def record_creation(self, task: Task, context: ActorContext) -> TaskActivity:
        activity = self._build(task, context, "created")
        await self.db.flush()
        return activity

    async def record_status_change(
        self,
        task: Task,
        old_status: Optional[str],
        new_status: str,
        context: ActorContext,
    ) -> TaskActivity:
        activity = self._build(
            task,
            context,
            "moved",
            field_name="status",
            old_value=old_status,
            new_value=new_status,
        )
        await self.db.flush()
        return activity

    async def record_changes(
        self,
        task: Task,
        changes: dict[str, tuple[Any, Any]],
        context: ActorContext,
    ) -> list[TaskActivity]:
        """
        Record one ``updated`` activity per tracked field in ``changes``.

        Args:
            changes: field name -> (old value, new value)
        """
        activities = []
        for field in TRACKED_FIELDS:
            if field not in changes:
                continue
            old_value, new_value = changes[field]
            activities.append(self._build(
                task,
                context,
                "updated",
                field_name=field,
                old_value=format_value(field, old_value),
                new_value=format_value(field, new_value),
            ))
        if activities:
            await self.db.flush()
        return activities

    async def list_for_task(self, task_id: uuid.UUID, limit: int = ACTIVITY_FEED_LIMIT) -> list[TaskActivity]:
        """Newest first."""
        stmt = (
            select(TaskActivity)
            .where(TaskActivity.task_id == task_id)
            .order_by(TaskActivity.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
