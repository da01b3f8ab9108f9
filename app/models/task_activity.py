"""
Task Activity Model
===================

Audit trail of task changes, rendered as a human-readable feed.
"""

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.task import STATUS_LABELS, TaskStatus

ACTIONS = ("created", "updated", "moved", "auto_claimed", "auto_queued")
SOURCES = ("web", "api", "system")
TRACKED_FIELDS = ("name", "priority", "due_date")


def humanize(value: str) -> str:
    """'due_date' -> 'Due date'."""
    text = value.replace("_", " ").strip()
    return text[:1].upper() + text[1:]


def format_status(status: Optional[str]) -> str:
    try:
        return STATUS_LABELS[TaskStatus(status)]
    except ValueError:
        return (status or "").replace("_", " ").title()


class TaskActivity(Base):
    """One change to a task."""

    __tablename__ = "task_activities"

    activity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tasks.task_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="SET NULL"),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(10), nullable=False, default="web")
    actor_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    actor_emoji: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    field_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("idx_activity_task_created", "task_id", "created_at"),
    )

    @property
    def description(self) -> str:
        if self.action == "created":
            return "Created via API" if self.source == "api" else "Created"
        if self.action == "moved":
            return f"Moved from {format_status(self.old_value)} to {format_status(self.new_value)}"
        if self.action == "updated":
            return self._describe_update()
        if self.action == "auto_claimed":
            return "🤖 Auto-claimed by agent"
        return humanize(self.action)

    def _describe_update(self) -> str:
        label = humanize(self.field_name or "").lower()
        if not self.old_value:
            return f"Set {label} to {self.new_value}"
        if not self.new_value:
            return f"Removed {label}"
        return f"Changed {label} from {self.old_value} to {self.new_value}"

    def __repr__(self) -> str:
        return f"<TaskActivity(task_id={self.task_id}, action={self.action})>"

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.activity_id),
            "task_id": str(self.task_id),
            "action": self.action,
            "source": self.source,
            "actor_type": self.actor_type,
            "actor_name": self.actor_name,
            "actor_emoji": self.actor_emoji,
            "note": self.note,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
