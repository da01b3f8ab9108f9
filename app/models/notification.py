"""
Notification Model
==================

In-app notifications about task and agent events.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

if TYPE_CHECKING:
    from app.models.task import Task
    from app.models.user import User


EVENT_TYPES = (
    "task_completed",
    "task_errored",
    "review_passed",
    "review_failed",
    "agent_claimed",
    "validation_passed",
    "validation_failed",
    "auto_runner",
    "auto_runner_error",
    "auto_pull_claimed",
    "auto_pull_ready",
    "auto_pull_spawned",
    "auto_pull_error",
    "zombie_task",
    "zombie_detected",
    "runner_lease_expired",
    "runner_lease_missing",
)

_AGENT_EVENTS = ("agent_claimed", "auto_runner", "auto_pull_claimed", "auto_pull_ready", "auto_pull_spawned")

_ICONS = {
    "task_completed": "✅",
    "validation_passed": "✅",
    "task_errored": "❌",
    "validation_failed": "❌",
    "auto_runner_error": "❌",
    "auto_pull_error": "❌",
    "review_passed": "🎉",
    "review_failed": "⚠️",
    "zombie_task": "🧟",
    "zombie_detected": "🧟",
    "runner_lease_expired": "🏷️",
    "runner_lease_missing": "🏷️",
    **{event: "🤖" for event in _AGENT_EVENTS},
}

_COLOR_CLASSES = {
    "task_completed": "text-status-success",
    "review_passed": "text-status-success",
    "validation_passed": "text-status-success",
    "task_errored": "text-status-error",
    "review_failed": "text-status-error",
    "validation_failed": "text-status-error",
    "auto_runner_error": "text-status-error",
    "auto_pull_error": "text-status-error",
    "zombie_task": "text-status-error",
    "zombie_detected": "text-status-error",
    "runner_lease_expired": "text-status-warning",
    "runner_lease_missing": "text-status-warning",
    **{event: "text-accent" for event in _AGENT_EVENTS},
}

MAX_MESSAGE_LENGTH = 10_000


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    """Compact relative time: 'just now', '5m ago', '3h ago', '2d ago', 'Mar 04'."""
    now = now or datetime.now(timezone.utc)
    seconds = int((now - moment).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    if seconds < 604800:
        return f"{seconds // 86400}d ago"
    return moment.strftime("%b %d")


class Notification(Base):
    """Notification shown in the user's bell menu."""

    __tablename__ = "notifications"

    notification_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    task_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tasks.task_id", ondelete="CASCADE"),
        nullable=True,
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    user: Mapped["User"] = relationship("User", back_populates="notifications")
    task: Mapped[Optional["Task"]] = relationship("Task", lazy="selectin")

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("idx_notification_user_created", "user_id", "created_at"),
        Index("idx_notification_user_read", "user_id", "read_at"),
    )

    @property
    def icon(self) -> str:
        return _ICONS.get(self.event_type, "🔔")

    @property
    def color_class(self) -> str:
        return _COLOR_CLASSES.get(self.event_type, "text-content-secondary")

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def mark_as_read(self) -> None:
        if self.read_at is None:
            self.read_at = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"<Notification(event_type={self.event_type}, user_id={self.user_id})>"

    def to_api_dict(self, now: Optional[datetime] = None) -> dict:
        task = self.task
        return {
            "id": str(self.notification_id),
            "event_type": self.event_type,
            "message": self.message,
            "icon": self.icon,
            "color_class": self.color_class,
            "read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "task_id": str(self.task_id) if self.task_id else None,
            "task_name": task.name if task is not None else None,
            "board_id": str(task.board_id) if task is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "time_ago": time_ago(self.created_at, now) if self.created_at else "just now",
        }
