"""
Task Models
===========

SQLAlchemy models for tasks and their comments.
"""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional
import uuid

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.board import Board
    from app.models.user import User


# =============================================================================
# Enums
# =============================================================================

class TaskStatus(str, Enum):
    """Kanban column. Declaration order is the column order."""
    INBOX = "inbox"
    UP_NEXT = "up_next"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"
    ARCHIVED = "archived"


class TaskPriority(str, Enum):
    """Task priority. Declaration order is ascending importance."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


STATUS_LABELS = {
    TaskStatus.INBOX: "Inbox",
    TaskStatus.UP_NEXT: "Up Next",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.IN_REVIEW: "In Review",
    TaskStatus.DONE: "Done",
    TaskStatus.ARCHIVED: "Archived",
}

# Serializer field sets
FULL_ATTRIBUTES = (
    "id", "name", "description", "status", "priority", "position",
    "board_id", "task_list_id", "user_id",
    "tags", "output_files",
    "blocked", "completed", "assigned_to_agent", "model",
    "agent_session_id", "agent_session_key", "agent_claimed_at",
    "error_message", "error_at", "retry_count",
    "run_count", "last_run_id", "last_outcome_at",
    "last_needs_follow_up", "last_recommended_action",
    "due_date", "completed_at", "assigned_at", "archived_at",
    "created_at", "updated_at",
)

MINI_ATTRIBUTES = (
    "id", "name", "status", "tags", "priority", "board_id",
    "created_at", "updated_at", "completed", "assigned_to_agent",
)

# Cards embedded in a board response
BOARD_ATTRIBUTES = (
    "id", "name", "description", "priority", "status", "blocked",
    "tags", "completed", "position", "assigned_to_agent",
)


def _json_value(value: Any) -> Any:
    """Render a column value for JSON output."""
    if isinstance(value, datetime):
        return value.isoformat(timespec="milliseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


# =============================================================================
# Models
# =============================================================================

class Task(Base, TimestampMixin):
    """
    Task model.

    A card on a board. Lifecycle side effects (position, completion
    timestamps, activities, notifications, broadcasts) are applied by
    ``TaskService`` so that every write path shares them.
    """

    __tablename__ = "tasks"

    # Primary Key
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Foreign Keys
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    board_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("boards.board_id", ondelete="CASCADE"),
        nullable=False,
    )
    task_list_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("task_lists.task_list_id", ondelete="SET NULL"),
        nullable=True,
    )

    # Task details
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        SQLEnum(TaskStatus, name="taskstatus", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TaskStatus.INBOX,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        SQLEnum(TaskPriority, name="taskpriority", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TaskPriority.NONE,
    )
    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    blocked: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Agent assignment
    assigned_to_agent: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    agent_claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    agent_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    agent_session_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Agent output
    output_files: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    original_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Errors
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Outcome runs
    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_run_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    last_outcome_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_needs_follow_up: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    last_recommended_action: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="tasks")
    board: Mapped["Board"] = relationship("Board", back_populates="tasks")
    comments: Mapped[list["TaskComment"]] = relationship(
        "TaskComment",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )

    # Indexes
    __table_args__ = (
        Index("idx_task_user_status", "user_id", "status"),
        Index("idx_task_board_status_position", "board_id", "status", "position"),
        Index("idx_task_session_key", "agent_session_key"),
        Index("idx_task_session_id", "agent_session_id"),
        Index("idx_task_assigned", "assigned_to_agent"),
    )

    @property
    def id(self) -> uuid.UUID:
        return self.task_id

    def __repr__(self) -> str:
        return f"<Task(task_id={self.task_id}, name={(self.name or '')[:30]})>"

    def to_api_dict(self, mini: bool = False) -> dict:
        """
        Serialize to the API response format.

        ``mini=True`` returns the compact card shape used in lists and
        broadcasts; the default is the full representation.
        """
        return self._serialize(MINI_ATTRIBUTES if mini else FULL_ATTRIBUTES)

    def to_board_dict(self) -> dict:
        return self._serialize(BOARD_ATTRIBUTES)

    def _serialize(self, attrs: tuple[str, ...]) -> dict:
        result = {}
        for attr in attrs:
            value = getattr(self, attr, None)
            if attr in ("tags", "output_files"):
                value = list(value or [])
            result[attr] = _json_value(value)
        return result


class TaskComment(Base, TimestampMixin):
    """Comment on a task written by the user or an agent."""

    __tablename__ = "task_comments"

    comment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tasks.task_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    author_type: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    actor_emoji: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    task: Mapped["Task"] = relationship("Task", back_populates="comments")

    __table_args__ = (
        Index("idx_comment_task_created", "task_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TaskComment(comment_id={self.comment_id}, task_id={self.task_id})>"

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.comment_id),
            "task_id": str(self.task_id),
            "body": self.body,
            "author_type": self.author_type,
            "actor_name": self.actor_name,
            "actor_emoji": self.actor_emoji,
            "created_at": _json_value(self.created_at),
            "updated_at": _json_value(self.updated_at),
        }
