"""
Board Models
============

SQLAlchemy models for kanban boards and the task lists inside them.
"""

from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.task import Task
    from app.models.user import User


# Tailwind-compatible board colors
BOARD_COLORS = (
    "gray", "red", "orange", "amber", "yellow", "lime", "green", "emerald",
    "teal", "cyan", "sky", "blue", "indigo", "violet", "purple", "fuchsia",
    "pink", "rose",
)
DEFAULT_BOARD_ICON = "📋"
DEFAULT_BOARD_COLOR = "gray"


class Board(Base, TimestampMixin):
    """
    Kanban board.

    Owns tasks and task lists; ordered per user by ``position``.
    """

    __tablename__ = "boards"

    board_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    icon: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DEFAULT_BOARD_ICON,
    )
    color: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DEFAULT_BOARD_COLOR,
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="boards")
    tasks: Mapped[list["Task"]] = relationship(
        "Task",
        back_populates="board",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )
    task_lists: Mapped[list["TaskList"]] = relationship(
        "TaskList",
        back_populates="board",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )

    __table_args__ = (
        Index("idx_board_user_position", "user_id", "position"),
    )

    def __repr__(self) -> str:
        return f"<Board(board_id={self.board_id}, name={self.name})>"

    def to_api_dict(self, tasks_count: Optional[int] = None) -> dict:
        return {
            "id": str(self.board_id),
            "name": self.name,
            "icon": self.icon,
            "color": self.color,
            "position": self.position,
            "tasks_count": tasks_count or 0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class TaskList(Base, TimestampMixin):
    """Named list grouping tasks within a board."""

    __tablename__ = "task_lists"

    task_list_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    board_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("boards.board_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    board: Mapped["Board"] = relationship("Board", back_populates="task_lists")

    def __repr__(self) -> str:
        return f"<TaskList(task_list_id={self.task_list_id}, title={self.title})>"

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.task_list_id),
            "board_id": str(self.board_id),
            "title": self.title,
            "position": self.position,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
