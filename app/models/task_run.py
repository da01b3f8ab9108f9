"""
Task Run Model
==============

One reported agent run for a task (outcome hook, contract v1).
"""

from datetime import datetime
from typing import Any, Optional
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin

RECOMMENDED_ACTIONS = ("in_review", "done", "requeue_same_task", "new_follow_up_task")


class TaskRun(Base, TimestampMixin):
    """Agent run outcome; ``run_id`` makes reporting idempotent."""

    __tablename__ = "task_runs"

    task_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tasks.task_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    run_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    run_number: Mapped[int] = mapped_column(Integer, nullable=False)
    ended_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    needs_follow_up: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recommended_action: Mapped[str] = mapped_column(String(50), nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    achieved: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    evidence: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    remaining: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    next_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    session_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<TaskRun(run_id={self.run_id}, run_number={self.run_number})>"

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.task_run_id),
            "run_id": self.run_id,
            "run_number": self.run_number,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "needs_follow_up": self.needs_follow_up,
            "recommended_action": self.recommended_action,
            "summary": self.summary,
            "achieved": list(self.achieved or []),
            "evidence": list(self.evidence or []),
            "remaining": list(self.remaining or []),
            "next_prompt": self.next_prompt,
            "model_used": self.model_used,
            "session_id": self.session_id,
            "session_key": self.session_key,
        }
