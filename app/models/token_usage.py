"""
Token Usage Model
=================

Per-run token counts and their USD cost.
"""

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

# USD per 1M tokens
COSTS = {
    "opus": {"input": 15.0, "output": 75.0},
    "sonnet": {"input": 3.0, "output": 15.0},
    "codex": {"input": 2.0, "output": 10.0},
    "gemini": {"input": 0.0, "output": 0.0},
    "glm": {"input": 0.5, "output": 2.0},
}


def normalize_model_name(model: Optional[str]) -> Optional[str]:
    """Map a provider model id to a short family key ('anthropic/claude-opus-4' -> 'opus')."""
    if not model or not str(model).strip():
        return None
    model = str(model).strip().lower()
    for key in COSTS:
        if key in model:
            return key
    return model.split("/")[-1].split("-")[0]


def calculate_cost(model: Optional[str], input_tokens: int, output_tokens: int) -> float:
    rates = COSTS.get(normalize_model_name(model) or "", COSTS["sonnet"])
    return (input_tokens / 1_000_000) * rates["input"] + (output_tokens / 1_000_000) * rates["output"]


class TokenUsage(Base):
    """Token usage reported for one agent run of a task."""

    __tablename__ = "token_usages"

    usage_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tasks.task_id", ondelete="CASCADE"),
        nullable=False,
    )
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    input_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    session_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("idx_token_usage_task", "task_id"),
        Index("idx_token_usage_created", "created_at"),
        Index("idx_token_usage_model", "model"),
    )

    @classmethod
    def build(
        cls,
        task_id: uuid.UUID,
        model: str,
        input_tokens: int,
        output_tokens: int,
        session_key: Optional[str] = None,
    ) -> "TokenUsage":
        """Unsaved usage row with ``cost`` computed from the model rates."""
        return cls(
            task_id=task_id,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=calculate_cost(model, input_tokens, output_tokens),
            session_key=session_key,
        )

    @property
    def total_tokens(self) -> int:
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    def __repr__(self) -> str:
        return f"<TokenUsage(model={self.model}, cost={self.cost})>"
