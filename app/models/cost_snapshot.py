"""
Cost Snapshot Model
===================

Periodic cost totals used for budget tracking and trend analysis.
"""

from datetime import date
from typing import Any, Optional, Sequence
import uuid

from sqlalchemy import Boolean, Date, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin

PERIODS = ("daily", "weekly", "monthly")


def compute_trend(costs: Sequence[float], lookback: int = 7) -> str:
    """
    Trend of newest-first snapshot costs: 'up', 'down' or 'flat'.

    Compares the average of the newest half of the window against the
    oldest half; a relative change beyond 10% counts as movement.
    """
    costs = list(costs)[:lookback]
    if len(costs) < 2:
        return "flat"

    half = lookback // 2
    recent_avg = sum(costs[:half]) / half
    older_avg = sum(costs[-half:]) / half
    if older_avg == 0:
        return "flat"

    change = (recent_avg - older_avg) / older_avg
    if change > 0.1:
        return "up"
    if change < -0.1:
        return "down"
    return "flat"


def summarize_costs(costs: Sequence[float], trend: str = "flat") -> dict:
    if not costs:
        return {}
    total = sum(costs)
    return {
        "total": round(total, 6),
        "average": round(total / len(costs), 6),
        "min": round(min(costs), 6),
        "max": round(max(costs), 6),
        "count": len(costs),
        "trend": trend,
    }


class CostSnapshot(Base, TimestampMixin):
    """Cost totals for one user, period and date."""

    __tablename__ = "cost_snapshots"

    snapshot_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_input_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_output_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    api_calls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_by_model: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    tokens_by_model: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    cost_by_source: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    budget_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    budget_exceeded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "period", "snapshot_date", name="uq_cost_snapshot_user_period_date"),
    )

    @property
    def total_tokens(self) -> int:
        return (self.total_input_tokens or 0) + (self.total_output_tokens or 0)

    def refresh_budget_state(self) -> None:
        """Recompute ``budget_exceeded``; call before every save."""
        self.budget_exceeded = self.budget_limit is not None and (self.total_cost or 0) > self.budget_limit

    @property
    def budget_utilization(self) -> Optional[float]:
        if not self.budget_limit or self.budget_limit <= 0:
            return None
        return round((self.total_cost or 0) / self.budget_limit * 100, 1)

    @property
    def top_model(self) -> Optional[str]:
        if not self.cost_by_model:
            return None
        return max(self.cost_by_model.items(), key=lambda item: float(item[1]))[0]

    @property
    def projected_monthly_cost(self) -> float:
        cost = self.total_cost or 0.0
        if self.period == "daily":
            return round(cost * 30, 6)
        if self.period == "weekly":
            return round(cost / 7.0 * 30, 6)
        return cost

    def __repr__(self) -> str:
        return f"<CostSnapshot(period={self.period}, snapshot_date={self.snapshot_date})>"

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.snapshot_id),
            "period": self.period,
            "snapshot_date": self.snapshot_date.isoformat() if self.snapshot_date else None,
            "total_cost": self.total_cost,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_tokens": self.total_tokens,
            "api_calls": self.api_calls,
            "cost_by_model": self.cost_by_model or {},
            "tokens_by_model": self.tokens_by_model or {},
            "cost_by_source": self.cost_by_source or {},
            "budget_limit": self.budget_limit,
            "budget_exceeded": self.budget_exceeded,
            "budget_utilization": self.budget_utilization,
            "top_model": self.top_model,
            "projected_monthly_cost": self.projected_monthly_cost,
        }
