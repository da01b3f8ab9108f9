"""
Cost Snapshot Service
=====================

Captures daily, weekly and monthly cost snapshots from token usage and
answers budget queries over them.
"""

from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import Optional
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorCodes, UnprocessableError
from app.models.cost_snapshot import PERIODS, CostSnapshot, compute_trend, summarize_costs
from app.models.task import Task
from app.models.token_usage import TokenUsage
from app.models.user import User
from app.utils.helpers import truncate, utc_now

logger = logging.getLogger(__name__)


def _day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """[start 00:00, end+1 00:00) in UTC."""
    return (
        datetime.combine(start, time.min, tzinfo=timezone.utc),
        datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )


def previous_week(today: date) -> tuple[date, date]:
    """Monday to Sunday of the week before ``today``'s week."""
    monday = today - timedelta(days=today.weekday()) - timedelta(weeks=1)
    return monday, monday + timedelta(days=6)


def previous_month(today: date) -> tuple[date, date]:
    last_day = today.replace(day=1) - timedelta(days=1)
    return last_day.replace(day=1), last_day


class CostSnapshotService:
    """Service for cost snapshots and budgets."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Capture
    # =========================================================================

    async def capture_daily(self, user_id: uuid.UUID, day: Optional[date] = None) -> Optional[CostSnapshot]:
        day = day or utc_now().date() - timedelta(days=1)
        return await self._capture(user_id, "daily", day, day, day)

    async def capture_weekly(self, user_id: uuid.UUID, today: Optional[date] = None) -> Optional[CostSnapshot]:
        start, end = previous_week(today or utc_now().date())
        return await self._capture(user_id, "weekly", start, start, end)

    async def capture_monthly(self, user_id: uuid.UUID, today: Optional[date] = None) -> Optional[CostSnapshot]:
        start, end = previous_month(today or utc_now().date())
        return await self._capture(user_id, "monthly", start, start, end)

    async def capture_all(self, day: Optional[date] = None) -> int:
        """Daily capture for every user; one user's failure does not stop the rest."""
        user_ids = (await self.db.execute(select(User.user_id))).scalars().all()
        captured = 0
        for user_id in user_ids:
            try:
                async with self.db.begin_nested():
                    if await self.capture_daily(user_id, day) is not None:
                        captured += 1
            except SQLAlchemyError as e:
                logger.error("Cost snapshot failed for user %s: %s", user_id, e)
        logger.info("Captured %d daily cost snapshots", captured)
        return captured

    async def _find(self, user_id: uuid.UUID, period: str, snapshot_date: date) -> Optional[CostSnapshot]:
        stmt = select(CostSnapshot).where(
            CostSnapshot.user_id == user_id,
            CostSnapshot.period == period,
            CostSnapshot.snapshot_date == snapshot_date,
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _latest_budget(self, user_id: uuid.UUID, period: str) -> Optional[float]:
        stmt = (
            select(CostSnapshot.budget_limit)
            .where(
                CostSnapshot.user_id == user_id,
                CostSnapshot.period == period,
                CostSnapshot.budget_limit.is_not(None),
            )
            .order_by(CostSnapshot.snapshot_date.desc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _capture(
        self,
        user_id: uuid.UUID,
        period: str,
        snapshot_date: date,
        start: date,
        end: date,
    ) -> Optional[CostSnapshot]:
        """Create the snapshot unless one exists for (user, period, date)."""
        if await self._find(user_id, period, snapshot_date) is not None:
            return None

        since, until = _day_bounds(start, end)
        scope = (
            Task.user_id == user_id,
            TokenUsage.created_at >= since,
            TokenUsage.created_at < until,
        )

        per_model = await self.db.execute(
            select(
                TokenUsage.model,
                func.sum(TokenUsage.cost),
                func.sum(TokenUsage.input_tokens),
                func.sum(TokenUsage.output_tokens),
                func.count(TokenUsage.usage_id),
            )
            .join(Task, Task.task_id == TokenUsage.task_id)
            .where(*scope)
            .group_by(TokenUsage.model)
        )
        cost_by_model, tokens_by_model = {}, {}
        total_cost, input_tokens, output_tokens, api_calls = 0.0, 0, 0, 0
        for model, cost, inp, out, count in per_model.all():
            cost_by_model[model] = round(float(cost or 0), 6)
            tokens_by_model[model] = {"input": int(inp or 0), "output": int(out or 0)}
            total_cost += float(cost or 0)
            input_tokens += int(inp or 0)
            output_tokens += int(out or 0)
            api_calls += int(count)

        per_task = await self.db.execute(
            select(Task.task_id, Task.name, func.sum(TokenUsage.cost))
            .join(Task, Task.task_id == TokenUsage.task_id)
            .where(*scope)
            .group_by(Task.task_id, Task.name)
        )
        cost_by_source = {}
        for task_id, name, cost in per_task.all():
            label = f"task:{task_id}"
            if name:
                label += f" ({truncate(name, 40)})"
            cost_by_source[label] = round(float(cost or 0), 6)

        snapshot = CostSnapshot(
            user_id=user_id,
            period=period,
            snapshot_date=snapshot_date,
            total_cost=round(total_cost, 6),
            total_input_tokens=input_tokens,
            total_output_tokens=output_tokens,
            api_calls=api_calls,
            cost_by_model=cost_by_model,
            tokens_by_model=tokens_by_model,
            cost_by_source=cost_by_source,
            budget_limit=await self._latest_budget(user_id, period),
        )
        snapshot.refresh_budget_state()
        self.db.add(snapshot)
        await self.db.flush()

        logger.info("Captured %s cost snapshot %s for user %s: $%.6f", period, snapshot_date, user_id, total_cost)
        return snapshot

    # =========================================================================
    # Queries
    # =========================================================================

    async def trend(self, user_id: uuid.UUID, period: str = "daily", lookback: int = 7) -> str:
        stmt = (
            select(CostSnapshot.total_cost)
            .where(CostSnapshot.user_id == user_id, CostSnapshot.period == period)
            .order_by(CostSnapshot.snapshot_date.desc())
            .limit(lookback)
        )
        costs = [float(c or 0) for c in (await self.db.execute(stmt)).scalars().all()]
        return compute_trend(costs, lookback)

    async def summary(self, user_id: uuid.UUID, period: str = "daily", days: int = 30) -> dict:
        """Stats over snapshots of ``period`` in the last ``days`` days; {} when none."""
        stmt = (
            select(CostSnapshot.total_cost)
            .where(
                CostSnapshot.user_id == user_id,
                CostSnapshot.period == period,
                CostSnapshot.snapshot_date >= utc_now().date() - timedelta(days=days),
            )
            .order_by(CostSnapshot.snapshot_date.asc())
        )
        costs = [float(c or 0) for c in (await self.db.execute(stmt)).scalars().all()]
        if not costs:
            return {}
        return summarize_costs(costs, await self.trend(user_id, period))

    async def current_budget(self, user_id: uuid.UUID, period: str) -> Optional[float]:
        return await self._latest_budget(user_id, period)

    async def over_budget_count(self, user_id: uuid.UUID, recent: int = 10) -> int:
        """Over-budget snapshots among the ``recent`` most recent."""
        recent_ids = (
            select(CostSnapshot.budget_exceeded)
            .where(CostSnapshot.user_id == user_id)
            .order_by(CostSnapshot.snapshot_date.desc())
            .limit(recent)
            .subquery()
        )
        stmt = select(func.count()).select_from(recent_ids).where(recent_ids.c.budget_exceeded.is_(True))
        return (await self.db.execute(stmt)).scalar_one()

    async def set_budget(self, user_id: uuid.UUID, period: Optional[str], limit: float) -> CostSnapshot:
        """Upsert today's snapshot for ``period`` with a new budget limit."""
        period = period if period in PERIODS else "daily"
        if limit is None or limit <= 0:
            raise UnprocessableError(
                message="Budget must be positive",
                code=ErrorCodes.BUDGET_INVALID,
                field="budget_limit",
            )

        today = utc_now().date()
        snapshot = await self._find(user_id, period, today)
        if snapshot is None:
            snapshot = CostSnapshot(user_id=user_id, period=period, snapshot_date=today, total_cost=0.0)
            self.db.add(snapshot)
        snapshot.budget_limit = float(limit)
        snapshot.refresh_budget_state()
        await self.db.flush()

        logger.info("%s budget for user %s set to $%.2f", period.capitalize(), user_id, limit)
        return snapshot
