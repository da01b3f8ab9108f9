"""
Budget Presenter
================

Shapes cost snapshots into the budget view.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.services.cost_snapshot_service import CostSnapshotService
from app.services.token_usage_service import TokenUsageService
from app.utils.helpers import utc_now

# period -> summary window in days
SUMMARY_WINDOWS = {"daily": 30, "weekly": 90, "monthly": 365}


def format_summary(summary: dict, budget: Optional[float]) -> dict:
    if not summary:
        return {"empty": True}
    return {**summary, "budget": budget}


class BudgetPresenter:
    def __init__(self, db: AsyncSession, user: User):
        self.db = db
        self.user = user
        self.snapshots = CostSnapshotService(db)

    async def render(self) -> dict:
        data = {}
        for period, days in SUMMARY_WINDOWS.items():
            summary = await self.snapshots.summary(self.user.user_id, period, days)
            budget = await self.snapshots.current_budget(self.user.user_id, period)
            data[period] = format_summary(summary, budget)

        data["alerts_count"] = await self.snapshots.over_budget_count(self.user.user_id, recent=10)
        data["cost_by_task"] = await TokenUsageService(self.db).cost_by_task(
            self.user.user_id,
            limit=20,
            since=utc_now() - timedelta(days=30),
        )
        return data
