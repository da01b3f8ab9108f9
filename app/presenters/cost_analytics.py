"""
Cost Analytics Presenter
========================

Token spend over a rolling period, shaped for the costs view.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.services.token_usage_service import TokenUsageService
from app.utils.helpers import utc_now

PERIODS = {"24h": timedelta(hours=24), "7d": timedelta(days=7), "30d": timedelta(days=30), "all": None}
DEFAULT_PERIOD = "7d"


def normalize_period(period: Optional[str]) -> str:
    return period if period in PERIODS else DEFAULT_PERIOD


def projected_monthly(period: str, total_cost: float, days_with_data: int) -> Optional[float]:
    """Daily average times 30, for the 7d and 30d views only."""
    if period not in ("7d", "30d") or days_with_data == 0:
        return None
    return round(total_cost / days_with_data * 30, 4)


class CostAnalyticsPresenter:
    def __init__(self, db: AsyncSession, user: User, period: Optional[str] = None):
        self.db = db
        self.user = user
        self.period = normalize_period(period)

    async def render(self) -> dict:
        usage = TokenUsageService(self.db)
        window = PERIODS[self.period]
        filters = {"since": utc_now() - window} if window else {}

        totals = await usage.totals(self.user.user_id, **filters)
        cost_by_model = await usage.cost_by_model(self.user.user_id, **filters)
        daily_cost = {
            row["date"]: row["total_cost"]
            for row in await usage.daily_usage(self.user.user_id, **filters)
        }
        top_sessions = await usage.top_sessions(self.user.user_id, limit=10, **filters)

        return {
            "period": self.period,
            "total_cost": totals["total_cost"],
            "input_tokens": totals["input_tokens"],
            "output_tokens": totals["output_tokens"],
            "total_tokens": totals["total_tokens"],
            "api_calls": totals["api_calls"],
            "cost_by_model": cost_by_model,
            "max_model_cost": max(cost_by_model.values(), default=0.0),
            "daily_cost": daily_cost,
            "max_daily_cost": max(daily_cost.values(), default=0.0),
            "top_sessions": [
                {"session_key": s["session_key"], "cost": s["total_cost"]} for s in top_sessions
            ],
            "projected_monthly": projected_monthly(self.period, totals["total_cost"], len(daily_cost)),
        }
