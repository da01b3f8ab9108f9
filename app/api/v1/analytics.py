"""
Analytics API Endpoints
=======================

Token usage breakdowns, cost analytics, budgets and cost snapshots.
"""

from datetime import datetime, timedelta
from typing import Optional
import uuid

from fastapi import APIRouter, Query

from app.dependencies import CurrentUser, DBSession
from app.presenters.budget import BudgetPresenter
from app.presenters.cost_analytics import CostAnalyticsPresenter
from app.schemas.account import BudgetUpdate
from app.schemas.common import ERROR_RESPONSES
from app.services.cost_snapshot_service import CostSnapshotService
from app.services.token_usage_service import TokenUsageService
from app.utils.helpers import utc_now

router = APIRouter()

TOKEN_PERIODS = ("today", "week", "month", "all")


def token_period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """Start of an analytics window; "all" looks back one year."""
    now = now or utc_now()
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "month":
        return now - timedelta(days=30)
    if period == "all":
        return now - timedelta(days=365)
    return now - timedelta(weeks=1)


def _with_cost(row: dict) -> dict:
    data = {k: v for k, v in row.items() if k != "total_cost"}
    data["cost"] = round(row["total_cost"], 6)
    return data


@router.get("/tokens")
async def token_usage(
    current_user: CurrentUser,
    db: DBSession,
    period: str = Query(default="week"),
    model: Optional[str] = Query(default=None),
    board_id: Optional[uuid.UUID] = Query(default=None),
):
    """Token totals with per-model, per-day and per-board breakdowns."""
    if period not in TOKEN_PERIODS:
        period = "week"
    start = token_period_start(period)
    filters = {"since": start, "model": model, "board_id": board_id}

    usage = TokenUsageService(db)
    totals = await usage.totals(current_user.user_id, **filters)
    by_model = [
        {**_with_cost(row), "total_tokens": row["input_tokens"] + row["output_tokens"]}
        for row in await usage.tokens_by_model(current_user.user_id, **filters)
    ]

    return {
        "period": period,
        "start_date": start.isoformat(),
        "summary": {
            "total_input_tokens": totals["input_tokens"],
            "total_output_tokens": totals["output_tokens"],
            "total_tokens": totals["total_tokens"],
            "total_cost": round(totals["total_cost"], 6),
        },
        "by_model": sorted(by_model, key=lambda r: -r["cost"]),
        "daily": [_with_cost(row) for row in await usage.daily_usage(current_user.user_id, **filters)],
        "by_board": [_with_cost(row) for row in await usage.by_board(current_user.user_id, **filters)],
    }


@router.get("/costs")
async def cost_analytics(
    current_user: CurrentUser,
    db: DBSession,
    period: Optional[str] = Query(default=None),
):
    """Spend over 24h, 7d, 30d or all time; unknown periods fall back to 7d."""
    return await CostAnalyticsPresenter(db, current_user, period).render()


@router.get("/budget")
async def budget(current_user: CurrentUser, db: DBSession):
    return await BudgetPresenter(db, current_user).render()


@router.put("/budget", responses=ERROR_RESPONSES)
async def update_budget(request: BudgetUpdate, current_user: CurrentUser, db: DBSession):
    snapshot = await CostSnapshotService(db).set_budget(
        current_user.user_id, request.budget_period, request.budget_limit
    )
    await db.commit()
    return {"success": True, "snapshot": snapshot.to_api_dict()}


@router.post("/snapshots/capture")
async def capture_snapshot(current_user: CurrentUser, db: DBSession):
    """Capture yesterday's daily snapshot for the current user."""
    snapshot = await CostSnapshotService(db).capture_daily(current_user.user_id)
    await db.commit()
    return {"success": True, "snapshot": snapshot.to_api_dict() if snapshot else None}
