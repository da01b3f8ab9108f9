"""
Token Usage Service
===================

Records agent token usage and aggregates it for analytics.
"""

from datetime import datetime
import logging
from typing import Any, Optional
import uuid

from sqlalchemy import Date, cast, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.board import Board
from app.models.task import Task
from app.models.token_usage import TokenUsage, normalize_model_name

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class TokenUsageService:
    """Service for token usage records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Recording
    # =========================================================================

    async def record(
        self,
        task: Task,
        input_tokens: Any = 0,
        output_tokens: Any = 0,
        model: Optional[str] = None,
        session_key: Optional[str] = None,
    ) -> Optional[TokenUsage]:
        """
        Record usage for a task run.

        Nothing is written when both counts are zero or no model is known.
        Failures are logged and swallowed so the caller's request succeeds.
        """
        input_tokens = _to_int(input_tokens)
        output_tokens = _to_int(output_tokens)
        if input_tokens == 0 and output_tokens == 0:
            return None

        model_key = normalize_model_name(model or task.model)
        if not model_key:
            return None

        usage = TokenUsage.build(
            task_id=task.task_id,
            model=model_key,
            input_tokens=max(input_tokens, 0),
            output_tokens=max(output_tokens, 0),
            session_key=session_key or task.agent_session_key,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(usage)
        except SQLAlchemyError as e:
            logger.error("Failed to record token usage for task %s: %s", task.task_id, e)
            return None

        logger.info(
            "Recorded %d/%d tokens (%s, $%.6f) for task %s",
            usage.input_tokens, usage.output_tokens, usage.model, usage.cost, task.task_id,
        )
        return usage

    # =========================================================================
    # Aggregates
    # =========================================================================

    @staticmethod
    def _scope(
        stmt,
        user_id: uuid.UUID,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        model: Optional[str] = None,
        board_id: Optional[uuid.UUID] = None,
    ):
        stmt = stmt.join(Task, Task.task_id == TokenUsage.task_id).where(Task.user_id == user_id)
        if since is not None:
            stmt = stmt.where(TokenUsage.created_at >= since)
        if until is not None:
            stmt = stmt.where(TokenUsage.created_at <= until)
        if model:
            stmt = stmt.where(TokenUsage.model == model)
        if board_id is not None:
            stmt = stmt.where(Task.board_id == board_id)
        return stmt

    async def totals(self, user_id: uuid.UUID, **filters) -> dict:
        stmt = self._scope(
            select(
                func.coalesce(func.sum(TokenUsage.cost), 0.0),
                func.coalesce(func.sum(TokenUsage.input_tokens), 0),
                func.coalesce(func.sum(TokenUsage.output_tokens), 0),
                func.count(TokenUsage.usage_id),
            ),
            user_id,
            **filters,
        )
        cost, input_tokens, output_tokens, calls = (await self.db.execute(stmt)).one()
        return {
            "total_cost": float(cost),
            "input_tokens": int(input_tokens),
            "output_tokens": int(output_tokens),
            "total_tokens": int(input_tokens) + int(output_tokens),
            "api_calls": int(calls),
        }

    async def cost_by_model(self, user_id: uuid.UUID, **filters) -> dict[str, float]:
        """Model -> cost, most expensive first."""
        total = func.sum(TokenUsage.cost)
        stmt = self._scope(
            select(TokenUsage.model, total).group_by(TokenUsage.model).order_by(total.desc()),
            user_id,
            **filters,
        )
        return {model: float(cost or 0) for model, cost in (await self.db.execute(stmt)).all()}

    async def tokens_by_model(self, user_id: uuid.UUID, **filters) -> list[dict]:
        stmt = self._scope(
            select(
                TokenUsage.model,
                func.sum(TokenUsage.input_tokens),
                func.sum(TokenUsage.output_tokens),
                func.sum(TokenUsage.cost),
                func.count(TokenUsage.usage_id),
            ).group_by(TokenUsage.model).order_by(func.sum(TokenUsage.cost).desc()),
            user_id,
            **filters,
        )
        return [
            {
                "model": model,
                "input_tokens": int(input_tokens or 0),
                "output_tokens": int(output_tokens or 0),
                "total_cost": float(cost or 0),
                "usage_count": int(count),
            }
            for model, input_tokens, output_tokens, cost, count in (await self.db.execute(stmt)).all()
        ]

    async def daily_usage(self, user_id: uuid.UUID, **filters) -> list[dict]:
        day = cast(TokenUsage.created_at, Date)
        stmt = self._scope(
            select(
                day,
                func.sum(TokenUsage.input_tokens),
                func.sum(TokenUsage.output_tokens),
                func.sum(TokenUsage.cost),
                func.count(TokenUsage.usage_id),
            ).group_by(day).order_by(day),
            user_id,
            **filters,
        )
        return [
            {
                "date": usage_day.isoformat(),
                "input_tokens": int(input_tokens or 0),
                "output_tokens": int(output_tokens or 0),
                "total_cost": float(cost or 0),
                "usage_count": int(count),
            }
            for usage_day, input_tokens, output_tokens, cost, count in (await self.db.execute(stmt)).all()
        ]

    async def by_board(self, user_id: uuid.UUID, **filters) -> list[dict]:
        total = func.sum(TokenUsage.cost)
        stmt = self._scope(
            select(
                Board.board_id,
                Board.name,
                Board.icon,
                func.sum(TokenUsage.input_tokens),
                func.sum(TokenUsage.output_tokens),
                total,
                func.count(TokenUsage.usage_id),
            ),
            user_id,
            **filters,
        )
        stmt = (
            stmt.join(Board, Board.board_id == Task.board_id)
            .group_by(Board.board_id, Board.name, Board.icon)
            .order_by(total.desc())
        )
        return [
            {
                "board_id": str(board_id),
                "board_name": name,
                "board_icon": icon,
                "input_tokens": int(input_tokens or 0),
                "output_tokens": int(output_tokens or 0),
                "total_cost": float(cost or 0),
                "usage_count": int(count),
            }
            for board_id, name, icon, input_tokens, output_tokens, cost, count in (await self.db.execute(stmt)).all()
        ]

    async def top_sessions(self, user_id: uuid.UUID, limit: int = 10, **filters) -> list[dict]:
        total = func.sum(TokenUsage.cost)
        stmt = self._scope(
            select(
                TokenUsage.session_key,
                total,
                func.sum(TokenUsage.input_tokens + TokenUsage.output_tokens),
                func.count(TokenUsage.usage_id),
            ).where(TokenUsage.session_key.is_not(None)),
            user_id,
            **filters,
        )
        stmt = stmt.group_by(TokenUsage.session_key).order_by(total.desc()).limit(limit)
        return [
            {
                "session_key": session_key,
                "total_cost": float(cost or 0),
                "total_tokens": int(tokens or 0),
                "usage_count": int(count),
            }
            for session_key, cost, tokens, count in (await self.db.execute(stmt)).all()
        ]

    async def cost_by_task(self, user_id: uuid.UUID, limit: int = 20, **filters) -> list[dict]:
        total = func.sum(TokenUsage.cost)
        stmt = self._scope(
            select(
                Task.task_id,
                Task.name,
                total,
                func.sum(TokenUsage.input_tokens + TokenUsage.output_tokens),
            ),
            user_id,
            **filters,
        )
        stmt = stmt.group_by(Task.task_id, Task.name).order_by(total.desc()).limit(limit)
        return [
            {
                "task_id": str(task_id),
                "task_name": name,
                "total_cost": float(cost or 0),
                "total_tokens": int(tokens or 0),
            }
            for task_id, name, cost, tokens in (await self.db.execute(stmt)).all()
        ]
