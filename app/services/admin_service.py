"""
Admin Service
=============

Site-wide statistics and user management for administrators.
"""

from datetime import timedelta
import logging
from typing import Any
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorCodes, NotFoundError
from app.models.board import Board
from app.models.task import Task, TaskStatus
from app.models.token_usage import TokenUsage
from app.models.user import User
from app.services.invite_service import InviteService
from app.utils.helpers import utc_now

logger = logging.getLogger(__name__)

ADMIN_USER_FIELDS = ("admin", "agent_auto_mode")


class AdminService:
    """Service for admin operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _count(self, model, *conditions) -> int:
        stmt = select(func.count()).select_from(model)
        if conditions:
            stmt = stmt.where(*conditions)
        return (await self.db.execute(stmt)).scalar_one()

    async def dashboard(self) -> dict:
        now = utc_now()

        grouped = await self.db.execute(select(Task.status, func.count()).group_by(Task.status))
        by_status = {status.value: 0 for status in TaskStatus}
        for status, count in grouped.all():
            by_status[status.value if isinstance(status, TaskStatus) else str(status)] = count

        cost_stmt = select(func.coalesce(func.sum(TokenUsage.cost), 0.0)).where(
            TokenUsage.created_at >= now - timedelta(days=30)
        )
        cost_30d = float((await self.db.execute(cost_stmt)).scalar_one() or 0)

        invites = await InviteService(self.db).counts()

        return {
            "users_count": await self._count(User),
            "boards_count": await self._count(Board),
            "tasks_count": await self._count(Task),
            "tasks_by_status": by_status,
            "tasks_created_last_7_days": await self._count(Task, Task.created_at >= now - timedelta(days=7)),
            "token_cost_30d": round(cost_30d, 6),
            "invite_codes_available": invites["available"],
            "invite_codes_used": invites["used"],
        }

    async def list_users(self, page: int = 1, limit: int = 25) -> dict:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        stmt = (
            select(User)
            .order_by(User.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        users = list((await self.db.execute(stmt)).scalars().all())
        return {
            "users": users,
            "total": await self._count(User),
            "page": page,
            "limit": limit,
        }

    async def update_user(self, user_id: uuid.UUID, changes: dict[str, Any]) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(code=ErrorCodes.USER_NOT_FOUND, message="User not found")
        for field in ADMIN_USER_FIELDS:
            if changes.get(field) is not None:
                setattr(user, field, changes[field])
        await self.db.flush()
        logger.info("Admin updated user %s: %s", user_id, sorted(changes))
        return user
