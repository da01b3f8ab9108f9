"""
API Token Service
=================

Issue, list, rotate and verify API tokens.
"""

from datetime import timedelta
import logging
from typing import Optional
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorCodes, NotFoundError
from app.core.security import digest_token
from app.models.api_token import ApiToken
from app.models.user import User
from app.utils.helpers import utc_now

logger = logging.getLogger(__name__)


class ApiTokenService:
    """Service for API token operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def authenticate(self, raw_token: Optional[str]) -> Optional[User]:
        """
        Resolve a raw token to its owner.

        Returns None for blank, unknown or expired tokens. ``last_used_at``
        (and the owner's ``agent_last_active_at``) are written at most once
        per minute.
        """
        if not raw_token or not raw_token.strip():
            return None

        stmt = select(ApiToken).where(ApiToken.token_digest == digest_token(raw_token.strip()))
        token = (await self.db.execute(stmt)).scalar_one_or_none()
        if token is None:
            return None

        now = utc_now()
        if token.is_expired(now):
            logger.info("Rejected expired API token %s", token.token_id)
            return None

        if token.needs_touch(now):
            token.last_used_at = now
            token.user.agent_last_active_at = now
            await self.db.flush()

        return token.user

    async def list_tokens(self, user_id: uuid.UUID) -> list[ApiToken]:
        stmt = (
            select(ApiToken)
            .where(ApiToken.user_id == user_id)
            .order_by(ApiToken.created_at.desc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def create_token(
        self,
        user_id: uuid.UUID,
        name: Optional[str] = None,
        expires_in_days: Optional[int] = None,
    ) -> ApiToken:
        """New token; ``raw_token`` is readable on the returned instance only."""
        expires_at = utc_now() + timedelta(days=expires_in_days) if expires_in_days else None
        token = ApiToken.build(user_id, name=(name or "").strip() or "Default", expires_at=expires_at)
        self.db.add(token)
        await self.db.flush()
        logger.info("Created API token %s for user %s", token.token_id, user_id)
        return token

    async def regenerate(self, user_id: uuid.UUID) -> ApiToken:
        """Destroy every token of the user and issue a single "Default" one."""
        await self.db.execute(delete(ApiToken).where(ApiToken.user_id == user_id))
        return await self.create_token(user_id, "Default")

    async def revoke(self, user_id: uuid.UUID, token_id: uuid.UUID) -> None:
        stmt = select(ApiToken).where(ApiToken.token_id == token_id, ApiToken.user_id == user_id)
        token = (await self.db.execute(stmt)).scalar_one_or_none()
        if token is None:
            raise NotFoundError(code=ErrorCodes.API_TOKEN_NOT_FOUND, message="API token not found")
        await self.db.delete(token)
        await self.db.flush()
        logger.info("Revoked API token %s for user %s", token_id, user_id)
