"""
Invite Service
==============

Invite codes: issuing, validating at registration and admin management.
"""

import logging
from typing import Optional
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import ErrorCodes, NotFoundError, UnprocessableError
from app.models.invite_code import InviteCode
from app.models.user import normalize_email
from app.services.email_service import EmailService
from app.utils.validators import validate_email

logger = logging.getLogger(__name__)


class InviteService:
    """Service for invite code operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_code(self, code: Optional[str]) -> Optional[InviteCode]:
        if not code or not code.strip():
            return None
        stmt = select(InviteCode).where(InviteCode.code == code.strip().upper())
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def check_for_registration(self, email: str, code: Optional[str]) -> Optional[InviteCode]:
        """
        Invite code required to register ``email``, if any.

        Returns None when invites are not required. Raises 422 when they are
        and ``code`` is missing, used, or bound to another email.
        """
        if not settings.REQUIRE_INVITE_CODE:
            return None

        invite = await self.find_by_code(code)
        if invite is None or not invite.usable_by(email):
            raise UnprocessableError(
                message="Invalid invite code",
                code=ErrorCodes.AUTH_INVALID_INVITE,
                field="invite_code",
            )
        return invite

    # =========================================================================
    # Admin
    # =========================================================================

    async def list_codes(self) -> list[InviteCode]:
        stmt = select(InviteCode).order_by(InviteCode.created_at.desc())
        return list((await self.db.execute(stmt)).scalars().all())

    async def counts(self) -> dict[str, int]:
        stmt = select(InviteCode.used_at.is_(None), func.count()).group_by(InviteCode.used_at.is_(None))
        grouped = dict((await self.db.execute(stmt)).all())
        return {"available": grouped.get(True, 0), "used": grouped.get(False, 0)}

    async def create_code(self, created_by_id: uuid.UUID, email: Optional[str] = None) -> InviteCode:
        """Issue a code, mailing it when bound to an email."""
        email = normalize_email(email) or None
        if email is not None:
            validate_email(email)

        invite = InviteCode(created_by_id=created_by_id, email=email)
        self.db.add(invite)
        await self.db.flush()

        if email is not None:
            await EmailService().send_invite(email, invite.code)
        logger.info("Invite code %s created by %s", invite.invite_code_id, created_by_id)
        return invite

    async def delete_code(self, invite_code_id: uuid.UUID) -> None:
        invite = await self.db.get(InviteCode, invite_code_id)
        if invite is None:
            raise NotFoundError(code=ErrorCodes.INVITE_NOT_FOUND, message="Invite code not found")
        if not invite.available:
            raise UnprocessableError(
                message="Cannot delete a used invite code",
                code=ErrorCodes.INVITE_ALREADY_USED,
            )
        await self.db.delete(invite)
        await self.db.flush()
