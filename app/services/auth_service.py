"""
Authentication Service
======================

Business logic for user authentication, registration, email sign-in
codes, GitHub accounts and token management.
"""

from datetime import timedelta
import logging
from typing import Any, Optional
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import AuthenticationError, ConflictError, ErrorCodes
from app.core.security import (
    create_tokens_for_user,
    decode_token,
    digest_token,
    generate_numeric_code,
    hash_password,
    secure_compare,
    verify_password,
)
from app.models.email_code import EmailVerificationCode
from app.models.user import User, normalize_email
from app.services.board_service import BoardService
from app.services.email_service import EmailService
from app.services.invite_service import InviteService
from app.utils.helpers import utc_now
from app.utils.validators import validate_email, validate_password

logger = logging.getLogger(__name__)

GITHUB_PROVIDER = "github"
PROFILE_FIELDS = ("agent_name", "agent_emoji", "agent_auto_mode", "avatar_url")


class AuthService:
    """Service for authentication operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address."""
        stmt = select(User).where(User.email == normalize_email(email))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID."""
        stmt = select(User).where(User.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_user(self, email: str, invite_code: Optional[str], **fields) -> User:
        """Create a user under the invite rules, with the onboarding board."""
        invite = await InviteService(self.db).check_for_registration(email, invite_code)

        user = User(email=email, **fields)
        self.db.add(user)
        await self.db.flush()  # Get user_id

        if invite is not None:
            invite.redeem(user.email)
        await BoardService(self.db).create_onboarding_for(user)
        await self.db.flush()

        logger.info("Created user %s (%s)", user.user_id, fields.get("provider") or "email")
        return user

    # =========================================================================
    # Password accounts
    # =========================================================================

    async def register(self, email: str, password: str, invite_code: Optional[str] = None) -> User:
        """
        Create a password account.

        Raises:
            ConflictError: Email already registered
            UnprocessableError: Invite required and missing or invalid
        """
        email = validate_email(email)
        validate_password(password)

        if await self.get_user_by_email(email) is not None:
            raise ConflictError(
                code=ErrorCodes.AUTH_EMAIL_EXISTS,
                message="Email already registered",
            )

        user = await self._create_user(
            email,
            invite_code,
            password_hash=hash_password(password),
            last_login=utc_now(),
        )
        return user

    async def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """
        Authenticate user by email and password.

        Returns:
            User if authentication successful, None otherwise
        """
        user = await self.get_user_by_email(email)

        if user is None:
            return None

        if user.password_hash is None:
            # OAuth or email-code user without password
            return None

        if not verify_password(password, user.password_hash):
            return None

        user.last_login = utc_now()
        return user

    async def login(self, email: str, password: str) -> User:
        user = await self.authenticate_user(email, password)
        if user is None:
            raise AuthenticationError(
                code=ErrorCodes.AUTH_INVALID_CREDENTIALS,
                message="Invalid credentials",
            )
        return user

    # =========================================================================
    # JWT
    # =========================================================================

    async def _user_from_token(self, token: str, token_type: str) -> Optional[User]:
        payload = decode_token(token)

        if payload is None:
            return None

        if payload.get("type") != token_type:
            return None

        user_id_str = payload.get("sub")
        if user_id_str is None:
            return None

        try:
            user_id = uuid.UUID(user_id_str)
        except ValueError:
            return None

        return await self.get_user_by_id(user_id)

    async def verify_token(self, token: str) -> Optional[User]:
        """User for a valid access JWT, else None."""
        return await self._user_from_token(token, "access")

    async def refresh_tokens(self, refresh_token: str) -> dict:
        """
        Generate new tokens from a refresh token.

        Raises:
            AuthenticationError: Token invalid, expired or not a refresh token
        """
        user = await self._user_from_token(refresh_token, "refresh")
        if user is None:
            raise AuthenticationError(
                code=ErrorCodes.AUTH_INVALID_TOKEN,
                message="Invalid or expired refresh token",
            )
        return create_tokens_for_user(user_id=user.user_id, email=user.email)

    @staticmethod
    def tokens_for(user: User) -> dict:
        return create_tokens_for_user(user_id=user.user_id, email=user.email)

    # =========================================================================
    # Email sign-in codes
    # =========================================================================

    async def request_email_code(self, email: str) -> None:
        """
        Mail a fresh 6-digit code to ``email``.

        Earlier unused codes for the address are invalidated. Behaves the same
        whether or not an account exists.
        """
        email = validate_email(email)
        now = utc_now()

        await self.db.execute(
            update(EmailVerificationCode)
            .where(
                EmailVerificationCode.email == email,
                EmailVerificationCode.consumed_at.is_(None),
            )
            .values(consumed_at=now)
        )

        code = generate_numeric_code(6)
        self.db.add(EmailVerificationCode(
            email=email,
            code_digest=digest_token(code),
            expires_at=now + timedelta(minutes=settings.EMAIL_CODE_TTL_MINUTES),
        ))
        await self.db.flush()

        await EmailService().send_sign_in_code(email, code, settings.EMAIL_CODE_TTL_MINUTES)

    async def verify_email_code(self, email: str, code: str, invite_code: Optional[str] = None) -> User:
        """
        Sign in with an emailed code, creating the account if needed.

        A wrong code counts as an attempt; the code is burned once the
        attempt limit is reached.
        """
        email = validate_email(email)
        invalid = AuthenticationError(
            code=ErrorCodes.AUTH_INVALID_CODE,
            message="Invalid or expired code",
        )

        stmt = (
            select(EmailVerificationCode)
            .where(
                EmailVerificationCode.email == email,
                EmailVerificationCode.consumed_at.is_(None),
            )
            .order_by(EmailVerificationCode.created_at.desc())
            .limit(1)
        )
        pending = (await self.db.execute(stmt)).scalar_one_or_none()
        if pending is None or not pending.is_usable():
            raise invalid

        if not secure_compare(digest_token((code or "").strip()), pending.code_digest):
            pending.attempts += 1
            if pending.attempts >= settings.EMAIL_CODE_MAX_ATTEMPTS:
                pending.consume()
                logger.warning("Email code for %s burned after %d attempts", email, pending.attempts)
            # Persist the attempt before failing
            await self.db.commit()
            raise invalid

        pending.consume()

        user = await self.get_user_by_email(email)
        if user is None:
            user = await self._create_user(email, invite_code)
        user.last_login = utc_now()
        await self.db.flush()
        return user

    # =========================================================================
    # GitHub
    # =========================================================================

    async def find_or_create_from_github(self, profile: dict[str, Any], invite_code: Optional[str] = None) -> User:
        """
        Match a GitHub profile to an account.

        Lookup order: provider/uid, then email (linking the account), then a
        new password-less user.
        """
        stmt = select(User).where(User.provider == GITHUB_PROVIDER, User.uid == profile["uid"])
        user = (await self.db.execute(stmt)).scalar_one_or_none()

        if user is not None:
            user.avatar_url = profile.get("avatar_url") or user.avatar_url
        else:
            user = await self.get_user_by_email(profile["email"])
            if user is not None:
                user.provider = GITHUB_PROVIDER
                user.uid = profile["uid"]
                user.avatar_url = user.avatar_url or profile.get("avatar_url")
            else:
                user = await self._create_user(
                    normalize_email(profile["email"]),
                    invite_code,
                    provider=GITHUB_PROVIDER,
                    uid=profile["uid"],
                    avatar_url=profile.get("avatar_url"),
                )

        user.last_login = utc_now()
        await self.db.flush()
        return user

    # =========================================================================
    # Profile
    # =========================================================================

    async def update_me(self, user: User, changes: dict[str, Any]) -> User:
        for field in PROFILE_FIELDS:
            if field in changes and changes[field] is not None:
                setattr(user, field, changes[field])
        await self.db.flush()
        return user
