"""
Common Dependencies
===================

Shared dependencies used across the application.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.context import ActorContext
from app.core.errors import AuthenticationError, ErrorCodes, ForbiddenError
from app.core.security import extract_bearer_token, looks_like_jwt, secure_compare
from app.db.session import get_db
from app.models.user import User
from app.services.api_token_service import ApiTokenService
from app.services.auth_service import AuthService

logger = logging.getLogger(__name__)

# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

AGENT_NAME_HEADER = "X-Agent-Name"
AGENT_EMOJI_HEADER = "X-Agent-Emoji"
HOOK_TOKEN_HEADER = "X-Hook-Token"


# =============================================================================
# User resolution
# =============================================================================

async def resolve_token(token: str, db: AsyncSession) -> tuple[Optional[User], str]:
    """
    Resolve a bearer credential to its user.

    Access JWTs are web sessions; anything else is looked up as an API
    token held by an agent.

    Returns:
        (user or None, activity source)
    """
    if looks_like_jwt(token):
        return await AuthService(db).verify_token(token), "web"
    return await ApiTokenService(db).authenticate(token), "api"


async def get_current_user(request: Request, db: DBSession) -> User:
    """
    Get current authenticated user.

    Raises 401 if the Authorization header is missing, malformed, or
    carries an unknown credential.
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise AuthenticationError(
            code=ErrorCodes.UNAUTHORIZED,
            message="Not authenticated",
        )

    user, source = await resolve_token(token, db)
    if user is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_INVALID_TOKEN,
            message="Invalid or expired token",
        )

    request.state.user_id = str(user.user_id)
    request.state.auth_source = source
    return user


# Type alias for authenticated user dependency
CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_admin_user(current_user: CurrentUser) -> User:
    if not current_user.admin:
        raise ForbiddenError(message="Admin access required")
    return current_user


AdminUser = Annotated[User, Depends(get_admin_user)]


# =============================================================================
# Activity attribution
# =============================================================================

async def get_actor_context(
    request: Request,
    current_user: CurrentUser,
    activity_note: Optional[str] = Query(default=None, max_length=500),
) -> ActorContext:
    """
    Who is acting: the web user, or an agent named by the X-Agent-* headers
    (falling back to the user's configured agent identity).
    """
    source = getattr(request.state, "auth_source", "web")
    if source != "api":
        return ActorContext(source=source, note=activity_note)

    return ActorContext(
        source=source,
        actor_name=request.headers.get(AGENT_NAME_HEADER) or current_user.agent_name,
        actor_emoji=request.headers.get(AGENT_EMOJI_HEADER) or current_user.agent_emoji,
        note=activity_note,
    )


Actor = Annotated[ActorContext, Depends(get_actor_context)]


# =============================================================================
# Hooks
# =============================================================================

async def verify_hook_token(request: Request) -> None:
    """Constant-time check of X-Hook-Token against HOOKS_TOKEN."""
    if not secure_compare(request.headers.get(HOOK_TOKEN_HEADER), settings.HOOKS_TOKEN):
        logger.warning("Rejected hook call from %s", request.client.host if request.client else "unknown")
        raise AuthenticationError(
            code=ErrorCodes.HOOK_UNAUTHORIZED,
            message="unauthorized",
        )
