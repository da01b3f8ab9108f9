"""
Authentication API Endpoints
============================

Handles registration, login, token refresh, email sign-in codes,
GitHub OAuth and the current user's profile.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.rate_limit import create_rate_limit_dependency
from app.dependencies import CurrentUser, DBSession
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    EmailCodeRequest,
    EmailCodeVerify,
    RefreshTokenRequest,
    UpdateMeRequest,
    UserLogin,
    UserRegister,
)
from app.schemas.common import ErrorResponse, SuccessResponse
from app.services.auth_service import AuthService
from app.services.github_oauth import GitHubOAuthService

logger = logging.getLogger(__name__)

router = APIRouter()

auth_rate_limit = Depends(create_rate_limit_dependency("auth", per_ip=True))


def signed_in(user: User, message: Optional[str] = None) -> AuthResponse:
    return AuthResponse(
        success=True,
        data={"user": user.to_api_dict(), "tokens": AuthService.tokens_for(user)},
        message=message,
    )


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[auth_rate_limit],
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
        422: {"model": ErrorResponse, "description": "Invalid invite code"},
    },
)
async def register(user_data: UserRegister, db: DBSession):
    """
    Register a new account.

    Creates the "Getting Started" onboarding board.
    """
    user = await AuthService(db).register(user_data.email, user_data.password, user_data.invite_code)
    await db.commit()
    return signed_in(user, "Account created successfully")


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[auth_rate_limit],
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
)
async def login(credentials: UserLogin, db: DBSession):
    """Authenticate with email and password."""
    user = await AuthService(db).login(credentials.email, credentials.password)
    await db.commit()
    return signed_in(user)


@router.post(
    "/refresh",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid refresh token"}},
)
async def refresh_token(request: RefreshTokenRequest, db: DBSession):
    """Exchange a refresh token for a new token pair."""
    tokens = await AuthService(db).refresh_tokens(request.refresh_token)
    return AuthResponse(success=True, data={"tokens": tokens})


# =============================================================================
# Email sign-in codes
# =============================================================================

@router.post(
    "/email_code",
    response_model=SuccessResponse,
    dependencies=[Depends(create_rate_limit_dependency("email_code", per_ip=True))],
)
async def request_email_code(request: EmailCodeRequest, db: DBSession):
    """
    Email a 6-digit sign-in code.

    The response does not reveal whether an account exists.
    """
    await AuthService(db).request_email_code(request.email)
    await db.commit()
    return SuccessResponse(message="If the address can sign in, a code is on its way")


@router.post(
    "/email_code/verify",
    response_model=AuthResponse,
    dependencies=[auth_rate_limit],
    responses={401: {"model": ErrorResponse, "description": "Invalid or expired code"}},
)
async def verify_email_code(request: EmailCodeVerify, db: DBSession):
    """Sign in (or sign up) with an emailed code."""
    user = await AuthService(db).verify_email_code(request.email, request.code, request.invite_code)
    await db.commit()
    return signed_in(user)


# =============================================================================
# GitHub OAuth
# =============================================================================

@router.get("/github")
async def github_authorize(invite_code: Optional[str] = Query(default=None, max_length=20)):
    """Authorize URL for the GitHub sign-in redirect."""
    url = await GitHubOAuthService().authorize_url(invite_code)
    return {"success": True, "authorize_url": url}


@router.get(
    "/github/callback",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse, "description": "OAuth failed"}},
)
async def github_callback(
    db: DBSession,
    code: str = Query(..., min_length=1),
    state: Optional[str] = Query(default=None),
):
    """Complete GitHub sign-in and return session tokens."""
    oauth = GitHubOAuthService()
    stored = await oauth.consume_state(state)
    profile = await oauth.fetch_profile(code)

    user = await AuthService(db).find_or_create_from_github(profile, stored.get("invite_code"))
    await db.commit()

    logger.info("GitHub sign-in for user %s (%s)", user.user_id, profile.get("login"))
    return signed_in(user)


# =============================================================================
# Current user
# =============================================================================

@router.get("/me")
async def get_me(current_user: CurrentUser):
    return {"success": True, "user": current_user.to_api_dict()}


@router.patch("/me")
async def update_me(request: UpdateMeRequest, current_user: CurrentUser, db: DBSession):
    user = await AuthService(db).update_me(current_user, request.model_dump(exclude_unset=True))
    await db.commit()
    return {"success": True, "user": user.to_api_dict()}
