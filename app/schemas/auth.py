"""
Authentication Schemas
======================

Pydantic schemas for authentication and profile endpoints.
"""

from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field


class UserRegister(BaseModel):
    """Request schema for user registration."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=100)
    invite_code: Optional[str] = Field(None, max_length=20)


class UserLogin(BaseModel):
    """Request schema for user login."""

    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Response schema for tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class RefreshTokenRequest(BaseModel):
    """Request schema for token refresh."""

    refresh_token: str


class EmailCodeRequest(BaseModel):
    """Request a sign-in code by email."""

    email: EmailStr


class EmailCodeVerify(BaseModel):
    """Sign in with an emailed code."""

    email: EmailStr
    code: str = Field(min_length=1, max_length=12)
    invite_code: Optional[str] = Field(None, max_length=20)


class AuthResponse(BaseModel):
    """Response schema for authentication endpoints."""

    success: bool = True
    data: dict[str, Any]
    message: Optional[str] = None


class UpdateMeRequest(BaseModel):
    """Agent preferences and avatar; omitted fields are unchanged."""

    agent_name: Optional[str] = Field(None, max_length=100)
    agent_emoji: Optional[str] = Field(None, max_length=20)
    agent_auto_mode: Optional[bool] = None
    avatar_url: Optional[str] = Field(None, max_length=500)
