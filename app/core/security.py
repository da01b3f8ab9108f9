"""
Security Module
===============

Authentication and security utilities including:
- Password hashing with bcrypt
- JWT session token generation and validation
- Opaque API / hook token helpers
"""

from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import re
import secrets
from typing import Any, Optional
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import settings

# Password hashing context using bcrypt
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# "Authorization: Bearer <token>"
BEARER_PATTERN = re.compile(r"^Bearer\s+(\S+)$")


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Hashed password string
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Stored hash to compare against

    Returns:
        True if password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def _encode(data: dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
    })
    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def create_access_token(
    data: dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode
        expires_delta: Custom expiration time (optional)

    Returns:
        Encoded JWT token string
    """
    return _encode(
        data,
        "access",
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(
    data: dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT refresh token.

    Args:
        data: Payload data to encode
        expires_delta: Custom expiration time (optional)

    Returns:
        Encoded JWT refresh token string
    """
    return _encode(
        data,
        "refresh",
        expires_delta or timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return payload
    except JWTError:
        return None


def looks_like_jwt(token: str) -> bool:
    """JWTs have three dot-separated segments; API tokens are plain hex."""
    return token.count(".") == 2


def create_tokens_for_user(
    user_id: uuid.UUID,
    email: str,
) -> dict[str, Any]:
    """
    Create both access and refresh tokens for a user.

    Args:
        user_id: User's UUID
        email: User's email

    Returns:
        Dictionary with access_token, refresh_token, and expires_in
    """
    token_data = {
        "sub": str(user_id),
        "email": email,
    }

    return {
        "access_token": create_access_token(token_data),
        "refresh_token": create_refresh_token(token_data),
        "token_type": "bearer",
        "expires_in": settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,  # seconds
    }


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an Authorization header, or None if malformed."""
    if not authorization:
        return None
    match = BEARER_PATTERN.match(authorization.strip())
    return match.group(1) if match else None


def generate_api_token() -> str:
    """64 hex characters (32 random bytes)."""
    return secrets.token_hex(32)


def digest_token(raw_token: str) -> str:
    """SHA-256 hex digest used to store opaque tokens and codes."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_numeric_code(length: int = 6) -> str:
    """Random numeric sign-in code, zero padded."""
    return "".join(secrets.choice("0123456789") for _ in range(length))


def secure_compare(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; blank values never match."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
