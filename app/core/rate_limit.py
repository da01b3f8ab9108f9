"""
Rate Limiting
=============

Redis-based fixed window rate limiting for API endpoints.
"""

import logging
from typing import Optional

from fastapi import Request

from app.core.errors import RateLimitError
from app.core.security import decode_token, digest_token, extract_bearer_token, looks_like_jwt
from app.services.cache import get_redis

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed window rate limiter using Redis.

    Rate limits are applied per user (if authenticated) or per IP.

    Default limits:
        - Authentication endpoints: 5 requests/minute
        - Creation endpoints: 30 requests/minute
        - Read endpoints: 100 requests/minute
        - Agent hooks: 30 requests/minute per IP
        - Email sign-in codes: 3 requests/10 minutes
    """

    LIMITS = {
        "auth": {"max_requests": 5, "window_seconds": 60},
        "create": {"max_requests": 30, "window_seconds": 60},
        "read": {"max_requests": 100, "window_seconds": 60},
        "hooks": {"max_requests": 30, "window_seconds": 60},
        "email_code": {"max_requests": 3, "window_seconds": 600},
    }

    @staticmethod
    def _get_key(identifier: str, action: str) -> str:
        return f"ratelimit:{action}:{identifier}"

    @staticmethod
    async def check_rate_limit(
        identifier: str,
        action: str,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ) -> dict:
        """
        Check if request is within rate limit.

        Args:
            identifier: User ID or IP address
            action: Action type (auth, create, read, hooks, email_code)
            max_requests: Override max requests (optional)
            window_seconds: Override window size (optional)

        Returns:
            Dict with 'allowed', 'limit', 'remaining', 'reset_in' keys
        """
        limits = RateLimiter.LIMITS.get(action, RateLimiter.LIMITS["read"])
        max_req = max_requests or limits["max_requests"]
        window = window_seconds or limits["window_seconds"]

        key = RateLimiter._get_key(identifier, action)

        try:
            client = await get_redis()

            current = await client.get(key)
            if current is None:
                await client.setex(key, window, 1)
                return {"allowed": True, "limit": max_req, "remaining": max_req - 1, "reset_in": window}

            current_count = int(current)
            ttl = await client.ttl(key)
            reset_in = ttl if ttl > 0 else window

            if current_count >= max_req:
                return {"allowed": False, "limit": max_req, "remaining": 0, "reset_in": reset_in}

            await client.incr(key)
            return {
                "allowed": True,
                "limit": max_req,
                "remaining": max_req - current_count - 1,
                "reset_in": reset_in,
            }

        except Exception as e:
            # Fail open
            logger.warning("Rate limit check error: %s", e)
            return {"allowed": True, "limit": max_req, "remaining": max_req, "reset_in": window}


def client_identifier(request: Request, per_ip: bool = False) -> str:
    """
    Rate limit bucket for a request.

    Authenticated requests are bucketed by user id (JWT subject) or by
    API token digest; everything else by client IP.
    """
    ip = request.client.host if request.client else "unknown"
    if per_ip:
        return f"ip:{ip}"

    token = extract_bearer_token(request.headers.get("Authorization"))
    if token:
        if looks_like_jwt(token):
            payload = decode_token(token)
            if payload and payload.get("sub"):
                return f"user:{payload['sub']}"
        else:
            return f"token:{digest_token(token)[:16]}"
    return f"ip:{ip}"


async def enforce_rate_limit(request: Request, action: str = "read", per_ip: bool = False) -> None:
    """Raise RateLimitError when the caller has exhausted the window."""
    identifier = client_identifier(request, per_ip=per_ip)
    result = await RateLimiter.check_rate_limit(identifier, action)

    if not result["allowed"]:
        logger.info("Rate limited %s on %s", identifier, action)
        raise RateLimitError(
            reset_in=result["reset_in"],
            limit=result["limit"],
            remaining=result["remaining"],
        )


def create_rate_limit_dependency(action: str = "read", per_ip: bool = False):
    """
    Factory for rate limit dependencies.

    Usage:
        @router.get("/endpoint", dependencies=[Depends(create_rate_limit_dependency("read"))])
        async def endpoint():
            ...
    """
    async def dependency(request: Request) -> None:
        await enforce_rate_limit(request, action, per_ip=per_ip)

    return dependency
