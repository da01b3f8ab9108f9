"""
Redis Cache Service
===================

Shared Redis connection plus small key/value helpers used for
OAuth state nonces and other short-lived values.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from app.config import settings

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """
    Initialize Redis connection pool and pre-warm a connection.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
            socket_keepalive=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        await _redis_client.ping()
        logger.info("Redis connection established")

    return _redis_client


async def get_redis() -> Redis:
    """Get Redis client, initializing if necessary."""
    if _redis_client is None:
        return await init_redis()
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


class CacheManager:
    """
    Redis cache manager with common operations.

    Key naming convention:
        cache:{module}:{resource}:{identifier}

    Every operation is best-effort: Redis errors are logged and the
    call reports a miss or failure instead of raising.
    """

    TTL_SHORT = 300  # 5 minutes
    TTL_OAUTH_STATE = 600  # 10 minutes

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        try:
            client = await get_redis()
            value = await client.get(key)
            if value is None:
                return None
            return json.loads(value)
        except Exception as e:
            logger.warning("Cache get error for key %s: %s", key, e)
            return None

    @staticmethod
    async def set(key: str, value: Any, ttl: int = TTL_SHORT) -> bool:
        """Set a JSON-serialized value with a TTL in seconds."""
        try:
            client = await get_redis()
            await client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.warning("Cache set error for key %s: %s", key, e)
            return False

    @staticmethod
    async def pop(key: str) -> Optional[Any]:
        """Read and delete a key in one round trip (single-use values)."""
        try:
            client = await get_redis()
            value = await client.getdel(key)
            if value is None:
                return None
            return json.loads(value)
        except Exception as e:
            logger.warning("Cache pop error for key %s: %s", key, e)
            return None


# =============================================================================
# Cache Key Builders
# =============================================================================

class CacheKeys:
    """Cache key builders for consistent naming."""

    @staticmethod
    def oauth_state(state: str) -> str:
        """Pending GitHub OAuth authorization."""
        return f"cache:oauth:github:state:{state}"
