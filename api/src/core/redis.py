# ruff: noqa: PLW0603
"""Redis connection management.

Provides async Redis client for:
- Course progress view cache
- Quiz session state with TTL

Redis is optional. Every caller must handle ``get_redis()`` returning None.
"""

import redis.asyncio as redis

from src.config import get_settings
from src.core.logging import get_logger


logger = get_logger(__name__)

# Global Redis client
_redis_client: redis.Redis | None = None


async def init_redis() -> redis.Redis:
    """Initialize Redis connection pool."""
    global _redis_client

    settings = get_settings()

    _redis_client = redis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry_on_timeout=settings.redis_retry_on_timeout,
        health_check_interval=settings.redis_health_check_interval,
        decode_responses=True,
    )

    try:
        await _redis_client.ping()
        logger.info("redis_connected", url=settings.redis_url)
    except redis.ConnectionError as e:
        logger.warning("redis_connection_failed", error=str(e))
        _redis_client = None
        raise

    return _redis_client


async def shutdown_redis() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        logger.info("redis_disconnected")
        _redis_client = None


def get_redis() -> redis.Redis | None:
    """Get Redis client instance."""
    return _redis_client


# Key patterns
def progress_cache_key(user_id: str, course_id: str) -> str:
    """Get the cache key of a learner's course progress view."""
    return f"progress:{user_id}:{course_id}"


def quiz_session_key(user_id: str, topic_id: str) -> str:
    """Get the key of a learner's in-progress quiz navigation state."""
    return f"quiz_session:{user_id}:{topic_id}"


def progress_version_key(user_id: str, course_id: str) -> str:
    """Get the counter bumped on every invalidation of a progress view."""
    return f"progress_version:{user_id}:{course_id}"
