"""
Redis client for cross-process lead locks.
"""
import logging
from typing import Optional

import redis.asyncio as redis

from outreach.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Return the shared Redis client, creating it on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )
    return _redis_client


async def check_redis_connection() -> bool:
    """True when Redis answers a ping."""
    try:
        await get_redis_client().ping()
        logger.debug("[Redis] Connected")
        return True
    except Exception as e:
        logger.error(f"[Redis] Unreachable: {e}")
        return False
