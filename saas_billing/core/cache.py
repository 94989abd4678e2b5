"""
Redis client for optional caching.

WHY: Redis is optional in this service. When ``REDIS_URL`` is unset,
``get_redis`` returns None and callers read straight from the database.
"""

from typing import Optional

import redis.asyncio as aioredis

from saas_billing.core.config import settings


_redis_client: Optional[aioredis.Redis] = None


async def get_redis() -> Optional[aioredis.Redis]:
    """
    Get the shared Redis client, or None when caching is disabled.

    WHY: Lazy initialization ensures Redis is only connected when needed,
    and the connection is reused across requests.
    """
    global _redis_client
    if not settings.REDIS_URL:
        return None
    if _redis_client is None:
        _redis_client = await aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client
