"""
Redis connection setup using redis-py async client.

Provides the shared redis instance used for distributed
per-transaction settlement locks. TLS is selected through the
``rediss://`` scheme when ``REDIS_SSL`` is set.
"""

import redis.asyncio as aioredis

from app.config import settings


def _redis_url() -> str:
    url = settings.REDIS_URL
    if settings.REDIS_SSL and url.startswith("redis://"):
        return "rediss://" + url[len("redis://"):]
    return url


redis = aioredis.from_url(_redis_url(), decode_responses=True)
