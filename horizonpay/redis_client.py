"""
Redis connection setup using redis-py async client.

TLS is enabled by giving a ``rediss://`` URL. Provides the shared redis
instance used for the market snapshot cache, rate limiting and daily
totals.
"""

import redis.asyncio as aioredis

from horizonpay.config import settings

redis = aioredis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
)
