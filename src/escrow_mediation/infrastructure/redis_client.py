"""Shared Redis connection for distributed presence and the node relay.

Only opened when PRESENCE_BACKEND=redis. A single-process deployment keeps
presence in memory and never touches Redis.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from escrow_mediation.config import get_settings
from escrow_mediation.logging_config import get_logger

logger = get_logger(__name__)

_client: aioredis.Redis | None = None


async def init_redis(url: str | None = None) -> aioredis.Redis:
    """Open the client and fail startup early if the server cannot be reached.

    Responses are decoded to str: presence handles and relay envelopes are
    text, and the registry compares them as strings.
    """
    global _client
    url = url or get_settings().redis_url
    client = aioredis.from_url(url, decode_responses=True, health_check_interval=30)
    await client.ping()
    _client = client
    logger.info("redis.connected", url=url)
    return client


def get_redis() -> aioredis.Redis:
    if _client is None:
        raise RuntimeError("Redis is not connected; PRESENCE_BACKEND must be 'redis'")
    return _client


async def redis_status() -> str:
    """Health summary: 'healthy', or 'unhealthy: <reason>'."""
    try:
        await get_redis().ping()
    except (RuntimeError, aioredis.RedisError) as exc:
        logger.error("health.redis_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
    logger.info("redis.disconnected")
