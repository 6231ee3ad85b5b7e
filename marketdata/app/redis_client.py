"""Shared async Redis connection for the market_changes stream."""

import logging
import os
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

_redis: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Return the shared connection, creating it from REDIS_URL on first use."""
    global _redis
    if _redis is None:
        url = os.environ.get("REDIS_URL", DEFAULT_REDIS_URL)
        _redis = redis.from_url(url, decode_responses=True)
        logger.info("Redis client created")
    return _redis


async def close_redis() -> None:
    """Close the shared connection (app shutdown)."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
