"""Redis cache helpers.

Every helper fails open: when Redis is not configured or unreachable the caller
behaves as on a cache miss.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis

from . import settings

logger = logging.getLogger(__name__)

_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis | None:
    """
    Get or create the Redis client.

    Returns None if REDIS_URL is unset or the server does not answer a ping.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    if not settings.REDIS_URL:
        return None

    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis cache unavailable: {e}. Continuing without cache.")
        return None

    logger.info("Redis cache connected successfully")
    _redis_client = client
    return _redis_client


def cache_get(key: str) -> Any | None:
    """
    Retrieve a cached value by key.

    Args:
        key: Cache key

    Returns:
        The JSON-decoded value (or the raw string when it is not JSON), None on a miss
    """
    client = get_redis_client()
    if not client:
        return None

    try:
        value = client.get(key)
    except redis.RedisError as e:
        logger.warning(f"Cache get error for key '{key}': {e}")
        return None

    if value is None:
        return None
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value


def cache_set(key: str, value: Any, ttl: int = 300) -> bool:
    """
    Set a cached value with TTL.

    Args:
        key: Cache key
        value: Value to cache (JSON-serialized if dict/list)
        ttl: Time to live in seconds (default: 300 = 5 minutes)

    Returns:
        True if stored, False when Redis is unavailable or the write failed
    """
    client = get_redis_client()
    if not client:
        return False

    serialized = json.dumps(value, default=str) if isinstance(value, (dict, list)) else str(value)
    try:
        client.setex(key, ttl, serialized)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache set error for key '{key}': {e}")
        return False


def cache_invalidate(pattern: str) -> int:
    """
    Delete every key matching a glob pattern.

    Args:
        pattern: Redis glob, e.g. ``"playlist:manifest:*"``

    Returns:
        Number of keys deleted (0 when Redis is unavailable)
    """
    client = get_redis_client()
    if not client:
        return 0

    try:
        keys = list(client.scan_iter(match=pattern, count=500))
        if not keys:
            return 0
        deleted = client.delete(*keys)
    except redis.RedisError as e:
        logger.warning(f"Cache invalidate error for pattern '{pattern}': {e}")
        return 0

    logger.info(f"Invalidated {deleted} cache entries matching pattern '{pattern}'")
    return deleted
