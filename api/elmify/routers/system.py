"""System endpoints (health)."""

from __future__ import annotations

import logging
import time

import redis
from fastapi import APIRouter, HTTPException, status

from .. import schemas
from ..cache import get_redis_client

router = APIRouter(prefix="", tags=["System"])
logger = logging.getLogger(__name__)

# Global startup time for uptime calculation
_STARTUP_TIME = time.time()


@router.get("/health", response_model=schemas.HealthResponse)
def get_health() -> schemas.HealthResponse:
    """Liveness check."""
    uptime_s = time.time() - _STARTUP_TIME
    return schemas.HealthResponse(status="ok", uptime_s=uptime_s)


@router.get("/health/redis")
def check_redis_health() -> dict:
    """
    Redis health check endpoint.

    Returns 200 if Redis is available, 503 if not.
    """
    client = get_redis_client()
    if not client:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Redis unavailable",
        )

    try:
        client.ping()
        return {"status": "ok", "message": "Redis is available"}
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Redis error: {e}",
        )
