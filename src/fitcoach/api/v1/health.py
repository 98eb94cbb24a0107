"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
Readiness covers the database and, when room state is kept in Redis,
Redis as well.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.fitcoach.config import RoomStateBackend, get_settings
from src.fitcoach.core.database import get_engine
from src.fitcoach.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    """Check database and Redis connectivity. Returns check results dict."""
    settings = get_settings()
    checks: dict = {"database": "ok", "redis": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    if settings.ROOM_STATE_BACKEND != RoomStateBackend.redis:
        checks["redis"] = "unused"
        return checks

    try:
        redis = get_redis_pool()
        pong = await redis.ping()
        if not pong:
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except (RedisError, OSError) as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: verifies database and (if used) Redis connectivity.

    Returns 200 if all pass, 503 if any dependency fails.
    """
    checks = await _check_dependencies()
    all_healthy = checks.get("database") == "ok" and checks.get("redis") in ("ok", "unused")

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
