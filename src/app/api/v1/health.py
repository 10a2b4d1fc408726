"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness checks
the database and Redis; Redis only backs delivery dedup, so the service
reports "degraded" rather than failing when it is unreachable.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.app.config import get_settings
from src.app.core.database import get_engine
from src.app.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    """Check database and Redis connectivity. Returns check results dict."""
    checks: dict = {"database": "ok", "redis": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    try:
        redis = get_redis_pool()
        pong = await redis.ping()
        if not pong:
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except Exception as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    settings = get_settings()
    checks["webhook_secrets"] = (
        "ok"
        if settings.TENCENT_MEETING_TOKEN and settings.TENCENT_MEETING_ENCODING_AES_KEY
        else "missing"
    )
    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: 200 when the database answers, 503 otherwise."""
    checks = await _check_dependencies()
    ready = checks.get("database") == "ok"
    degraded = checks.get("redis") != "ok" or checks.get("webhook_secrets") != "ok"

    if not ready:
        label = "unavailable"
    elif degraded:
        label = "degraded"
    else:
        label = "ready"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": label, "checks": checks},
    )
