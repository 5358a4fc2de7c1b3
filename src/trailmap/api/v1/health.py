"""Health check endpoints.

/health is a liveness check with no dependency checks. /health/ready checks
the history database and, when it backs the progress store, Redis.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.trailmap.config import ProgressBackend, get_settings
from src.trailmap.core.database import get_engine
from src.trailmap.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check: the server is running."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    """Check database and Redis connectivity. Returns check results dict."""
    settings = get_settings()
    checks: dict = {"database": "ok", "redis": "skipped"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    if settings.PROGRESS_BACKEND == ProgressBackend.redis:
        try:
            redis = get_redis_pool()
            pong = await redis.ping()
            checks["redis"] = "ok" if pong else "error"
            if not pong:
                checks["redis_error"] = "PING did not return PONG"
        except Exception as e:
            checks["redis"] = "error"
            checks["redis_error"] = str(e)

    if settings.ANTHROPIC_API_KEY or settings.OPENAI_API_KEY:
        checks["llm"] = "ok"
    else:
        checks["llm"] = "no_keys"

    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: 200 if the database (and Redis, when used) respond, else 503.

    The database only holds history, so a failure here degrades the service
    rather than stopping job execution; orchestrators still treat it as not ready.
    """
    checks = await _check_dependencies()
    all_healthy = checks["database"] == "ok" and checks["redis"] in ("ok", "skipped")

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
