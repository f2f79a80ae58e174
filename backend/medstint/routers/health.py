"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from medstint.config import settings
from medstint.database import engine
from medstint.utils.cache import get_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check for load balancer (no DB/Redis check)."""
    return {
        "status": "ok",
        "service": "MedStint onboarding",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: database always, Redis when a backend depends on it.

    Returns 200 only if every checked dependency is healthy.
    """
    checks = {
        "service": "ok",
        "database": "skipped",
        "redis": "skipped",
    }
    overall_healthy = True

    if settings.store_backend == "sql":
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {str(e)[:100]}"
            overall_healthy = False

    if settings.lock_backend == "redis" or settings.cache_enabled:
        try:
            redis_client = await get_redis()
            await redis_client.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {str(e)[:100]}"
            # The cache fails open; only the lock makes Redis critical
            if settings.lock_backend == "redis":
                overall_healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if overall_healthy else "unhealthy",
            "service": "MedStint onboarding",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
