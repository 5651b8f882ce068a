"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
pings Redis only when the overlay is Redis-backed.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from src.dealflow.config import OverlayBackend, get_settings
from src.dealflow.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: verifies the overlay store is reachable."""
    settings = get_settings()
    checks: dict = {"overlay": settings.OVERLAY_BACKEND.value}

    if settings.OVERLAY_BACKEND == OverlayBackend.redis:
        try:
            redis = get_redis_pool()
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "checks": checks},
            )

    return {"status": "ready", "checks": checks}
