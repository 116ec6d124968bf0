"""Health check endpoints."""

from fastapi import APIRouter, Request

from src.config import get_settings
from src.core.redis import get_redis


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> dict[str, str | bool]:
    """Readiness probe - ready once the Cassandra-backed services are wired.

    Redis is reported but never blocks readiness.
    """
    settings = get_settings()
    database_ready = getattr(request.app.state, "exam_service", None) is not None
    watcher = getattr(request.app.state, "exam_watcher", None)
    return {
        "status": "ready" if database_ready else "degraded",
        "environment": settings.environment,
        "debug": settings.debug,
        "database": database_ready,
        "cache": get_redis() is not None,
        "exam_watcher": bool(watcher and watcher.is_running),
    }


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
