"""Health check and system info routes."""

import shutil

import redis
from fastapi import APIRouter
from sqlalchemy import text

from vetscribe.config import get_settings
from vetscribe.schemas.schemas import HealthResponse
from vetscribe.services.storage import blob_storage

router = APIRouter(tags=["System"])

settings = get_settings()

VERSION = "1.0.0"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the service and its dependencies.",
)
async def health_check():
    """
    Health check endpoint.

    Returns the status of:
    - Database connection
    - Redis (task queue) connection
    - Audio storage
    - ffmpeg availability
    """
    redis_status = "ok"
    try:
        r = redis.from_url(settings.redis_url, socket_connect_timeout=2)
        r.ping()
    except Exception:
        redis_status = "error"

    storage_status = "ok" if blob_storage.health_check() else "error"
    ffmpeg_status = "ok" if shutil.which(settings.ffmpeg_path) else "missing"

    db_status = "ok"
    try:
        from vetscribe.db.session import engine

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    overall_status = "healthy"
    if any(s != "ok" for s in [redis_status, storage_status, db_status, ffmpeg_status]):
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=VERSION,
        database=db_status,
        redis=redis_status,
        storage=storage_status,
        ffmpeg=ffmpeg_status,
    )


@router.get(
    "/v1/info",
    summary="Service information",
    description="Get general information about the service.",
)
async def service_info():
    """Get service information."""
    return {
        "name": settings.app_name,
        "version": VERSION,
        "environment": settings.app_env,
        "storage_backend": settings.storage_backend,
        "transcription_model": settings.transcription_model,
        "note_model": settings.note_model,
        "consultation_statuses": ["processing", "completed", "failed"],
        "documentation": "/docs",
        "redoc": "/redoc",
    }
