"""Health check endpoints.

Provides liveness (/health) with in-memory state counters and readiness
(/health/ready) which also checks database connectivity.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.companion.config import get_settings
from src.companion.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Basic liveness check.

    No external dependencies are checked. Reports how many sessions and
    cached audio clips this process currently holds.
    """
    settings = get_settings()
    store = getattr(request.app.state, "session_store", None)
    tts_cache = getattr(request.app.state, "tts_cache", None)
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT.value,
        "active_sessions": store.active_count() if store is not None else 0,
        "tts_cache_entries": tts_cache.size() if tts_cache is not None else 0,
    }


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: verifies database connectivity.

    Returns 200 if the database answers, 503 otherwise.
    """
    checks: dict = {"database": "ok", "generation_provider": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    if not get_settings().ADDIS_AI_API_KEY:
        checks["generation_provider"] = "no_key"

    healthy = checks["database"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )
