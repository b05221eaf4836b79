"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
error handlers, lifespan wiring for the turn pipeline and its
collaborators, and the v1 API router.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.companion.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.companion.api.v1.router import router as v1_router
from src.companion.chat.pipeline import TurnPipeline
from src.companion.config import Environment, get_settings
from src.companion.context.compactor import ContextCompactor
from src.companion.context.session import SessionPersistenceError, SessionStore
from src.companion.core.cache import TtsCache
from src.companion.core.database import close_db, get_session, init_db
from src.companion.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.companion.maintenance import build_maintenance_tasks, start_maintenance_background
from src.companion.persistence.repository import ConversationRepository
from src.companion.safety.escalation import EscalationClassifier, EscalationEventLogger
from src.companion.services.generation import GenerationClient, GenerationError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire services on startup, drain and close on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    repository = ConversationRepository(session_factory=get_session)
    generation_client = GenerationClient(
        api_key=settings.ADDIS_AI_API_KEY,
        base_url=settings.ADDIS_AI_BASE_URL,
        timeout=settings.GENERATION_TIMEOUT,
        max_attempts=settings.GENERATION_MAX_ATTEMPTS,
        default_retry_after=settings.GENERATION_DEFAULT_RETRY_AFTER,
    )
    session_store = SessionStore(repository, ttl_seconds=settings.session_ttl_seconds)
    tts_cache = TtsCache(
        ttl_seconds=settings.tts_cache_ttl_seconds,
        max_entries=settings.TTS_CACHE_MAX_ENTRIES,
    )
    pipeline = TurnPipeline(
        classifier=EscalationClassifier(hotline=settings.CRISIS_HOTLINE),
        event_logger=EscalationEventLogger(repository),
        store=session_store,
        compactor=ContextCompactor(
            generation_client,
            max_turns=settings.SESSION_MAX_TURNS,
            summary_trigger=settings.SUMMARY_TRIGGER_TURNS,
            summary_keep=settings.SUMMARY_KEEP_ENTRIES,
        ),
        client=generation_client,
        chat_temperature=settings.CHAT_TEMPERATURE,
    )

    app.state.generation_client = generation_client
    app.state.session_store = session_store
    app.state.tts_cache = tts_cache
    app.state.pipeline = pipeline

    start_maintenance_background(
        build_maintenance_tasks(session_store, tts_cache),
        interval_seconds=settings.MAINTENANCE_INTERVAL_SECONDS,
        app_state=app.state,
    )
    logger.info("app.started", environment=settings.ENVIRONMENT.value)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    for task_ref in getattr(app.state, "maintenance_tasks", []):
        task_ref.cancel()
    await asyncio.gather(*getattr(app.state, "maintenance_tasks", []), return_exceptions=True)

    await pipeline.drain()
    session_store.close()
    await generation_client.aclose()
    await close_db()
    logger.info("app.stopped", active_sessions_dropped=session_store.active_count())


# ── Error handlers ─────────────────────────────────────────────────────────


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation error"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    field = loc[-1] if loc else "body"
    message = str(first.get("msg", "invalid value")).removeprefix("Value error, ")
    return f"Validation error on '{field}': {message}"


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": _validation_message(exc)},
    )


async def generation_exception_handler(request: Request, exc: GenerationError) -> JSONResponse:
    logger.error(
        "generation.request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        status=exc.status,
        code=exc.code,
    )
    if get_settings().ENVIRONMENT == Environment.production:
        message = "The companion is temporarily unavailable. Please try again."
    else:
        message = str(exc)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"error": message, "status": exc.status, "code": exc.code},
    )


async def persistence_exception_handler(
    request: Request, exc: SessionPersistenceError
) -> JSONResponse:
    logger.error("session.persistence_failed", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Wellness Companion API",
        version="0.1.0",
        description="Turn pipeline for the Mika / Araara wellness companion",
        lifespan=lifespan,
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(GenerationError, generation_exception_handler)
    app.add_exception_handler(SessionPersistenceError, persistence_exception_handler)

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
