"""Prometheus metrics, Sentry integration, and provider call tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- init_sentry(): Initialize Sentry with user-aware before_send callback
- track_generation_call(): Context manager for provider call metrics
- record_escalation(): Counter for triggered safety tiers
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Generation Provider Metrics ──────────────────────────────────────────────

generation_requests_total = Counter(
    "generation_requests_total",
    "Total generation provider calls (after retries)",
    ["operation", "status"],
)

generation_request_duration_seconds = Histogram(
    "generation_request_duration_seconds",
    "Generation provider call duration in seconds, retries included",
    ["operation"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

generation_retries_total = Counter(
    "generation_retries_total",
    "Generation provider retry attempts",
    ["operation", "reason"],
)

generation_tokens_used_total = Counter(
    "generation_tokens_used_total",
    "Total generation tokens consumed",
    ["operation", "token_type"],
)

# ── Conversation Metrics ─────────────────────────────────────────────────────

escalations_total = Counter(
    "escalations_total",
    "Messages classified into an escalation tier",
    ["tier", "language"],
)

active_sessions = Gauge(
    "active_sessions",
    "Number of sessions held in memory",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Generation Metrics Helper ────────────────────────────────────────────────


@asynccontextmanager
async def track_generation_call(operation: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks provider call metrics.

    Usage:
        async with track_generation_call("chat") as tracker:
            result = await call_provider(...)
            tracker["prompt_tokens"] = result.usage_metadata.prompt_token_count

    Automatically records duration, request count (success/error) and token
    usage when set in the tracker dict.
    """
    tracker: dict[str, Any] = {
        "prompt_tokens": 0,
        "completion_tokens": 0,
    }
    start_time = time.perf_counter()
    status = "success"

    try:
        yield tracker
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time

        generation_requests_total.labels(operation=operation, status=status).inc()
        generation_request_duration_seconds.labels(operation=operation).observe(duration)

        if tracker.get("prompt_tokens"):
            generation_tokens_used_total.labels(
                operation=operation,
                token_type="prompt",
            ).inc(tracker["prompt_tokens"])

        if tracker.get("completion_tokens"):
            generation_tokens_used_total.labels(
                operation=operation,
                token_type="completion",
            ).inc(tracker["completion_tokens"])


def record_retry(operation: str, reason: str) -> None:
    generation_retries_total.labels(operation=operation, reason=reason).inc()


def record_escalation(tier: int, language: str) -> None:
    escalations_total.labels(tier=str(tier), language=language).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Request bodies are never attached: user messages may contain crisis
    disclosures.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Strip request payloads from Sentry events."""
        request = event.get("request")
        if isinstance(request, dict):
            request.pop("data", None)
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
