"""Prometheus metrics for HTTP requests, pipeline jobs and LLM calls.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- record_job_started() / record_job_finished(): job lifecycle counters
- track_step(): context manager timing a single pipeline step
- track_llm_call(): context manager for LLM call metrics
- get_metrics_response(): FastAPI route handler body for /metrics
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

# ── Job Metrics ──────────────────────────────────────────────────────────────

jobs_started_total = Counter(
    "pipeline_jobs_started_total",
    "Total pipeline jobs started",
    ["kind"],
)

jobs_finished_total = Counter(
    "pipeline_jobs_finished_total",
    "Total pipeline jobs that reached a terminal status",
    ["kind", "status"],
)

jobs_in_flight = Gauge(
    "pipeline_jobs_in_flight",
    "Pipeline jobs currently executing",
    ["kind"],
)

step_duration_seconds = Histogram(
    "pipeline_step_duration_seconds",
    "Duration of a single pipeline step in seconds",
    ["kind", "step", "status"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# ── LLM Metrics ──────────────────────────────────────────────────────────────

llm_requests_total = Counter(
    "llm_requests_total",
    "Total LLM API requests",
    ["model", "status"],
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM API request duration in seconds",
    ["model"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

llm_tokens_used_total = Counter(
    "llm_tokens_used_total",
    "Total LLM tokens consumed",
    ["model", "token_type"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    Progress polling is high-volume, so the job id path segment is collapsed
    to keep label cardinality bounded.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # Routing fills in the matched route only once call_next has run
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path

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


# ── Job Helpers ──────────────────────────────────────────────────────────────


def record_job_started(kind: str) -> None:
    jobs_started_total.labels(kind=kind).inc()
    jobs_in_flight.labels(kind=kind).inc()


def record_job_finished(kind: str, status: str) -> None:
    jobs_finished_total.labels(kind=kind, status=status).inc()
    jobs_in_flight.labels(kind=kind).dec()


@asynccontextmanager
async def track_step(kind: str, step: str) -> AsyncGenerator[None, None]:
    """Time one pipeline step and label the observation with its outcome."""
    start_time = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        step_duration_seconds.labels(
            kind=kind,
            step=step,
            status=status,
        ).observe(time.perf_counter() - start_time)


# ── LLM Metrics Helper ──────────────────────────────────────────────────────


@asynccontextmanager
async def track_llm_call(model: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks LLM call metrics.

    Usage:
        async with track_llm_call("reasoning") as tracker:
            result = await call_llm(...)
            tracker["prompt_tokens"] = result.usage.prompt_tokens
            tracker["completion_tokens"] = result.usage.completion_tokens

    Automatically records:
    - Duration in histogram
    - Request count (success/error)
    - Token usage (if set in tracker dict)
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

        llm_requests_total.labels(model=model, status=status).inc()
        llm_request_duration_seconds.labels(model=model).observe(duration)

        if tracker.get("prompt_tokens"):
            llm_tokens_used_total.labels(
                model=model,
                token_type="prompt",
            ).inc(tracker["prompt_tokens"])

        if tracker.get("completion_tokens"):
            llm_tokens_used_total.labels(
                model=model,
                token_type="completion",
            ).inc(tracker["completion_tokens"])


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
