"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, the v1
API router, and a lifespan that wires the job pipeline onto ``app.state``:
progress store, sweeper, job runner, collaborators and the orchestrator.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.trailmap.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.trailmap.api.v1.router import router as v1_router
from src.trailmap.config import ProgressBackend, Settings, get_settings
from src.trailmap.core.database import close_db, get_session, init_db
from src.trailmap.core.monitoring import MetricsMiddleware, get_metrics_response
from src.trailmap.core.redis import close_redis, get_redis_pool
from src.trailmap.generation.llm import LLMService
from src.trailmap.generation.transforms import Transforms
from src.trailmap.google.auth import GoogleServiceFactory
from src.trailmap.google.docs import GoogleDocsService
from src.trailmap.google.drive import GoogleDriveService
from src.trailmap.google.slides import GoogleSlidesService
from src.trailmap.google.tokens import FileCredentialStore, OAuthClient, TokenManager
from src.trailmap.jobs.progress import (
    InMemoryProgressStore,
    ProgressStore,
    RedisProgressStore,
    start_progress_sweeper,
)
from src.trailmap.jobs.runner import JobRunner
from src.trailmap.persistence.cleanup import HistoryCleanup
from src.trailmap.persistence.repository import HistoryRepository
from src.trailmap.pipelines.orchestrator import Orchestrator
from src.trailmap.pipelines.service import JobService
from src.trailmap.transcripts.meetgeek import MeetGeekClient


def build_progress_store(settings: Settings) -> ProgressStore:
    ttl = timedelta(seconds=settings.JOB_TTL_SECONDS)
    if settings.PROGRESS_BACKEND == ProgressBackend.redis:
        return RedisProgressStore(get_redis_pool(), ttl=ttl)
    return InMemoryProgressStore(ttl=ttl)


def build_token_manager(settings: Settings) -> TokenManager:
    oauth_client = None
    if settings.google_oauth_configured:
        oauth_client = OAuthClient(
            settings.GOOGLE_OAUTH_CLIENT_ID,
            settings.GOOGLE_OAUTH_CLIENT_SECRET,
            settings.GOOGLE_OAUTH_REDIRECT_URI,
        )
    return TokenManager(FileCredentialStore(settings.GOOGLE_TOKEN_PATH), oauth_client)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire the pipeline on startup, drain it on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    # History is best-effort; jobs still run without a database
    try:
        await init_db()
    except Exception:
        log.warning("startup.database_init_failed", exc_info=True)

    # ── Job state ─────────────────────────────────────────────────────────
    progress_store = build_progress_store(settings)
    sweeper_task = start_progress_sweeper(
        progress_store, settings.PROGRESS_SWEEP_INTERVAL_SECONDS
    )
    runner = JobRunner(workers=settings.JOB_WORKERS)
    runner.start()

    # ── Collaborators ─────────────────────────────────────────────────────
    if not settings.MEETGEEK_API_KEY:
        log.warning("startup.meetgeek_not_configured", hint="only inline transcripts will work")
    fetcher = MeetGeekClient(settings.MEETGEEK_API_KEY, base_url=settings.MEETGEEK_API_BASE)
    transforms = Transforms(LLMService(settings))

    if not settings.google_oauth_configured:
        log.warning("startup.google_oauth_not_configured")
    token_manager = build_token_manager(settings)
    google = GoogleServiceFactory(token_manager)
    drive_service = GoogleDriveService(google)
    docs_service = GoogleDocsService(google)
    slides_service = GoogleSlidesService(
        google, drive_service, settings.TRAILMAP_TEMPLATE_PRESENTATION_ID
    )

    history = HistoryRepository(get_session)
    orchestrator = Orchestrator(
        store=progress_store,
        fetcher=fetcher,
        transforms=transforms,
        docs=docs_service,
        slides=slides_service,
        history=history,
        trailmap_folder_id=settings.GOOGLE_DRIVE_TRAILMAP_FOLDER_ID,
        action_items_folder_id=settings.GOOGLE_DRIVE_ACTION_ITEMS_FOLDER_ID,
    )

    app.state.progress_store = progress_store
    app.state.job_runner = runner
    app.state.token_manager = token_manager
    app.state.drive_service = drive_service
    app.state.history_cleanup = HistoryCleanup(history, drive_service)
    app.state.job_service = JobService(progress_store, runner, orchestrator)
    log.info(
        "startup.pipeline_ready",
        progress_backend=settings.PROGRESS_BACKEND.value,
        workers=settings.JOB_WORKERS,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    try:
        await asyncio.wait_for(
            runner.shutdown(drain=True), timeout=settings.JOB_SHUTDOWN_GRACE_SECONDS
        )
    except asyncio.TimeoutError:
        log.warning("shutdown.jobs_abandoned", active_jobs=sorted(runner.active_jobs))
        await runner.shutdown(drain=False)

    sweeper_task.cancel()
    try:
        await sweeper_task
    except asyncio.CancelledError:
        pass

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Trailmap API",
        version="0.1.0",
        description="Meeting transcripts to strategy reports, slide workbooks and action items",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
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
