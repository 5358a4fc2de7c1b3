"""FastAPI dependencies that hand endpoint functions the services built at startup.

Every service lives on ``app.state`` (wired in the lifespan). A missing one
means startup skipped it, so the request fails with 503 rather than 500.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.trailmap.google.drive import GoogleDriveService
from src.trailmap.google.tokens import TokenManager
from src.trailmap.jobs.progress import ProgressStore
from src.trailmap.persistence.cleanup import HistoryCleanup
from src.trailmap.pipelines.service import JobService


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_job_service(request: Request) -> JobService:
    """Retrieve JobService from app.state, 503 if not available."""
    return _from_state(request, "job_service", "Job service")


def get_progress_store(request: Request) -> ProgressStore:
    return _from_state(request, "progress_store", "Progress store")


def get_drive_service(request: Request) -> GoogleDriveService:
    return _from_state(request, "drive_service", "Google Drive service")


def get_history_cleanup(request: Request) -> HistoryCleanup:
    return _from_state(request, "history_cleanup", "History cleanup")


def get_token_manager(request: Request) -> TokenManager:
    return _from_state(request, "token_manager", "Google token manager")
