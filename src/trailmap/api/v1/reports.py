"""Digital Trailmap endpoints: start a report job, poll it, list and delete results.

POST /trailmap/generate returns as soon as the job is registered; the client
then polls /trailmap/progress/{job_id} until the status is completed or
failed.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

import structlog

from src.trailmap.api.deps import (
    get_drive_service,
    get_history_cleanup,
    get_job_service,
    get_progress_store,
)
from src.trailmap.config import get_settings
from src.trailmap.errors import AuthError, UpstreamError, ValidationError
from src.trailmap.google.drive import GoogleDriveService
from src.trailmap.jobs.progress import ProgressStore
from src.trailmap.jobs.schemas import JobKind, JobSnapshot
from src.trailmap.persistence.cleanup import DeletionReport, HistoryCleanup
from src.trailmap.pipelines.schemas import JobAccepted, ReportRequest
from src.trailmap.pipelines.service import JobService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["trailmap"])


class TrailmapDeleteRequest(BaseModel):
    """Links to remove from Drive; looked up from the stored record when omitted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    trailmap_link: str | None = None
    report_link: str | None = None


async def poll_job(store: ProgressStore, job_id: str, kind: JobKind) -> JobSnapshot:
    """Shared by both pipeline routers: 404 for unknown, evicted or other-kind ids."""
    snapshot = await store.get(job_id)
    if snapshot is None or snapshot.kind != kind:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return snapshot


@router.post(
    "/trailmap/generate",
    response_model=JobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def generate_trailmap(
    body: ReportRequest,
    jobs: JobService = Depends(get_job_service),
):
    try:
        job_id = await jobs.start_report(body)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return JobAccepted(message="Trailmap generation started", job_id=job_id)


@router.get("/trailmap/progress/{job_id}", response_model=JobSnapshot)
async def trailmap_progress(
    job_id: str,
    store: ProgressStore = Depends(get_progress_store),
):
    return await poll_job(store, job_id, JobKind.REPORT)


@router.get("/trailmaps/list")
async def list_trailmaps(
    folder_id: str | None = Query(None, alias="folderId"),
    drive: GoogleDriveService = Depends(get_drive_service),
):
    """Files in the trailmap Drive folder, newest first."""
    folder_id = folder_id or get_settings().GOOGLE_DRIVE_TRAILMAP_FOLDER_ID
    if not folder_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="folderId is required when GOOGLE_DRIVE_TRAILMAP_FOLDER_ID is not set",
        )
    try:
        files = await drive.list_files(folder_id)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    except UpstreamError as exc:
        logger.warning("trailmaps.list_failed", folder_id=folder_id, error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return {"success": True, "files": files}


@router.delete("/trailmaps/{record_id}", response_model=DeletionReport)
async def delete_trailmap(
    record_id: str,
    body: TrailmapDeleteRequest | None = None,
    cleanup: HistoryCleanup = Depends(get_history_cleanup),
):
    """Delete the history row and its Drive files. 500 only if every file delete failed."""
    body = body or TrailmapDeleteRequest()
    report = await cleanup.delete_trailmap(
        record_id,
        trailmap_link=body.trailmap_link,
        report_link=body.report_link,
    )
    if report.failed:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="; ".join(report.errors),
        )
    return report
