"""Meeting action-items endpoints: start a job, poll it, delete its result."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.trailmap.api.deps import get_history_cleanup, get_job_service, get_progress_store
from src.trailmap.api.v1.reports import poll_job
from src.trailmap.errors import ValidationError
from src.trailmap.jobs.progress import ProgressStore
from src.trailmap.jobs.schemas import JobKind, JobSnapshot
from src.trailmap.persistence.cleanup import DeletionReport, HistoryCleanup
from src.trailmap.pipelines.schemas import ActionItemsRequest, JobAccepted
from src.trailmap.pipelines.service import JobService

router = APIRouter(prefix="/api/v1/action-items", tags=["action-items"])


class ActionItemsDeleteRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    google_drive_link: str | None = None


@router.post("/generate", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def generate_action_items(
    body: ActionItemsRequest,
    jobs: JobService = Depends(get_job_service),
):
    try:
        job_id = await jobs.start_action_items(body)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return JobAccepted(message="Action items generation started", job_id=job_id)


@router.get("/progress/{job_id}", response_model=JobSnapshot)
async def action_items_progress(
    job_id: str,
    store: ProgressStore = Depends(get_progress_store),
):
    return await poll_job(store, job_id, JobKind.ACTION_ITEMS)


@router.delete("/{record_id}", response_model=DeletionReport)
async def delete_action_items(
    record_id: str,
    body: ActionItemsDeleteRequest | None = None,
    cleanup: HistoryCleanup = Depends(get_history_cleanup),
):
    body = body or ActionItemsDeleteRequest()
    report = await cleanup.delete_action_items(record_id, google_drive_link=body.google_drive_link)
    if report.failed:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="; ".join(report.errors),
        )
    return report
