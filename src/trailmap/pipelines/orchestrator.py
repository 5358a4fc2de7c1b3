"""Stage orchestrator for the report and action-items pipelines.

A job moves pending -> processing -> completed | failed. Every step reports
"running" (update with completed=False) when it starts and "done" when it
finishes, so pollers watch the percentage climb.

- Step 0 acquires the transcript and finishes before anything else starts.
- Independent steps fan out; each branch marks its own step done as soon as
  it resolves, and the next dependent step waits on the whole group.
- A required step failing fails the job with the step's error message and
  cancels its sibling branches.
- Optional steps (declared per kind in OPTIONAL_STEPS_BY_KIND) log their
  error, yield None and still count as done.
- Persistence is attempted whenever the pipeline gets that far; its failure
  is logged and never fails the job.

Nothing here raises to the caller: run_report/run_action_items always end
with the outcome written into the progress store.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from src.trailmap.core.monitoring import record_job_finished, record_job_started, track_step
from src.trailmap.errors import StageError, ValidationError
from src.trailmap.generation.transforms import Transforms
from src.trailmap.google.docs import GoogleDocsService
from src.trailmap.google.slides import GoogleSlidesService
from src.trailmap.jobs.progress import ProgressStore
from src.trailmap.jobs.schemas import OPTIONAL_STEPS_BY_KIND, STEPS_BY_KIND, JobKind, JobStatus
from src.trailmap.persistence.repository import HistoryRepository
from src.trailmap.pipelines.schemas import (
    ActionItemsRequest,
    ActionItemsResult,
    ReportRequest,
    ReportResult,
)
from src.trailmap.transcripts.meetgeek import DEFAULT_MEETING_NAME, MeetGeekClient

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PERSIST_STEP = 8


async def fan_out(*aws: Awaitable[Any]) -> list[Any]:
    """Run awaitables concurrently; on the first failure cancel the rest."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass
class AcquiredTranscript:
    transcript: str
    meeting_name: str
    meeting_link: str


class StepRunner:
    """Runs one job's steps, reporting each boundary to the progress store."""

    def __init__(self, store: ProgressStore, job_id: str, kind: JobKind) -> None:
        self._store = store
        self._job_id = job_id
        self._kind = kind
        self._names = STEPS_BY_KIND[kind]
        self._optional = OPTIONAL_STEPS_BY_KIND[kind]

    def is_optional(self, index: int) -> bool:
        return index in self._optional

    async def run(self, index: int, fn: Callable[[], Awaitable[T]]) -> T | None:
        """Execute step ``index``.

        Raises:
            StageError: A required step failed.
        """
        name = self._names[index]
        await self._store.update(self._job_id, index, completed=False)
        try:
            async with track_step(self._kind.value, name):
                result = await fn()
        except Exception as exc:
            if not self.is_optional(index):
                raise StageError(index, name, exc) from exc
            logger.warning(
                "pipeline.optional_step_failed",
                job_id=self._job_id,
                step=name,
                error=str(exc),
                exc_info=True,
            )
            result = None

        await self._store.update(self._job_id, index, completed=True)
        logger.debug("pipeline.step_completed", job_id=self._job_id, step=name)
        return result


class Orchestrator:
    """Drives collaborators for both pipeline kinds.

    Args:
        store: Progress store the job was initialised in.
        fetcher: MeetGeek transcript client.
        transforms: Text-generation transforms.
        docs: Google Docs service.
        slides: Google Slides workbook service.
        history: Generation history repository.
        trailmap_folder_id: Drive folder for report artifacts.
        action_items_folder_id: Drive folder for action-items docs.
    """

    def __init__(
        self,
        store: ProgressStore,
        fetcher: MeetGeekClient,
        transforms: Transforms,
        docs: GoogleDocsService,
        slides: GoogleSlidesService,
        history: HistoryRepository,
        trailmap_folder_id: str | None = None,
        action_items_folder_id: str | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._transforms = transforms
        self._docs = docs
        self._slides = slides
        self._history = history
        self._trailmap_folder_id = trailmap_folder_id or None
        self._action_items_folder_id = action_items_folder_id or None

    # ── Shared steps ─────────────────────────────────────────────────────

    async def _acquire_transcript(
        self,
        link: str | None,
        transcript: str | None,
        title: str | None,
    ) -> AcquiredTranscript:
        """A supplied transcript wins; otherwise fetch it from the link."""
        meeting_name = title or DEFAULT_MEETING_NAME
        if transcript and transcript.strip():
            return AcquiredTranscript(
                transcript=transcript,
                meeting_name=meeting_name,
                meeting_link=link or "",
            )
        if not link:
            raise ValidationError("Transcript is required")

        fetched = await self._fetcher.fetch_transcript(link)
        if not fetched.transcript.strip():
            raise ValidationError("MeetGeek returned an empty transcript")
        return AcquiredTranscript(
            transcript=fetched.transcript,
            meeting_name=title or fetched.meeting_name,
            meeting_link=link,
        )

    async def _persist(self, steps: StepRunner, job_id: str, save: Callable[[], Awaitable[Any]]) -> str | None:
        """Final step; its failure is logged and swallowed."""

        async def _save() -> str | None:
            try:
                record = await save()
            except Exception:
                logger.error("pipeline.persist_failed", job_id=job_id, exc_info=True)
                return None
            return str(record.id)

        return await steps.run(PERSIST_STEP, _save)

    async def _execute(
        self,
        job_id: str,
        kind: JobKind,
        body: Callable[[StepRunner], Awaitable[dict[str, Any]]],
    ) -> None:
        steps = StepRunner(self._store, job_id, kind)
        await self._store.set_status(job_id, JobStatus.PROCESSING)
        record_job_started(kind.value)
        log = logger.bind(job_id=job_id, kind=kind.value)
        log.info("pipeline.started")

        try:
            result = await body(steps)
        except StageError as exc:
            log.error(
                "pipeline.failed",
                step=exc.step_name,
                error=str(exc.original_error),
                exc_info=True,
            )
            await self._store.set_status(job_id, JobStatus.FAILED, error=str(exc))
            record_job_finished(kind.value, JobStatus.FAILED.value)
            return
        except Exception as exc:
            log.error("pipeline.crashed", error=str(exc), exc_info=True)
            await self._store.set_status(job_id, JobStatus.FAILED, error=str(exc))
            record_job_finished(kind.value, JobStatus.FAILED.value)
            return

        await self._store.set_status(job_id, JobStatus.COMPLETED, result=result)
        record_job_finished(kind.value, JobStatus.COMPLETED.value)
        log.info("pipeline.completed")

    # ── Report pipeline ──────────────────────────────────────────────────

    async def run_report(self, job_id: str, request: ReportRequest) -> None:
        await self._execute(
            job_id,
            JobKind.REPORT,
            functools.partial(self._report_steps, job_id, request),
        )

    async def _report_steps(self, job_id: str, request: ReportRequest, steps: StepRunner) -> dict[str, Any]:
        t = self._transforms
        source = await steps.run(0, functools.partial(
            self._acquire_transcript,
            request.meeting_link,
            request.meeting_transcript,
            request.meeting_title,
        ))
        transcript = source.transcript

        overview, brief, plan, resources, html = await fan_out(
            steps.run(1, functools.partial(t.business_overview, transcript)),
            steps.run(2, functools.partial(t.project_brief, transcript)),
            steps.run(3, functools.partial(t.marketing_plan, transcript)),
            steps.run(4, functools.partial(t.project_resources, transcript)),
            steps.run(5, functools.partial(t.html_document, transcript)),
        )

        async def create_doc():
            return await self._docs.create_report_document(
                source.meeting_name,
                html,
                marketing_plan=plan,
                folder_id=self._trailmap_folder_id,
            )

        async def create_slides():
            content = await t.slides_content(overview, brief, plan)
            return await self._slides.create_workbook(
                source.meeting_name,
                resources,
                content,
                folder_id=self._trailmap_folder_id,
            )

        doc, deck = await fan_out(steps.run(6, create_doc), steps.run(7, create_slides))
        report_link = doc.document_url if doc else None
        trailmap_link = deck.presentation_url if deck else None

        record_id = await self._persist(steps, job_id, functools.partial(
            self._history.save_trailmap,
            job_id,
            meeting_name=source.meeting_name,
            meeting_link=source.meeting_link or None,
            trailmap_link=trailmap_link,
            report_link=report_link,
        ))

        return ReportResult(
            meeting_name=source.meeting_name,
            trailmap_link=trailmap_link,
            report_link=report_link,
            record_id=record_id,
        ).model_dump(by_alias=True)

    # ── Action-items pipeline ────────────────────────────────────────────

    async def run_action_items(self, job_id: str, request: ActionItemsRequest) -> None:
        await self._execute(
            job_id,
            JobKind.ACTION_ITEMS,
            functools.partial(self._action_items_steps, job_id, request),
        )

    async def _action_items_steps(
        self,
        job_id: str,
        request: ActionItemsRequest,
        steps: StepRunner,
    ) -> dict[str, Any]:
        t = self._transforms
        source = await steps.run(0, functools.partial(
            self._acquire_transcript,
            request.meet_geek_url,
            request.meeting_transcript,
            request.meeting_title,
        ))
        transcript, link = source.transcript, source.meeting_link

        summary, sentiment, first, second = await steps.run(1, lambda: fan_out(
            t.meeting_summary(transcript),
            t.sentiment(transcript),
            t.extract_action_items(transcript, link),
            t.extract_action_items(transcript, link),
        ))

        consolidated = await steps.run(2, functools.partial(t.consolidate_action_items, first, second))
        mapping = await steps.run(3, functools.partial(t.map_tasks, consolidated, transcript, link))
        refined = await steps.run(4, functools.partial(t.refine_action_items, mapping))
        final = await steps.run(5, functools.partial(t.final_consolidation, refined))
        html = await steps.run(6, functools.partial(
            t.action_items_html,
            source.meeting_name,
            summary,
            sentiment,
            final,
            link,
        ))

        doc = await steps.run(7, functools.partial(
            self._docs.create_action_items_document,
            source.meeting_name,
            html,
            folder_id=self._action_items_folder_id,
        ))

        record_id = await self._persist(steps, job_id, functools.partial(
            self._history.save_action_items,
            job_id,
            meeting_name=source.meeting_name,
            meetgeek_url=link or None,
            google_drive_link=doc.document_url,
            html_content=html,
            email=request.email,
        ))

        return ActionItemsResult(
            meeting_name=source.meeting_name,
            google_drive_link=doc.document_url,
            html_content=html,
            record_id=record_id,
        ).model_dump(by_alias=True)
