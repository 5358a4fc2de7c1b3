"""Job creation: validate, register in the progress store, submit, return.

Callers get the job id back immediately. Only ValidationError is raised
here; everything after submission is reported through the progress store.
"""

from __future__ import annotations

import functools
import uuid

import structlog

from src.trailmap.jobs.progress import ProgressStore
from src.trailmap.jobs.runner import JobRunner
from src.trailmap.jobs.schemas import JobKind
from src.trailmap.pipelines.orchestrator import Orchestrator
from src.trailmap.pipelines.schemas import ActionItemsRequest, ReportRequest

logger = structlog.get_logger(__name__)


class JobService:
    """Starts report and action-items jobs without waiting for them."""

    def __init__(
        self,
        store: ProgressStore,
        runner: JobRunner,
        orchestrator: Orchestrator,
    ) -> None:
        self._store = store
        self._runner = runner
        self._orchestrator = orchestrator

    async def _start(self, kind: JobKind, factory) -> str:
        job_id = str(uuid.uuid4())
        await self._store.init(job_id, kind)
        self._runner.submit(job_id, functools.partial(factory, job_id))
        logger.info("job.submitted", job_id=job_id, kind=kind.value)
        return job_id

    async def start_report(self, request: ReportRequest) -> str:
        """Raises ValidationError when neither link nor transcript is given."""
        request.require_source()
        return await self._start(
            JobKind.REPORT,
            functools.partial(self._orchestrator.run_report, request=request),
        )

    async def start_action_items(self, request: ActionItemsRequest) -> str:
        """Raises ValidationError when neither link nor transcript is given."""
        request.require_source()
        return await self._start(
            JobKind.ACTION_ITEMS,
            functools.partial(self._orchestrator.run_action_items, request=request),
        )
