"""Work queue + worker pool that executes submitted pipeline coroutines.

submit() enqueues and returns immediately, which gives the API its
fire-and-forget semantics while keeping every running job owned by a worker
task the application can wait on or stop at shutdown.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

JobFactory = Callable[[], Awaitable[object]]


@dataclass
class _WorkItem:
    job_id: str
    factory: JobFactory


class JobRunner:
    """Bounded pool of asyncio workers draining a FIFO job queue.

    The coroutine is created lazily by the worker (``factory()``) so that a
    queued-but-not-started job holds no open resources.

    Args:
        workers: Number of jobs allowed to execute concurrently.
    """

    def __init__(self, workers: int = 4) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._worker_count = workers
        self._queue: asyncio.Queue[_WorkItem | None] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._active: set[str] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def active_jobs(self) -> frozenset[str]:
        return frozenset(self._active)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"job_worker_{i}")
            for i in range(self._worker_count)
        ]
        logger.info("job_runner.started", workers=self._worker_count)

    def submit(self, job_id: str, factory: JobFactory) -> None:
        """Enqueue a job. Never blocks and never raises for job failures."""
        if not self._workers:
            raise RuntimeError("JobRunner.start() has not been called")
        self._queue.put_nowait(_WorkItem(job_id=job_id, factory=factory))
        logger.debug("job_runner.submitted", job_id=job_id, queued=self._queue.qsize())

    async def join(self) -> None:
        """Wait until every submitted job has finished."""
        await self._queue.join()

    async def shutdown(self, drain: bool = True) -> None:
        """Stop the workers.

        Args:
            drain: Let queued and running jobs finish first. When False the
                workers are cancelled immediately.
        """
        if not self._workers:
            return
        if drain:
            for _ in self._workers:
                self._queue.put_nowait(None)
            await asyncio.gather(*self._workers, return_exceptions=True)
        else:
            for task in self._workers:
                task.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("job_runner.stopped", drained=drain)

    async def _worker(self, worker_id: int) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                self._active.add(item.job_id)
                try:
                    await item.factory()
                except Exception:
                    # Pipelines record their own failure in the progress store;
                    # anything reaching here escaped that handling.
                    logger.error(
                        "job_runner.job_crashed",
                        job_id=item.job_id,
                        worker_id=worker_id,
                        exc_info=True,
                    )
                finally:
                    self._active.discard(item.job_id)
            finally:
                self._queue.task_done()
