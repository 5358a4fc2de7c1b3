"""Keyed progress store polled by clients while a job runs.

ProgressStore is the injected interface (init / update / set_status / get /
sweep). Two implementations:

- InMemoryProgressStore: process-wide dict, one lock per job record. The
  orchestrator's parallel branches and poll readers touch the same record,
  and sync FastAPI handlers may read from the threadpool, so each record is
  guarded by its own threading.Lock. No method awaits while holding a lock.
- RedisProgressStore: JSON documents in Redis with a TTL equal to the job
  lifetime, for deployments running more than one API instance.

"Unknown id" is a normal outcome everywhere: mutators return False and get()
returns None. Nothing here raises for a missing or evicted job.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog

from src.trailmap.jobs.schemas import (
    ALLOWED_TRANSITIONS,
    STEPS_BY_KIND,
    Job,
    JobKind,
    JobSnapshot,
    JobStatus,
    StepState,
)

logger = structlog.get_logger(__name__)

DEFAULT_JOB_TTL = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_job(job_id: str, kind: JobKind, started_at: datetime) -> Job:
    return Job(
        id=job_id,
        kind=kind,
        steps=[StepState(name=name) for name in STEPS_BY_KIND[kind]],
        started_at=started_at,
    )


def _apply_update(job: Job, step_index: int, completed: bool) -> bool:
    if not 0 <= step_index < len(job.steps):
        logger.warning(
            "progress.step_out_of_range",
            job_id=job.id,
            step_index=step_index,
            total_steps=len(job.steps),
        )
        return False
    # completed=False only announces that a step is running; it never
    # clears a finished step, so percentage is monotonic
    if completed:
        job.steps[step_index].completed = True
        job.current_step = max(job.current_step, step_index + 1)
    return True


def _apply_status(
    job: Job,
    status: JobStatus,
    error: str | None,
    result: dict[str, Any] | None,
) -> bool:
    if status not in ALLOWED_TRANSITIONS[job.status]:
        logger.warning(
            "progress.invalid_status_transition",
            job_id=job.id,
            from_status=job.status.value,
            to_status=status.value,
        )
        return False
    job.status = status
    if error is not None:
        job.error = error
    if result is not None:
        job.result = result
    return True


# ── Interface ────────────────────────────────────────────────────────────────


class ProgressStore(ABC):
    """Keyed job-progress state machine."""

    @abstractmethod
    async def init(self, job_id: str, kind: JobKind) -> JobSnapshot:
        """Create the fixed step list for ``kind`` with status pending."""

    @abstractmethod
    async def update(self, job_id: str, step_index: int, completed: bool = True) -> bool:
        """Set one step's completed flag.

        ``completed=True`` advances current_step to at least step_index + 1.
        ``completed=False`` marks the step as running and never moves
        current_step backwards.
        """

    @abstractmethod
    async def set_status(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """Move the job along pending -> processing -> completed|failed."""

    @abstractmethod
    async def get(self, job_id: str) -> JobSnapshot | None:
        """Snapshot with derived percentage, or None for unknown/evicted ids."""

    @abstractmethod
    async def sweep(self) -> int:
        """Evict jobs older than the TTL. Returns the number evicted."""


# ── In-memory implementation ─────────────────────────────────────────────────


class _Record:
    __slots__ = ("job", "lock")

    def __init__(self, job: Job) -> None:
        self.job = job
        self.lock = threading.Lock()


class InMemoryProgressStore(ProgressStore):
    """Single-process progress store.

    Args:
        ttl: Age after which sweep() evicts a job.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_JOB_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._records: dict[str, _Record] = {}
        self._index_lock = threading.Lock()

    def _record(self, job_id: str) -> _Record | None:
        with self._index_lock:
            return self._records.get(job_id)

    async def init(self, job_id: str, kind: JobKind) -> JobSnapshot:
        record = _Record(_new_job(job_id, kind, self._clock()))
        with self._index_lock:
            self._records[job_id] = record
        logger.debug("progress.initialized", job_id=job_id, kind=kind.value)
        return record.job.snapshot()

    async def update(self, job_id: str, step_index: int, completed: bool = True) -> bool:
        record = self._record(job_id)
        if record is None:
            return False
        with record.lock:
            return _apply_update(record.job, step_index, completed)

    async def set_status(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        record = self._record(job_id)
        if record is None:
            return False
        with record.lock:
            return _apply_status(record.job, status, error, result)

    async def get(self, job_id: str) -> JobSnapshot | None:
        record = self._record(job_id)
        if record is None:
            return None
        with record.lock:
            return record.job.snapshot()

    async def sweep(self) -> int:
        cutoff = self._clock() - self._ttl
        with self._index_lock:
            expired = [
                job_id
                for job_id, record in self._records.items()
                if record.job.started_at < cutoff
            ]
            for job_id in expired:
                del self._records[job_id]
        if expired:
            logger.info("progress.swept", evicted=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._records)


# ── Redis implementation ─────────────────────────────────────────────────────


class RedisProgressStore(ProgressStore):
    """Progress store shared across API instances via Redis.

    Each job is one JSON string under ``progress:{job_id}`` written with a TTL,
    so Redis performs eviction and sweep() has nothing to do. Read-modify-write
    cycles run under a per-job Redis lock.

    Args:
        redis_client: redis.asyncio client created with decode_responses=True.
        ttl: Job lifetime; becomes the key expiry.
    """

    KEY_PREFIX = "progress"
    LOCK_TIMEOUT = 10.0

    def __init__(
        self,
        redis_client: aioredis.Redis,
        ttl: timedelta = DEFAULT_JOB_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._redis = redis_client
        self._ttl = ttl
        self._clock = clock

    def _key(self, job_id: str) -> str:
        return f"{self.KEY_PREFIX}:{job_id}"

    async def _load(self, job_id: str) -> Job | None:
        raw = await self._redis.get(self._key(job_id))
        if raw is None:
            return None
        return Job.model_validate_json(raw)

    async def _save(self, job: Job, *, keep_ttl: bool = True) -> None:
        payload = job.model_dump_json()
        if keep_ttl:
            await self._redis.set(self._key(job.id), payload, keepttl=True)
        else:
            await self._redis.set(
                self._key(job.id),
                payload,
                ex=int(self._ttl.total_seconds()),
            )

    async def init(self, job_id: str, kind: JobKind) -> JobSnapshot:
        job = _new_job(job_id, kind, self._clock())
        await self._save(job, keep_ttl=False)
        return job.snapshot()

    async def update(self, job_id: str, step_index: int, completed: bool = True) -> bool:
        async with self._redis.lock(f"{self._key(job_id)}:lock", timeout=self.LOCK_TIMEOUT):
            job = await self._load(job_id)
            if job is None or not _apply_update(job, step_index, completed):
                return False
            await self._save(job)
            return True

    async def set_status(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        async with self._redis.lock(f"{self._key(job_id)}:lock", timeout=self.LOCK_TIMEOUT):
            job = await self._load(job_id)
            if job is None or not _apply_status(job, status, error, result):
                return False
            await self._save(job)
            return True

    async def get(self, job_id: str) -> JobSnapshot | None:
        job = await self._load(job_id)
        return job.snapshot() if job is not None else None

    async def sweep(self) -> int:
        return 0


# ── Sweeper ──────────────────────────────────────────────────────────────────


def start_progress_sweeper(store: ProgressStore, interval_seconds: float) -> asyncio.Task:
    """Run store.sweep() every ``interval_seconds`` until cancelled."""

    async def _loop() -> None:
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await store.sweep()
            except asyncio.CancelledError:
                logger.info("progress.sweeper_cancelled")
                break
            except Exception:
                logger.warning("progress.sweep_failed", exc_info=True)

    return asyncio.create_task(_loop(), name="progress_sweeper")
