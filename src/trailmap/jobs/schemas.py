"""Pydantic v2 schemas for pipeline jobs and their progress snapshots.

A job's step list is fixed when it is created: both pipeline kinds have nine
steps, only the names differ. Status moves pending -> processing -> terminal.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Enums ────────────────────────────────────────────────────────────────────


class JobKind(str, Enum):
    """Which pipeline a job runs."""

    REPORT = "report"
    ACTION_ITEMS = "actionItems"


class JobStatus(str, Enum):
    """Lifecycle status of a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


# ── Step Catalogue ───────────────────────────────────────────────────────────

REPORT_STEPS: tuple[str, ...] = (
    "Fetching transcript",
    "Generating business overview",
    "Generating project brief",
    "Generating marketing plan",
    "Generating project resources",
    "Generating HTML document",
    "Creating Google Doc",
    "Creating Google Slides",
    "Saving to database",
)

ACTION_ITEMS_STEPS: tuple[str, ...] = (
    "Fetching transcript from MeetGeek",
    "Generating meeting summary and extracting action items",
    "Consolidating action items",
    "Mapping tasks to transcript",
    "Refining action items",
    "Final consolidation with subtasks",
    "Generating HTML content",
    "Creating Google Doc",
    "Saving to database",
)

STEPS_BY_KIND: dict[JobKind, tuple[str, ...]] = {
    JobKind.REPORT: REPORT_STEPS,
    JobKind.ACTION_ITEMS: ACTION_ITEMS_STEPS,
}


# ── Job Models ───────────────────────────────────────────────────────────────


class StepState(BaseModel):
    """One named unit of pipeline work and whether it has finished."""

    name: str
    completed: bool = False


class Job(BaseModel):
    """Mutable job record held by a progress store."""

    id: str
    kind: JobKind
    status: JobStatus = JobStatus.PENDING
    steps: list[StepState]
    current_step: int = 0
    error: str | None = None
    result: dict[str, Any] | None = None
    started_at: datetime

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def completed_steps(self) -> int:
        return sum(1 for s in self.steps if s.completed)

    @property
    def percentage(self) -> int:
        if not self.steps:
            return 0
        return round(100 * self.completed_steps / self.total_steps)

    def snapshot(self) -> JobSnapshot:
        """Detached copy plus derived percentage, safe to hand to pollers."""
        return JobSnapshot(
            **self.model_dump(),
            total_steps=self.total_steps,
            percentage=self.percentage,
        )


class JobSnapshot(BaseModel):
    """Read-only view of a job returned to pollers, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    kind: JobKind
    status: JobStatus
    steps: list[StepState]
    current_step: int
    total_steps: int
    percentage: int = Field(ge=0, le=100)
    error: str | None = None
    result: dict[str, Any] | None = None
    started_at: datetime


# Steps whose failure degrades the result instead of failing the job
OPTIONAL_STEPS_BY_KIND: dict[JobKind, frozenset[int]] = {
    JobKind.REPORT: frozenset({6, 7}),
    JobKind.ACTION_ITEMS: frozenset(),
}
