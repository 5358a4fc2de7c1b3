"""Request and result schemas for the two pipeline kinds.

Every model speaks the dashboard's camelCase on the wire (``meetingLink``,
``jobId``, ``reportLink``). Requests also accept the snake_case field names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.trailmap.errors import ValidationError


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _present(value: str | None) -> bool:
    return bool(value and value.strip())


class ReportRequest(_CamelModel):
    """Start a Digital Trailmap (strategy report + slide workbook) job."""

    meeting_link: str | None = None
    meeting_transcript: str | None = None
    meeting_title: str | None = None

    def require_source(self) -> None:
        """Raises ValidationError unless a link or a transcript was given."""
        if not _present(self.meeting_link) and not _present(self.meeting_transcript):
            raise ValidationError("Either meetingLink or meetingTranscript must be provided")


class ActionItemsRequest(_CamelModel):
    """Start a meeting action-items job."""

    meet_geek_url: str | None = None
    meeting_transcript: str | None = None
    meeting_title: str | None = None
    email: str | None = None

    def require_source(self) -> None:
        if not _present(self.meet_geek_url) and not _present(self.meeting_transcript):
            raise ValidationError("Either meetGeekUrl or meetingTranscript must be provided")


class ReportResult(_CamelModel):
    meeting_name: str
    trailmap_link: str | None = None
    report_link: str | None = None
    record_id: str | None = None


class ActionItemsResult(_CamelModel):
    meeting_name: str
    google_drive_link: str
    html_content: str
    record_id: str | None = None


class JobAccepted(_CamelModel):
    """Response to a generate request: the job runs detached."""

    success: bool = True
    message: str
    job_id: str
