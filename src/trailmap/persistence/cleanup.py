"""Deleting a generated artifact: its history row, then its Drive files.

The row is removed first and a failure there is tolerated, so files can
still be cleaned up when the database is unavailable. Drive links are taken
from the request, or from the stored row when the request omits them.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

from src.trailmap.errors import PersistenceError, TrailmapError
from src.trailmap.google.drive import GoogleDriveService, extract_file_id_from_url
from src.trailmap.persistence.repository import HistoryRepository

logger = structlog.get_logger(__name__)


class DeletionReport(BaseModel):
    record_deleted: bool = False
    deleted_files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        """Every attempted file deletion failed."""
        return bool(self.errors) and not self.deleted_files


class HistoryCleanup:
    def __init__(self, history: HistoryRepository, drive: GoogleDriveService) -> None:
        self._history = history
        self._drive = drive

    async def _delete_link(self, label: str, link: str | None, report: DeletionReport) -> None:
        file_id = extract_file_id_from_url(link)
        if not file_id:
            return
        try:
            await self._drive.delete_file(file_id)
        except TrailmapError as exc:
            report.errors.append(f"Failed to delete {label}: {exc}")
            logger.warning("history.drive_delete_failed", label=label, file_id=file_id, error=str(exc))
        else:
            report.deleted_files.append(label)

    async def delete_trailmap(
        self,
        record_id: str,
        trailmap_link: str | None = None,
        report_link: str | None = None,
    ) -> DeletionReport:
        report = DeletionReport()
        try:
            if not (trailmap_link or report_link):
                record = await self._history.get_trailmap(record_id)
                if record is not None:
                    trailmap_link, report_link = record.trailmap_link, record.report_link
            report.record_deleted = await self._history.delete_trailmap(record_id)
        except PersistenceError as exc:
            logger.warning("history.record_delete_failed", record_id=record_id, error=str(exc))

        await self._delete_link("trailmap", trailmap_link, report)
        await self._delete_link("report", report_link, report)
        return report

    async def delete_action_items(
        self,
        record_id: str,
        google_drive_link: str | None = None,
    ) -> DeletionReport:
        report = DeletionReport()
        try:
            if not google_drive_link:
                record = await self._history.get_action_items(record_id)
                if record is not None:
                    google_drive_link = record.google_drive_link
            report.record_deleted = await self._history.delete_action_items(record_id)
        except PersistenceError as exc:
            logger.warning("history.record_delete_failed", record_id=record_id, error=str(exc))

        await self._delete_link("document", google_drive_link, report)
        return report
