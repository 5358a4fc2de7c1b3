"""Google Drive helpers: list, inspect, copy and delete generated files."""

from __future__ import annotations

import re
from typing import Any

import structlog

from src.trailmap.errors import UpstreamError
from src.trailmap.google.auth import GoogleServiceFactory, execute

logger = structlog.get_logger(__name__)

SERVICE_NAME = "google_drive"

_URL_PATTERNS = (
    re.compile(r"/document/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"/presentation/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"/file/d/([a-zA-Z0-9_-]+)"),
)
_BARE_ID = re.compile(r"^[a-zA-Z0-9_-]+$")


def extract_file_id_from_url(url: str | None) -> str | None:
    """File id from a Docs / Slides / Drive URL, or the input if it already is one."""
    if not url:
        return None
    for pattern in _URL_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    if _BARE_ID.match(url):
        return url
    return None


class GoogleDriveService:
    """Thin async wrapper over the Drive v3 files resource."""

    FILE_FIELDS = "id, name, createdTime, webViewLink, mimeType"

    def __init__(self, services: GoogleServiceFactory) -> None:
        self._services = services

    async def list_files(self, folder_id: str) -> list[dict[str, Any]]:
        """Files directly inside ``folder_id``, newest first."""
        drive = await self._services.drive()
        response = await execute(
            drive.files().list(
                q=f"'{folder_id}' in parents and trashed = false",
                fields=f"files({self.FILE_FIELDS})",
                orderBy="createdTime desc",
            ),
            SERVICE_NAME,
        )
        return response.get("files", [])

    async def get_file(self, file_id: str) -> dict[str, Any]:
        drive = await self._services.drive()
        return await execute(
            drive.files().get(fileId=file_id, fields=f"{self.FILE_FIELDS}, size"),
            SERVICE_NAME,
        )

    async def folder_accessible(self, folder_id: str) -> bool:
        try:
            await self.get_file(folder_id)
        except UpstreamError as exc:
            logger.warning(
                "google_drive.folder_not_accessible",
                folder_id=folder_id,
                error=str(exc),
            )
            return False
        return True

    async def copy_file(
        self,
        file_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> str:
        """Copy a file, optionally into ``parent_id``. Returns the new id."""
        drive = await self._services.drive()
        body: dict[str, Any] = {"name": name}
        if parent_id:
            body["parents"] = [parent_id]
        copied = await execute(
            drive.files().copy(fileId=file_id, body=body, fields="id"),
            SERVICE_NAME,
        )
        logger.info("google_drive.copied", source_id=file_id, file_id=copied.get("id"))
        return copied["id"]

    async def delete_file(self, file_id: str) -> None:
        drive = await self._services.drive()
        await execute(drive.files().delete(fileId=file_id), SERVICE_NAME)
        logger.info("google_drive.deleted", file_id=file_id)
