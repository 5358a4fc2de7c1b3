"""Pydantic views of history rows."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class TrailmapRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    meeting_name: str
    meeting_link: str | None = None
    trailmap_link: str | None = None
    report_link: str | None = None
    created_at: datetime | None = None


class ActionItemsRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    meeting_name: str
    meetgeek_url: str | None = None
    google_drive_link: str | None = None
    html_content: str | None = None
    email: str | None = None
    created_at: datetime | None = None
