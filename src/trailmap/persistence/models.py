"""History tables for generated artifacts.

Two SQLAlchemy models, one per pipeline kind:
- DigitalTrailmapModel: strategy report + slide workbook links
- ActionItemRecordModel: action-items doc link and rendered HTML

Rows are keyed by the job id that produced them, so persisting the same job
twice updates the row instead of duplicating it.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.trailmap.core.database import Base


class DigitalTrailmapModel(Base):
    """A generated Digital Trailmap (report Doc + Slides workbook)."""

    __tablename__ = "digital_trailmaps"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    meeting_name: Mapped[str] = mapped_column(String(500), nullable=False)
    meeting_link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    trailmap_link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    report_link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class ActionItemRecordModel(Base):
    """A generated meeting action-items document."""

    __tablename__ = "meeting_action_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    meeting_name: Mapped[str] = mapped_column(String(500), nullable=False)
    meetgeek_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    google_drive_link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    html_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
