"""History repository -- async upsert/get/delete for generated artifacts.

Uses the session_factory callable pattern: every method opens its own
session by iterating the factory. SQLAlchemy failures are re-raised as
PersistenceError so callers handle one exception type.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.trailmap.errors import PersistenceError
from src.trailmap.persistence.models import ActionItemRecordModel, DigitalTrailmapModel
from src.trailmap.persistence.schemas import ActionItemsRecord, TrailmapRecord

logger = structlog.get_logger(__name__)


def _parse_id(record_id: str | uuid.UUID) -> uuid.UUID:
    if isinstance(record_id, uuid.UUID):
        return record_id
    try:
        return uuid.UUID(record_id)
    except ValueError as exc:
        raise PersistenceError(f"Invalid record id: {record_id!r}") from exc


class HistoryRepository:
    """Async CRUD for the digital_trailmaps and meeting_action_items tables.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Trailmaps ────────────────────────────────────────────────────────

    async def save_trailmap(
        self,
        record_id: str | uuid.UUID,
        meeting_name: str,
        meeting_link: str | None,
        trailmap_link: str | None,
        report_link: str | None,
    ) -> TrailmapRecord:
        """Insert or update the trailmap row with the given id."""
        try:
            async for session in self._session_factory():
                model = await session.merge(DigitalTrailmapModel(
                    id=_parse_id(record_id),
                    meeting_name=meeting_name,
                    meeting_link=meeting_link,
                    trailmap_link=trailmap_link,
                    report_link=report_link,
                ))
                await session.commit()
                await session.refresh(model)
                return TrailmapRecord.model_validate(model)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save trailmap: {exc}") from exc
        raise PersistenceError("Session factory yielded no session")

    async def get_trailmap(self, record_id: str | uuid.UUID) -> TrailmapRecord | None:
        try:
            async for session in self._session_factory():
                result = await session.execute(
                    select(DigitalTrailmapModel).where(
                        DigitalTrailmapModel.id == _parse_id(record_id)
                    )
                )
                model = result.scalar_one_or_none()
                return TrailmapRecord.model_validate(model) if model else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load trailmap: {exc}") from exc
        return None

    async def delete_trailmap(self, record_id: str | uuid.UUID) -> bool:
        """Delete by id. Returns False when no row matched."""
        try:
            async for session in self._session_factory():
                result = await session.execute(
                    delete(DigitalTrailmapModel).where(
                        DigitalTrailmapModel.id == _parse_id(record_id)
                    )
                )
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete trailmap: {exc}") from exc
        return False

    # ── Action items ─────────────────────────────────────────────────────

    async def save_action_items(
        self,
        record_id: str | uuid.UUID,
        meeting_name: str,
        meetgeek_url: str | None,
        google_drive_link: str | None,
        html_content: str | None,
        email: str | None = None,
    ) -> ActionItemsRecord:
        """Insert or update the action-items row with the given id."""
        try:
            async for session in self._session_factory():
                model = await session.merge(ActionItemRecordModel(
                    id=_parse_id(record_id),
                    meeting_name=meeting_name,
                    meetgeek_url=meetgeek_url,
                    google_drive_link=google_drive_link,
                    html_content=html_content,
                    email=email,
                ))
                await session.commit()
                await session.refresh(model)
                return ActionItemsRecord.model_validate(model)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save action items: {exc}") from exc
        raise PersistenceError("Session factory yielded no session")

    async def get_action_items(self, record_id: str | uuid.UUID) -> ActionItemsRecord | None:
        try:
            async for session in self._session_factory():
                result = await session.execute(
                    select(ActionItemRecordModel).where(
                        ActionItemRecordModel.id == _parse_id(record_id)
                    )
                )
                model = result.scalar_one_or_none()
                return ActionItemsRecord.model_validate(model) if model else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load action items: {exc}") from exc
        return None

    async def delete_action_items(self, record_id: str | uuid.UUID) -> bool:
        """Delete by id. Returns False when no row matched."""
        try:
            async for session in self._session_factory():
                result = await session.execute(
                    delete(ActionItemRecordModel).where(
                        ActionItemRecordModel.id == _parse_id(record_id)
                    )
                )
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete action items: {exc}") from exc
        return False
