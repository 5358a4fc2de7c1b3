"""Tests for the history repository and artifact cleanup.

The repository is driven through a fake session factory so no database is
needed; SQLAlchemy errors are injected on the mocked session.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.trailmap.errors import PersistenceError, UpstreamError
from src.trailmap.persistence.cleanup import DeletionReport, HistoryCleanup
from src.trailmap.persistence.models import ActionItemRecordModel, DigitalTrailmapModel
from src.trailmap.persistence.repository import HistoryRepository
from src.trailmap.persistence.schemas import ActionItemsRecord, TrailmapRecord

RECORD_ID = uuid.uuid4()
CREATED = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def make_session() -> MagicMock:
    session = MagicMock()
    session.merge = AsyncMock(side_effect=lambda model: model)
    session.commit = AsyncMock()

    async def refresh(model):
        model.created_at = CREATED

    session.refresh = AsyncMock(side_effect=refresh)
    session.execute = AsyncMock()
    return session


def factory_for(session):
    async def session_factory():
        yield session

    return session_factory


@pytest.fixture
def session():
    return make_session()


@pytest.fixture
def repo(session):
    return HistoryRepository(factory_for(session))


# ── Repository ───────────────────────────────────────────────────────────────


class TestHistoryRepository:
    @pytest.mark.asyncio
    async def test_save_trailmap_merges_by_job_id(self, repo, session):
        record = await repo.save_trailmap(
            str(RECORD_ID),
            meeting_name="Kickoff",
            meeting_link="https://app.meetgeek.ai/meeting/m1",
            trailmap_link="https://docs.google.com/presentation/d/deck",
            report_link=None,
        )

        merged = session.merge.await_args.args[0]
        assert isinstance(merged, DigitalTrailmapModel)
        assert merged.id == RECORD_ID
        session.commit.assert_awaited_once()
        assert isinstance(record, TrailmapRecord)
        assert record.id == RECORD_ID
        assert record.report_link is None
        assert record.created_at == CREATED

    @pytest.mark.asyncio
    async def test_save_action_items_keeps_email(self, repo, session):
        record = await repo.save_action_items(
            RECORD_ID,
            meeting_name="Sync",
            meetgeek_url=None,
            google_drive_link="https://docs.google.com/document/d/doc",
            html_content="<h2>Action Items</h2>",
            email="pm@example.com",
        )

        assert isinstance(session.merge.await_args.args[0], ActionItemRecordModel)
        assert isinstance(record, ActionItemsRecord)
        assert record.email == "pm@example.com"
        assert record.html_content == "<h2>Action Items</h2>"

    @pytest.mark.asyncio
    async def test_sqlalchemy_error_becomes_persistence_error(self, repo, session):
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("connection refused"))

        with pytest.raises(PersistenceError, match="Failed to save trailmap"):
            await repo.save_trailmap(RECORD_ID, "M", None, None, None)

    @pytest.mark.asyncio
    async def test_invalid_id_rejected(self, repo, session):
        with pytest.raises(PersistenceError, match="Invalid record id"):
            await repo.delete_trailmap("not-a-uuid")
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, repo, session):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        session.execute.return_value = result

        assert await repo.get_trailmap(RECORD_ID) is None

    @pytest.mark.asyncio
    async def test_get_existing_validates_model(self, repo, session):
        model = ActionItemRecordModel(
            id=RECORD_ID,
            meeting_name="Sync",
            google_drive_link="https://docs.google.com/document/d/doc",
        )
        result = MagicMock()
        result.scalar_one_or_none.return_value = model
        session.execute.return_value = result

        record = await repo.get_action_items(str(RECORD_ID))

        assert record.google_drive_link == "https://docs.google.com/document/d/doc"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rowcount,expected", [(1, True), (0, False)])
    async def test_delete_reports_whether_row_matched(self, repo, session, rowcount, expected):
        session.execute.return_value = MagicMock(rowcount=rowcount)

        assert await repo.delete_action_items(RECORD_ID) is expected
        session.commit.assert_awaited_once()


# ── Cleanup ──────────────────────────────────────────────────────────────────


@pytest.fixture
def history():
    history = MagicMock(spec=HistoryRepository)
    history.get_trailmap = AsyncMock(return_value=TrailmapRecord(
        id=RECORD_ID,
        meeting_name="Kickoff",
        trailmap_link="https://docs.google.com/presentation/d/deck-1/edit",
        report_link="https://docs.google.com/document/d/doc-1/edit",
    ))
    history.delete_trailmap = AsyncMock(return_value=True)
    history.get_action_items = AsyncMock(return_value=None)
    history.delete_action_items = AsyncMock(return_value=True)
    return history


@pytest.fixture
def drive():
    drive = MagicMock()
    drive.delete_file = AsyncMock()
    return drive


class TestHistoryCleanup:
    @pytest.mark.asyncio
    async def test_links_taken_from_record_when_omitted(self, history, drive):
        report = await HistoryCleanup(history, drive).delete_trailmap(str(RECORD_ID))

        assert report.record_deleted
        assert report.deleted_files == ["trailmap", "report"]
        assert [c.args[0] for c in drive.delete_file.await_args_list] == ["deck-1", "doc-1"]
        assert not report.failed

    @pytest.mark.asyncio
    async def test_request_links_win_over_record(self, history, drive):
        await HistoryCleanup(history, drive).delete_trailmap(
            str(RECORD_ID),
            trailmap_link="https://docs.google.com/presentation/d/other/edit",
        )

        history.get_trailmap.assert_not_awaited()
        drive.delete_file.assert_awaited_once_with("other")

    @pytest.mark.asyncio
    async def test_record_failure_still_deletes_files(self, history, drive):
        history.delete_action_items.side_effect = PersistenceError("db down")

        report = await HistoryCleanup(history, drive).delete_action_items(
            str(RECORD_ID),
            google_drive_link="https://docs.google.com/document/d/doc-9/edit",
        )

        assert not report.record_deleted
        assert report.deleted_files == ["document"]
        drive.delete_file.assert_awaited_once_with("doc-9")

    @pytest.mark.asyncio
    async def test_drive_failure_collected(self, history, drive):
        drive.delete_file.side_effect = UpstreamError("google_drive", "File not found", status_code=404)

        report = await HistoryCleanup(history, drive).delete_trailmap(str(RECORD_ID))

        assert report.record_deleted
        assert len(report.errors) == 2
        assert report.errors[0].startswith("Failed to delete trailmap")
        assert report.failed

    @pytest.mark.asyncio
    async def test_no_links_is_not_a_failure(self, history, drive):
        report = await HistoryCleanup(history, drive).delete_action_items(str(RECORD_ID))

        drive.delete_file.assert_not_awaited()
        assert report == DeletionReport(record_deleted=True)
        assert not report.failed
