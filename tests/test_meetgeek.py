"""Tests for the MeetGeek transcript client.

All HTTP traffic goes through httpx.MockTransport; the retry sleep is
replaced by a recorder so backoff delays are asserted without waiting.
"""

from __future__ import annotations

import httpx
import pytest

from src.trailmap.errors import UpstreamError, UpstreamRateLimited, ValidationError
from src.trailmap.transcripts.meetgeek import (
    MeetGeekClient,
    TranscriptSegment,
    extract_meeting_id,
    merge_speaker_turns,
)


# ── Fixtures ─────────────────────────────────────────────────────────────────


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeps():
    return SleepRecorder()


def make_client(handler, sleeps) -> MeetGeekClient:
    return MeetGeekClient(
        "test-key",
        base_url="https://meetgeek.test/v1",
        sleep=sleeps,
        transport=httpx.MockTransport(handler),
    )


# ── Link parsing ─────────────────────────────────────────────────────────────


class TestExtractMeetingId:
    def test_last_path_segment(self):
        assert extract_meeting_id("https://app.meetgeek.ai/meeting/abc-123") == "abc-123"

    def test_trailing_slash_and_query_ignored(self):
        assert extract_meeting_id("https://app.meetgeek.ai/meeting/abc-123/?tab=1") == "abc-123"

    def test_empty_link_rejected(self):
        with pytest.raises(ValidationError):
            extract_meeting_id("")


# ── Speaker merge ────────────────────────────────────────────────────────────


class TestMergeSpeakerTurns:
    def test_consecutive_speaker_collapsed(self):
        segments = [
            TranscriptSegment(speaker="A", transcript="hi"),
            TranscriptSegment(speaker="A", transcript="there"),
            TranscriptSegment(speaker="B", transcript="hello"),
        ]
        assert merge_speaker_turns(segments) == "A:\nhi there\n\nB:\nhello"

    def test_speaker_label_repeats_after_change(self):
        segments = [
            TranscriptSegment(speaker="A", transcript="one"),
            TranscriptSegment(speaker="B", transcript="two"),
            TranscriptSegment(speaker="A", transcript="three"),
        ]
        assert merge_speaker_turns(segments) == "A:\none\n\nB:\ntwo\n\nA:\nthree"

    def test_empty_segments_do_not_break_run(self):
        segments = [
            TranscriptSegment(speaker="A", transcript="one"),
            TranscriptSegment(speaker="B", transcript="  "),
            TranscriptSegment(speaker="A", transcript="two"),
        ]
        assert merge_speaker_turns(segments) == "A:\none two"

    def test_no_segments(self):
        assert merge_speaker_turns([]) == ""


# ── Backoff ──────────────────────────────────────────────────────────────────


class TestRateLimitBackoff:
    @pytest.mark.asyncio
    async def test_two_429s_then_success_takes_three_attempts(self, sleeps):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if len(calls) <= 2:
                return httpx.Response(429)
            return httpx.Response(200, json={"title": "Kickoff"})

        client = make_client(handler, sleeps)
        meeting = await client.get_meeting("m1")

        assert meeting == {"title": "Kickoff"}
        assert len(calls) == 3
        assert sleeps.delays == [1, 2]

    @pytest.mark.asyncio
    async def test_429_exhausts_budget(self, sleeps):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(429)

        client = make_client(handler, sleeps)
        with pytest.raises(UpstreamRateLimited):
            await client.get_meeting("m1")

        assert len(calls) == 3
        assert len(sleeps.delays) == 2

    @pytest.mark.asyncio
    async def test_non_429_error_not_retried(self, sleeps):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        client = make_client(handler, sleeps)
        with pytest.raises(UpstreamError) as exc_info:
            await client.get_meeting("m1")

        assert not isinstance(exc_info.value, UpstreamRateLimited)
        assert exc_info.value.status_code == 500
        assert len(calls) == 1
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self, sleeps):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={})

        await make_client(handler, sleeps).get_meeting("m1")
        assert seen["auth"] == "Bearer test-key"


# ── Pagination + aggregation ─────────────────────────────────────────────────


class TestFetchTranscript:
    @pytest.mark.asyncio
    async def test_follows_cursor_until_absent(self, sleeps):
        cursors = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/transcript"):
                cursor = request.url.params.get("cursor")
                cursors.append(cursor)
                if cursor is None:
                    return httpx.Response(200, json={
                        "sentences": [{"speaker": "A", "transcript": "hi"}],
                        "pagination": {"next_cursor": "p2"},
                    })
                return httpx.Response(200, json={
                    "sentences": [{"speaker": "A", "transcript": "again"}],
                    "pagination": {},
                })
            return httpx.Response(200, json={"title": "Weekly"})

        segments = await make_client(handler, sleeps).get_transcript_segments("m1")

        assert cursors == [None, "p2"]
        assert [s.transcript for s in segments] == ["hi", "again"]

    @pytest.mark.asyncio
    async def test_rate_limit_budget_is_per_page(self, sleeps):
        state = {"page2_calls": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("cursor") == "p2":
                state["page2_calls"] += 1
                if state["page2_calls"] <= 2:
                    return httpx.Response(429)
                return httpx.Response(200, json={"sentences": []})
            return httpx.Response(200, json={
                "sentences": [{"speaker": "A", "transcript": "hi"}],
                "pagination": {"next_cursor": "p2"},
            })

        segments = await make_client(handler, sleeps).get_transcript_segments("m1")

        assert len(segments) == 1
        assert state["page2_calls"] == 3
        assert sleeps.delays == [1, 2]

    @pytest.mark.asyncio
    async def test_aggregates_title_and_merged_text(self, sleeps):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/transcript"):
                return httpx.Response(200, json={
                    "sentences": [
                        {"speaker": "Ann", "transcript": "Let's start."},
                        {"speaker": "Ann", "transcript": "Agenda first."},
                        {"speaker": "Bo", "transcript": "Sure."},
                    ],
                })
            return httpx.Response(200, json={"title": "Strategy Session"})

        fetched = await make_client(handler, sleeps).fetch_transcript(
            "https://app.meetgeek.ai/meeting/m42"
        )

        assert fetched.meeting_id == "m42"
        assert fetched.meeting_name == "Strategy Session"
        assert fetched.transcript == "Ann:\nLet's start. Agenda first.\n\nBo:\nSure."

    @pytest.mark.asyncio
    async def test_missing_title_uses_default(self, sleeps):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/transcript"):
                return httpx.Response(200, json={"sentences": []})
            return httpx.Response(200, json={})

        fetched = await make_client(handler, sleeps).fetch_transcript("https://x/meeting/m1")
        assert fetched.meeting_name == "Untitled Meeting"
        assert fetched.transcript == ""
