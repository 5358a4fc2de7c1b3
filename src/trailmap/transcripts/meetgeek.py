"""Async HTTP client for the MeetGeek transcript API with rate-limit backoff.

MeetGeekClient fetches meeting metadata and the paginated transcript for a
meeting link. Only 429 responses are retried (tenacity, 3 attempts total,
exponential 1s, 2s, ...); every other failure is raised immediately as
UpstreamError. The retry budget applies independently to each page.

merge_speaker_turns() collapses consecutive same-speaker sentences into one
paragraph and emits a speaker label only when the speaker changes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import httpx
import structlog
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.trailmap.errors import UpstreamError, UpstreamRateLimited, ValidationError

logger = structlog.get_logger(__name__)

SERVICE_NAME = "meetgeek"
MAX_ATTEMPTS = 3
DEFAULT_MEETING_NAME = "Untitled Meeting"


# ── Schemas ──────────────────────────────────────────────────────────────────


class TranscriptSegment(BaseModel):
    """One sentence of a MeetGeek transcript."""

    speaker: str | None = None
    transcript: str | None = ""


class FetchedTranscript(BaseModel):
    """Aggregated transcript ready for the transform stages."""

    meeting_id: str
    meeting_name: str
    transcript: str


# ── Helpers ──────────────────────────────────────────────────────────────────


def extract_meeting_id(link: str) -> str:
    """Return the last non-empty path segment of a MeetGeek link.

    Raises:
        ValidationError: If the link is empty or has no path segment.
    """
    if not link or not isinstance(link, str):
        raise ValidationError("Meeting link is missing or invalid")
    path = link.split("?", 1)[0].split("#", 1)[0]
    parts = [p for p in path.split("/") if p]
    if not parts:
        raise ValidationError(f"Could not extract a meeting id from {link!r}")
    return parts[-1]


def merge_speaker_turns(segments: Iterable[TranscriptSegment]) -> str:
    """Run-length merge of (speaker, text) pairs into speaker paragraphs.

    [(A, "hi"), (A, "there"), (B, "hello")] -> "A:\\nhi there\\n\\nB:\\nhello"
    Segments with empty text are skipped and do not break a run.
    """
    blocks: list[tuple[str | None, list[str]]] = []
    for segment in segments:
        text = (segment.transcript or "").strip()
        if not text:
            continue
        if blocks and blocks[-1][0] == segment.speaker:
            blocks[-1][1].append(text)
        else:
            blocks.append((segment.speaker, [text]))

    return "\n\n".join(
        f"{speaker}:\n{' '.join(texts)}" for speaker, texts in blocks
    )


def _log_before_sleep(retry_state: RetryCallState) -> None:
    logger.warning(
        "meetgeek.rate_limited_retrying",
        attempt=retry_state.attempt_number,
        sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
    )


# ── Client ───────────────────────────────────────────────────────────────────


class MeetGeekClient:
    """Async client for the MeetGeek REST API.

    Args:
        api_key: MeetGeek bearer token.
        base_url: API root, e.g. https://api.meetgeek.ai/v1.
        sleep: Awaitable sleep used between retries; injectable for tests.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    TIMEOUT_READ = 30.0

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.meetgeek.ai/v1",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._sleep = sleep
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self.TIMEOUT_READ,
            transport=self._transport,
        )

    async def _get_once(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Single GET, translating failures into the error taxonomy."""
        try:
            response = await client.get(f"{self._base_url}{path}", params=params)
        except httpx.HTTPError as exc:
            raise UpstreamError(SERVICE_NAME, f"request failed: {exc}") from exc

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise UpstreamRateLimited(
                SERVICE_NAME,
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.is_error:
            raise UpstreamError(
                SERVICE_NAME,
                f"GET {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    async def _get(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """GET with exponential backoff on rate limiting only."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_exponential(multiplier=1, exp_base=2),
            retry=retry_if_exception_type(UpstreamRateLimited),
            sleep=self._sleep,
            before_sleep=_log_before_sleep,
            reraise=True,
        ):
            with attempt:
                return await self._get_once(client, path, params)
        raise AssertionError("unreachable")  # pragma: no cover

    async def get_meeting(self, meeting_id: str) -> dict[str, Any]:
        """GET /meetings/{id} -- meeting metadata (title, timestamps, ...)."""
        async with self._client() as client:
            return await self._get(client, f"/meetings/{meeting_id}")

    async def get_transcript_segments(self, meeting_id: str) -> list[TranscriptSegment]:
        """Follow ``pagination.next_cursor`` until the server stops returning one."""
        segments: list[TranscriptSegment] = []
        cursor = ""
        pages = 0

        async with self._client() as client:
            while True:
                params = {"cursor": cursor} if cursor else None
                data = await self._get(client, f"/meetings/{meeting_id}/transcript", params)
                pages += 1

                sentences = data.get("sentences")
                if isinstance(sentences, list):
                    segments.extend(TranscriptSegment.model_validate(s) for s in sentences)
                elif data.get("transcript"):
                    segments.append(TranscriptSegment.model_validate(data))

                cursor = (data.get("pagination") or {}).get("next_cursor") or ""
                if not cursor:
                    break

        logger.info(
            "meetgeek.transcript_retrieved",
            meeting_id=meeting_id,
            pages=pages,
            segments=len(segments),
        )
        return segments

    async def fetch_transcript(self, meeting_link: str) -> FetchedTranscript:
        """Resolve a meeting link into an aggregated transcript.

        Metadata and transcript pages are fetched concurrently.
        """
        meeting_id = extract_meeting_id(meeting_link)
        details, segments = await asyncio.gather(
            self.get_meeting(meeting_id),
            self.get_transcript_segments(meeting_id),
        )
        return FetchedTranscript(
            meeting_id=meeting_id,
            meeting_name=details.get("title") or DEFAULT_MEETING_NAME,
            transcript=merge_speaker_turns(segments),
        )
