"""Transcript acquisition from MeetGeek with rate-limit backoff."""

from src.trailmap.transcripts.meetgeek import (
    FetchedTranscript,
    MeetGeekClient,
    TranscriptSegment,
    extract_meeting_id,
    merge_speaker_turns,
)

__all__ = [
    "FetchedTranscript",
    "MeetGeekClient",
    "TranscriptSegment",
    "extract_meeting_id",
    "merge_speaker_turns",
]
