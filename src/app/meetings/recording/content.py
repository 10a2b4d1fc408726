"""Platform-generated content for one recording file.

Two independent branches feed the pipeline: the AI summary/minutes/todo text
and the transcript. Each returns a fully populated dataclass; callers treat
an exception from either branch as "use the empty defaults".
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field

import structlog

from src.app.meetings.recording.formatter import extract_speaker_names, format_transcript
from src.app.services.tencent.client import TencentMeetingClient
from src.app.services.tencent.schemas import TranscriptParagraph

logger = structlog.get_logger(__name__)


@dataclass
class MeetingContent:
    full_summary: str = ""
    ai_minutes: str = ""
    todo: str = ""


@dataclass
class TranscriptContent:
    paragraphs: list[TranscriptParagraph] = field(default_factory=list)
    formatted: str = ""
    speaker_names: list[str] = field(default_factory=list)


async def fetch_meeting_content(
    client: TencentMeetingClient, record_file_id: str, user_id: str
) -> MeetingContent:
    """Fetch summary and minutes; a failure in one keeps the other."""
    content = MeetingContent()

    try:
        summary = await client.get_smart_full_summary(record_file_id, user_id)
        if summary.ai_summary:
            content.full_summary = base64.b64decode(summary.ai_summary).decode(
                "utf-8", errors="replace"
            )
    except Exception as exc:
        logger.warning(
            "recording.summary_fetch_failed",
            record_file_id=record_file_id,
            error=str(exc),
        )

    try:
        minutes = await client.get_smart_minutes(record_file_id, user_id)
        if minutes.meeting_minute is not None:
            content.ai_minutes = minutes.meeting_minute.minute
            content.todo = minutes.meeting_minute.todo
    except Exception as exc:
        logger.warning(
            "recording.minutes_fetch_failed",
            record_file_id=record_file_id,
            error=str(exc),
        )

    return content


async def fetch_transcript(
    client: TencentMeetingClient,
    record_file_id: str,
    user_id: str,
    meeting_id: str | None = None,
) -> TranscriptContent:
    """Fetch the full transcript and render it. Raises on fetch failure."""
    response = await client.get_transcript(record_file_id, user_id, meeting_id=meeting_id)
    if response.minutes is None:
        return TranscriptContent()

    paragraphs = response.minutes.paragraphs
    return TranscriptContent(
        paragraphs=paragraphs,
        formatted=format_transcript(paragraphs),
        speaker_names=extract_speaker_names(paragraphs),
    )
