"""Transcript rendering.

Each paragraph becomes one line ``{speaker}({HH:MM:SS})：{text}`` where the
time is the first sentence's start offset and text is every sentence's
words concatenated. Lines are separated by a blank line.
"""

from __future__ import annotations

import math

from src.app.services.tencent.schemas import TranscriptParagraph

UNKNOWN_SPEAKER = "unknown speaker"


def format_timestamp(milliseconds: float) -> str:
    """Render a millisecond offset as zero-padded ``HH:MM:SS``.

    Raises:
        ValueError: If ``milliseconds`` is negative, NaN or infinite.
    """
    if not math.isfinite(milliseconds) or milliseconds < 0:
        raise ValueError(f"Invalid timestamp: {milliseconds!r}")

    total_seconds = int(milliseconds) // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def speaker_name(paragraph: TranscriptParagraph) -> str:
    if paragraph.speaker_info is not None and paragraph.speaker_info.username:
        return paragraph.speaker_info.username
    return UNKNOWN_SPEAKER


def format_transcript(paragraphs: list[TranscriptParagraph]) -> str:
    lines: list[str] = []
    for paragraph in paragraphs:
        # Paragraphs without sentences have no timestamp to show
        if not paragraph.sentences:
            continue
        timestamp = format_timestamp(paragraph.sentences[0].start_time)
        text = "".join(sentence.text for sentence in paragraph.sentences).strip()
        lines.append(f"{speaker_name(paragraph)}({timestamp})：{text}")
    return "\n\n".join(lines)


def extract_speaker_names(paragraphs: list[TranscriptParagraph]) -> list[str]:
    """Distinct speaker names in order of first appearance."""
    return list(dict.fromkeys(speaker_name(p) for p in paragraphs))
