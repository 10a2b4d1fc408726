"""Tests for transcript rendering and roster normalization.

Covers format_timestamp, format_transcript, extract_speaker_names,
decode_display_name, dedupe_roster and fetch_roster.
"""

from __future__ import annotations

import base64
import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.app.meetings.recording.formatter import (
    UNKNOWN_SPEAKER,
    extract_speaker_names,
    format_timestamp,
    format_transcript,
)
from src.app.meetings.recording.roster import decode_display_name, dedupe_roster, fetch_roster
from src.app.services.tencent.schemas import (
    ParticipantDetail,
    ParticipantsResponse,
    SpeakerInfo,
    TranscriptParagraph,
    TranscriptSentence,
    TranscriptWord,
)


def _paragraph(pid: int, speaker: str | None, texts: list[str], start_ms: int = 0) -> TranscriptParagraph:
    sentences = [
        TranscriptSentence(
            sid=str(pid * 10 + i),
            start_time=start_ms + i * 1000,
            end_time=start_ms + i * 1000 + 900,
            words=[TranscriptWord(wid=str(pid * 100 + i), text=text)],
        )
        for i, text in enumerate(texts)
    ]
    return TranscriptParagraph(
        pid=str(pid),
        sentences=sentences,
        speaker_info=SpeakerInfo(username=speaker) if speaker is not None else None,
    )


# ── format_timestamp ─────────────────────────────────────────────────────────


class TestFormatTimestamp:
    @pytest.mark.parametrize(
        "ms, expected",
        [
            (0, "00:00:00"),
            (999, "00:00:00"),
            (61_000, "00:01:01"),
            (3_661_000, "01:01:01"),
            (360_000_000, "100:00:00"),
        ],
    )
    def test_formats_zero_padded(self, ms, expected):
        assert format_timestamp(ms) == expected

    @pytest.mark.parametrize("bad", [-1, math.nan, math.inf, -math.inf])
    def test_rejects_invalid_input(self, bad):
        with pytest.raises(ValueError, match="Invalid timestamp"):
            format_timestamp(bad)


# ── format_transcript ────────────────────────────────────────────────────────


class TestFormatTranscript:
    def test_lines_are_speaker_time_text_separated_by_blank_line(self):
        paragraphs = [
            _paragraph(1, "Alice", ["Hello ", "team."], start_ms=0),
            _paragraph(2, "Bob", ["Hi."], start_ms=65_000),
        ]

        assert format_transcript(paragraphs) == (
            "Alice(00:00:00)：Hello team.\n\nBob(00:01:05)：Hi."
        )

    def test_missing_speaker_uses_placeholder(self):
        result = format_transcript([_paragraph(1, None, ["x"])])
        assert result == f"{UNKNOWN_SPEAKER}(00:00:00)：x"

    def test_empty_username_uses_placeholder(self):
        result = format_transcript([_paragraph(1, "", ["x"])])
        assert result.startswith(UNKNOWN_SPEAKER)

    def test_paragraph_without_sentences_is_skipped(self):
        paragraphs = [_paragraph(1, "Alice", []), _paragraph(2, "Bob", ["ok"])]
        assert format_transcript(paragraphs) == "Bob(00:00:00)：ok"

    def test_empty_transcript_renders_empty_string(self):
        assert format_transcript([]) == ""


class TestExtractSpeakerNames:
    def test_distinct_in_first_appearance_order(self):
        paragraphs = [
            _paragraph(1, "Bob", ["a"]),
            _paragraph(2, "Alice", ["b"]),
            _paragraph(3, "Bob", ["c"]),
        ]
        assert extract_speaker_names(paragraphs) == ["Bob", "Alice"]

    def test_includes_unknown_speaker_placeholder(self):
        paragraphs = [_paragraph(1, None, ["a"]), _paragraph(2, "Alice", ["b"])]
        assert extract_speaker_names(paragraphs) == [UNKNOWN_SPEAKER, "Alice"]


# ── Roster ───────────────────────────────────────────────────────────────────


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class TestDecodeDisplayName:
    def test_decodes_base64_utf8(self):
        assert decode_display_name(_b64("张三")) == "张三"

    def test_plain_name_returned_unchanged(self):
        assert decode_display_name("Alice Smith") == "Alice Smith"

    def test_base64_of_binary_returned_unchanged(self):
        encoded = base64.b64encode(b"\xff\xfe\x00").decode("ascii")
        assert decode_display_name(encoded) == encoded

    def test_empty_name(self):
        assert decode_display_name("") == ""


class TestDedupeRoster:
    def test_first_entry_per_uuid_wins(self):
        roster = [
            ParticipantDetail(uuid="u1", user_name=_b64("Alice"), join_time="100"),
            ParticipantDetail(uuid="u2", user_name=_b64("Bob"), join_time="110"),
            ParticipantDetail(uuid="u1", user_name=_b64("Alice"), join_time="500"),
        ]

        result = dedupe_roster(roster)

        assert [(p.uuid, p.user_name, p.join_time) for p in result] == [
            ("u1", "Alice", "100"),
            ("u2", "Bob", "110"),
        ]

    def test_entries_without_uuid_are_dropped(self):
        roster = [ParticipantDetail(uuid="", user_name="ghost"), ParticipantDetail(uuid="u1")]
        assert [p.uuid for p in dedupe_roster(roster)] == ["u1"]


class TestFetchRoster:
    @pytest.mark.asyncio
    async def test_fetches_and_dedupes(self):
        client = MagicMock()
        client.get_participants = AsyncMock(
            return_value=ParticipantsResponse(
                participants=[
                    ParticipantDetail(uuid="u1", user_name=_b64("Alice")),
                    ParticipantDetail(uuid="u1", user_name=_b64("Alice")),
                ]
            )
        )

        roster = await fetch_roster(client, "m-1", "creator-1", "sub-1")

        client.get_participants.assert_awaited_once_with("m-1", "creator-1", "sub-1")
        assert [p.user_name for p in roster] == ["Alice"]

    @pytest.mark.asyncio
    async def test_fetch_failure_returns_empty_roster(self):
        client = MagicMock()
        client.get_participants = AsyncMock(side_effect=RuntimeError("boom"))

        assert await fetch_roster(client, "m-1", "creator-1") == []
