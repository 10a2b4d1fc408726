"""Response models for the Tencent Meeting REST API.

Only the fields the recording pipeline reads are declared; everything else
is ignored. Numeric ids are coerced to strings.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _ApiModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class ErrorInfo(_ApiModel):
    error_code: int | None = None
    new_error_code: int | None = None
    message: str = ""


# ── Participants ─────────────────────────────────────────────────────────────


class ParticipantDetail(_ApiModel):
    """One roster entry. ``uuid`` is the only identifier stable across sessions."""

    userid: str = ""
    uuid: str = ""
    user_name: str = ""
    open_id: str = ""
    ms_open_id: str = ""
    phone: str = ""
    join_time: str = ""
    left_time: str = ""
    instanceid: str = ""
    user_role: int | None = None
    ip: str = ""
    location: str = ""
    link_type: str = ""
    net: str = ""
    app_version: str = ""
    is_enterprise_user: bool = False
    tm_corpid: str = ""
    avatar_url: str = ""


class ParticipantsResponse(_ApiModel):
    meeting_id: str = ""
    meeting_code: str = ""
    subject: str = ""
    participants: list[ParticipantDetail] = Field(default_factory=list)
    has_remaining: bool = False
    next_pos: int | None = None
    total_count: int | None = None


# ── Transcript ───────────────────────────────────────────────────────────────


class SpeakerInfo(_ApiModel):
    """Diarization identity attached to a paragraph. Not durable."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)

    userid: str = ""
    open_id: str = Field("", alias="openId")
    username: str = ""
    ms_open_id: str = ""
    tm_xid: str | None = None
    # Roster-sourced attributes, filled in by SpeakerService.enrich
    uuid: str | None = None
    phone: str | None = None
    instanceid: str | None = None
    ip: str | None = None
    location: str | None = None
    net: str | None = None
    is_enterprise_user: bool | None = None


class TranscriptWord(_ApiModel):
    wid: str
    start_time: int = 0
    end_time: int = 0
    text: str = ""


class TranscriptSentence(_ApiModel):
    sid: str
    start_time: int = 0
    end_time: int = 0
    words: list[TranscriptWord] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(w.text for w in self.words)


class TranscriptParagraph(_ApiModel):
    pid: str
    start_time: int = 0
    end_time: int = 0
    sentences: list[TranscriptSentence] = Field(default_factory=list)
    speaker_info: SpeakerInfo | None = None


class TranscriptMinutes(_ApiModel):
    paragraphs: list[TranscriptParagraph] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    audio_detect: int | None = None


class TranscriptResponse(_ApiModel):
    minutes: TranscriptMinutes | None = None
    more: bool = False


# ── Smart content ────────────────────────────────────────────────────────────


class SmartFullSummaryResponse(_ApiModel):
    """``ai_summary`` is base64-encoded UTF-8 text."""

    ai_summary: str = ""


class MeetingMinute(_ApiModel):
    minute: str = ""
    todo: str = ""


class SmartMinutesResponse(_ApiModel):
    meeting_minute: MeetingMinute | None = None
