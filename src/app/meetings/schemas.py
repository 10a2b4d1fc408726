"""Pydantic v2 schemas for the meeting ingestion domain.

Defines the persisted shapes handed out by MeetingRepository (platform users,
meetings, recordings, transcripts, summaries) plus the status and meeting
type enums and the platform meeting-type mapping.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

PLATFORM = "TENCENT_MEETING"


# ── Enums ────────────────────────────────────────────────────────────────────


class ProcessingStatus(str, Enum):
    """Lifecycle status shared by meetings, recordings and transcripts."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MeetingType(str, Enum):
    ONE_TIME = "ONE_TIME"
    RECURRING = "RECURRING"
    INSTANT = "INSTANT"
    SCHEDULED = "SCHEDULED"


_PLATFORM_MEETING_TYPES: dict[int, MeetingType] = {
    0: MeetingType.ONE_TIME,
    1: MeetingType.RECURRING,
    2: MeetingType.INSTANT,
    4: MeetingType.INSTANT,
    5: MeetingType.SCHEDULED,
}

_MEETING_TYPE_LABELS: dict[int, str] = {
    0: "一次性会议",
    1: "周期性会议",
    2: "微信专属会议",
    4: "Rooms投屏会议",
    5: "个人会议号会议",
}


def map_meeting_type(platform_type: int | None) -> MeetingType:
    """Platform numeric meeting type to MeetingType; unknown maps to SCHEDULED."""
    if platform_type is None:
        return MeetingType.SCHEDULED
    return _PLATFORM_MEETING_TYPES.get(platform_type, MeetingType.SCHEDULED)


def meeting_type_label(platform_type: int | None) -> str:
    """Human-readable label for the Notion mirror."""
    if platform_type is None:
        return "未知类型"
    return _MEETING_TYPE_LABELS.get(platform_type, "未知类型")


# ── Persisted records ────────────────────────────────────────────────────────


class PlatformUser(BaseModel):
    """Durable identity keyed by (platform, platform_uuid)."""

    id: uuid.UUID
    platform: str = PLATFORM
    platform_uuid: str
    platform_user_id: str = ""
    user_name: str = ""
    phone: str | None = None
    is_enterprise_user: bool = False
    platform_data: dict = Field(default_factory=dict)


class PlatformUserUpsert(BaseModel):
    """Fields written by upsert_platform_user; None leaves a column unchanged."""

    platform_uuid: str
    platform_user_id: str | None = None
    user_name: str | None = None
    phone: str | None = None
    is_enterprise_user: bool | None = None
    platform_data: dict | None = None


class Meeting(BaseModel):
    id: uuid.UUID
    platform: str = PLATFORM
    meeting_id: str
    sub_meeting_id: str
    title: str = ""
    meeting_code: str = ""
    meeting_type: MeetingType = MeetingType.SCHEDULED
    start_at: datetime | None = None
    end_at: datetime | None = None
    duration_seconds: int | None = None
    has_recording: bool = False
    recording_status: ProcessingStatus = ProcessingStatus.PENDING
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    creator_id: uuid.UUID | None = None


class MeetingUpsert(BaseModel):
    """Natural key plus the columns refreshed on every meeting event."""

    meeting_id: str
    sub_meeting_id: str
    title: str = ""
    meeting_code: str = ""
    meeting_type: MeetingType = MeetingType.SCHEDULED
    start_at: datetime | None = None
    end_at: datetime | None = None
    creator_id: uuid.UUID | None = None

    @property
    def duration_seconds(self) -> int | None:
        if self.start_at is None or self.end_at is None:
            return None
        return int((self.end_at - self.start_at).total_seconds())


class Recording(BaseModel):
    id: uuid.UUID
    meeting_id: uuid.UUID
    external_file_id: str
    language: str | None = None
    status: ProcessingStatus = ProcessingStatus.PENDING


class MeetingSummaryContent(BaseModel):
    """Platform-generated summary text stored per (meeting, recording)."""

    full_summary: str = ""
    ai_minutes: str = ""
    todo: str = ""
    generated_by: str = "AI"
    ai_model: str = "tencent-meeting-ai"
    language: str = "zh-CN"


class MeetingSummary(MeetingSummaryContent):
    id: uuid.UUID
    meeting_id: uuid.UUID
    recording_id: uuid.UUID
    version: int = 1
    is_latest: bool = True


class ParticipantSummary(BaseModel):
    id: uuid.UUID
    platform_user_id: uuid.UUID
    meeting_id: uuid.UUID
    recording_id: uuid.UUID
    summary: str
    version: int = 1
    is_latest: bool = True
    created_at: datetime | None = None
