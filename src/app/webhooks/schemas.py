"""Pydantic models for decrypted Tencent Meeting webhook envelopes.

A delivery decrypts to an Envelope: an event name, a trace id, and a list of
payload items. Every item carries the meeting it refers to; recording events
also list the recording files. Unknown fields are ignored so new platform
fields never break parsing, and numeric identifiers are coerced to strings
because the platform is inconsistent about them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ROOT_SUB_MEETING_ID = "__ROOT__"


class EventName(str, Enum):
    """Webhook events this service handles."""

    MEETING_STARTED = "meeting.started"
    MEETING_ENDED = "meeting.end"
    PARTICIPANT_JOINED = "meeting.participant-joined"
    RECORDING_COMPLETED = "recording.completed"
    SMART_FULLSUMMARY = "smart.fullsummary"
    SMART_TRANSCRIPTS = "smart.transcripts"
    SMART_MINUTES = "smart.minutes"


class TencentMeetingType(int, Enum):
    ONE_TIME = 0
    RECURRING = 1
    WECHAT_EXCLUSIVE = 2
    ROOMS_SCREEN_SHARE = 4
    PERSONAL_MEETING_ID = 5


class _WebhookModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class MeetingUser(_WebhookModel):
    """Operator, creator or host identity attached to an event."""

    userid: str = ""
    uuid: str = ""
    user_name: str = ""
    open_id: str | None = None
    ms_open_id: str | None = None
    instance_id: str | None = None


class MeetingInfo(_WebhookModel):
    """Meeting block of a payload item. Times are epoch seconds."""

    meeting_id: str
    meeting_code: str = ""
    subject: str = ""
    creator: MeetingUser = Field(default_factory=MeetingUser)
    hosts: list[MeetingUser] = Field(default_factory=list)
    meeting_type: int = TencentMeetingType.ONE_TIME.value
    start_time: int = 0
    end_time: int = 0
    sub_meeting_id: str | None = None
    sub_meeting_start_time: int | None = None
    sub_meeting_end_time: int | None = None
    meeting_create_mode: int | None = None
    meeting_create_from: int | None = None
    meeting_id_type: int | None = None

    @property
    def sub_meeting_key(self) -> str:
        """sub_meeting_id, or the root sentinel for non-recurring meetings."""
        return self.sub_meeting_id or ROOT_SUB_MEETING_ID

    @property
    def effective_start_time(self) -> int:
        return self.sub_meeting_start_time or self.start_time

    @property
    def effective_end_time(self) -> int:
        return self.sub_meeting_end_time or self.end_time


class RecordingFileRef(_WebhookModel):
    record_file_id: str
    lang: str | None = None


class EventPayload(_WebhookModel):
    """One logical event inside an envelope."""

    operate_time: int | None = None
    operator: MeetingUser | None = None
    meeting_info: MeetingInfo
    meeting_end_type: int | None = None
    recording_files: list[RecordingFileRef] = Field(default_factory=list)


class Envelope(_WebhookModel):
    """Decrypted webhook body.

    Payload items stay raw here; the dispatcher validates each one on its own
    so a single malformed item cannot reject the whole delivery.
    """

    event: str
    trace_id: str = ""
    payload: list[dict[str, Any]] = Field(default_factory=list)


class EncryptedBody(BaseModel):
    """POST body as delivered: a single base64 ciphertext field."""

    data: str
