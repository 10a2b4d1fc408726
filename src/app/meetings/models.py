"""Meeting ingestion persistence models.

Tables, leaf to root:
- PlatformUserModel: durable participant identity, unique (platform, platform_uuid)
- MeetingModel: unique (platform, meeting_id, sub_meeting_id); non-recurring
  meetings use the "__ROOT__" sub-meeting sentinel
- RecordingModel: unique (meeting_id, external_file_id)
- MeetingSummaryModel / ParticipantSummaryModel: versioned, one is_latest row
  per logical key
- TranscriptModel (unique per recording) -> TranscriptParagraphModel ->
  TranscriptSentenceModel -> TranscriptWordModel

Primary keys get a client-side uuid4 so the transcript batch writer can link
children to a parent before the flush.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import Base


def _pk() -> Mapped[uuid.UUID]:
    return mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )


def _created_at() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), server_default=func.now())


class PlatformUserModel(Base):
    """Meeting-platform identity. ``platform_uuid`` is the cross-session key."""

    __tablename__ = "platform_users"
    __table_args__ = (
        UniqueConstraint("platform", "platform_uuid", name="uq_platform_user_uuid"),
        Index("ix_platform_users_user_id", "platform", "platform_user_id"),
    )

    id: Mapped[uuid.UUID] = _pk()
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    platform_uuid: Mapped[str] = mapped_column(String(200), nullable=False)
    platform_user_id: Mapped[str] = mapped_column(
        String(200), default="", server_default=text("''")
    )
    user_name: Mapped[str] = mapped_column(String(500), default="", server_default=text("''"))
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_enterprise_user: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    platform_data: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )


class MeetingModel(Base):
    __tablename__ = "meetings"
    __table_args__ = (
        UniqueConstraint(
            "platform", "meeting_id", "sub_meeting_id", name="uq_meeting_platform_key"
        ),
    )

    id: Mapped[uuid.UUID] = _pk()
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    meeting_id: Mapped[str] = mapped_column(String(200), nullable=False)
    sub_meeting_id: Mapped[str] = mapped_column(String(200), nullable=False)
    title: Mapped[str] = mapped_column(String(500), default="", server_default=text("''"))
    meeting_code: Mapped[str] = mapped_column(String(100), default="", server_default=text("''"))
    meeting_type: Mapped[str] = mapped_column(String(50), default="SCHEDULED")
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    has_recording: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    recording_status: Mapped[str] = mapped_column(
        String(50), default="PENDING", server_default=text("'PENDING'")
    )
    processing_status: Mapped[str] = mapped_column(
        String(50), default="PENDING", server_default=text("'PENDING'")
    )
    creator_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platform_users.id"), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )


class RecordingModel(Base):
    __tablename__ = "meeting_recordings"
    __table_args__ = (
        UniqueConstraint("meeting_id", "external_file_id", name="uq_recording_meeting_file"),
    )

    id: Mapped[uuid.UUID] = _pk()
    meeting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("meetings.id"), nullable=False
    )
    external_file_id: Mapped[str] = mapped_column(String(200), nullable=False)
    language: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50), default="PENDING", server_default=text("'PENDING'")
    )
    created_at: Mapped[datetime] = _created_at()


class MeetingSummaryModel(Base):
    """Platform summary text; one ``is_latest`` row per (meeting, recording)."""

    __tablename__ = "meeting_summaries"
    __table_args__ = (
        Index("ix_meeting_summaries_key", "meeting_id", "recording_id", "is_latest"),
        Index(
            "uq_meeting_summaries_latest",
            "meeting_id",
            "recording_id",
            unique=True,
            postgresql_where=text("is_latest"),
        ),
    )

    id: Mapped[uuid.UUID] = _pk()
    meeting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("meetings.id"), nullable=False
    )
    recording_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("meeting_recordings.id"), nullable=False
    )
    full_summary: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    ai_minutes: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    todo: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    generated_by: Mapped[str] = mapped_column(String(50), default="AI")
    ai_model: Mapped[str] = mapped_column(String(100), default="")
    language: Mapped[str] = mapped_column(String(20), default="zh-CN")
    version: Mapped[int] = mapped_column(Integer, default=1, server_default=text("1"))
    is_latest: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = _created_at()


class ParticipantSummaryModel(Base):
    """Personalized summary; one ``is_latest`` row per (user, meeting, recording)."""

    __tablename__ = "participant_summaries"
    __table_args__ = (
        Index(
            "ix_participant_summaries_key",
            "platform_user_id",
            "meeting_id",
            "recording_id",
            "is_latest",
        ),
        Index(
            "uq_participant_summaries_latest",
            "platform_user_id",
            "meeting_id",
            "recording_id",
            unique=True,
            postgresql_where=text("is_latest"),
        ),
    )

    id: Mapped[uuid.UUID] = _pk()
    platform_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platform_users.id"), nullable=False
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("meetings.id"), nullable=False
    )
    recording_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("meeting_recordings.id"), nullable=False
    )
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, server_default=text("1"))
    is_latest: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = _created_at()


class TranscriptModel(Base):
    __tablename__ = "transcripts"
    __table_args__ = (UniqueConstraint("recording_id", name="uq_transcript_recording"),)

    id: Mapped[uuid.UUID] = _pk()
    recording_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("meeting_recordings.id"), nullable=False
    )
    full_text: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    status: Mapped[str] = mapped_column(
        String(50), default="PROCESSING", server_default=text("'PROCESSING'")
    )
    created_at: Mapped[datetime] = _created_at()


class TranscriptParagraphModel(Base):
    __tablename__ = "transcript_paragraphs"

    id: Mapped[uuid.UUID] = _pk()
    transcript_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("transcripts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pid: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    speaker_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platform_users.id"), nullable=True
    )


class TranscriptSentenceModel(Base):
    __tablename__ = "transcript_sentences"

    id: Mapped[uuid.UUID] = _pk()
    paragraph_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("transcript_paragraphs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    start_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    text: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))


class TranscriptWordModel(Base):
    __tablename__ = "transcript_words"

    id: Mapped[uuid.UUID] = _pk()
    sentence_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("transcript_sentences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    wid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    text: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
