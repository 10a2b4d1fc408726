"""Create meeting ingestion tables.

Revision ID: 001_meeting_ingestion
Revises:
Create Date: 2026-10-19

Creates the nine tables behind the Tencent Meeting webhook pipeline:
- platform_users: participant identities keyed by (platform, platform_uuid)
- meetings: one row per (platform, meeting_id, sub_meeting_id)
- meeting_recordings: one row per (meeting, external_file_id)
- meeting_summaries / participant_summaries: versioned, at most one is_latest row per key
- transcripts -> transcript_paragraphs -> transcript_sentences -> transcript_words
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_meeting_ingestion"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _text(name: str, length: int | None = None) -> sa.Column:
    column_type = sa.String(length) if length else sa.Text()
    return sa.Column(name, column_type, server_default=sa.text("''"), nullable=False)


def _status(name: str, default: str) -> sa.Column:
    return sa.Column(
        name, sa.String(50), server_default=sa.text(f"'{default}'"), nullable=False
    )


def _fk(name: str, target: str, *, nullable: bool = False, cascade: bool = False) -> sa.Column:
    return sa.Column(
        name,
        UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete="CASCADE" if cascade else None),
        nullable=nullable,
    )


def upgrade() -> None:
    # ── identities ───────────────────────────────────────────────────────

    op.create_table(
        "platform_users",
        _id(),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("platform_uuid", sa.String(200), nullable=False),
        _text("platform_user_id", 200),
        _text("user_name", 500),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column(
            "is_enterprise_user",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column(
            "platform_data",
            sa.JSON(),
            server_default=sa.text("'{}'::json"),
            nullable=False,
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("platform", "platform_uuid", name="uq_platform_user_uuid"),
    )
    op.create_index(
        "ix_platform_users_user_id", "platform_users", ["platform", "platform_user_id"]
    )

    # ── meetings and recordings ──────────────────────────────────────────

    op.create_table(
        "meetings",
        _id(),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("meeting_id", sa.String(200), nullable=False),
        sa.Column("sub_meeting_id", sa.String(200), nullable=False),
        _text("title", 500),
        _text("meeting_code", 100),
        _status("meeting_type", "SCHEDULED"),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column(
            "has_recording", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        _status("recording_status", "PENDING"),
        _status("processing_status", "PENDING"),
        _fk("creator_id", "platform_users.id", nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "platform", "meeting_id", "sub_meeting_id", name="uq_meeting_platform_key"
        ),
    )

    op.create_table(
        "meeting_recordings",
        _id(),
        _fk("meeting_id", "meetings.id"),
        sa.Column("external_file_id", sa.String(200), nullable=False),
        sa.Column("language", sa.String(20), nullable=True),
        _status("status", "PENDING"),
        _created_at(),
        sa.UniqueConstraint(
            "meeting_id", "external_file_id", name="uq_recording_meeting_file"
        ),
    )

    # ── summaries ────────────────────────────────────────────────────────

    op.create_table(
        "meeting_summaries",
        _id(),
        _fk("meeting_id", "meetings.id"),
        _fk("recording_id", "meeting_recordings.id"),
        _text("full_summary"),
        _text("ai_minutes"),
        _text("todo"),
        sa.Column("generated_by", sa.String(50), nullable=False),
        sa.Column("ai_model", sa.String(100), nullable=False),
        sa.Column("language", sa.String(20), nullable=False),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("is_latest", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_meeting_summaries_key",
        "meeting_summaries",
        ["meeting_id", "recording_id", "is_latest"],
    )
    op.create_index(
        "uq_meeting_summaries_latest",
        "meeting_summaries",
        ["meeting_id", "recording_id"],
        unique=True,
        postgresql_where=sa.text("is_latest"),
    )

    op.create_table(
        "participant_summaries",
        _id(),
        _fk("platform_user_id", "platform_users.id"),
        _fk("meeting_id", "meetings.id"),
        _fk("recording_id", "meeting_recordings.id"),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("is_latest", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_participant_summaries_key",
        "participant_summaries",
        ["platform_user_id", "meeting_id", "recording_id", "is_latest"],
    )
    op.create_index(
        "uq_participant_summaries_latest",
        "participant_summaries",
        ["platform_user_id", "meeting_id", "recording_id"],
        unique=True,
        postgresql_where=sa.text("is_latest"),
    )

    # ── transcript hierarchy ─────────────────────────────────────────────

    op.create_table(
        "transcripts",
        _id(),
        _fk("recording_id", "meeting_recordings.id"),
        _text("full_text"),
        _status("status", "PROCESSING"),
        _created_at(),
        sa.UniqueConstraint("recording_id", name="uq_transcript_recording"),
    )

    op.create_table(
        "transcript_paragraphs",
        _id(),
        _fk("transcript_id", "transcripts.id", cascade=True),
        sa.Column("pid", sa.Integer(), nullable=False),
        sa.Column("start_time_ms", sa.BigInteger(), nullable=False),
        sa.Column("end_time_ms", sa.BigInteger(), nullable=False),
        _fk("speaker_id", "platform_users.id", nullable=True),
    )
    op.create_index(
        "ix_transcript_paragraphs_transcript_id", "transcript_paragraphs", ["transcript_id"]
    )

    op.create_table(
        "transcript_sentences",
        _id(),
        _fk("paragraph_id", "transcript_paragraphs.id", cascade=True),
        sa.Column("sid", sa.BigInteger(), nullable=False),
        sa.Column("start_time_ms", sa.BigInteger(), nullable=False),
        sa.Column("end_time_ms", sa.BigInteger(), nullable=False),
        _text("text"),
    )
    op.create_index(
        "ix_transcript_sentences_paragraph_id", "transcript_sentences", ["paragraph_id"]
    )

    op.create_table(
        "transcript_words",
        _id(),
        _fk("sentence_id", "transcript_sentences.id", cascade=True),
        sa.Column("wid", sa.BigInteger(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("start_time_ms", sa.BigInteger(), nullable=False),
        sa.Column("end_time_ms", sa.BigInteger(), nullable=False),
        _text("text"),
    )
    op.create_index("ix_transcript_words_sentence_id", "transcript_words", ["sentence_id"])


def downgrade() -> None:
    op.drop_table("transcript_words")
    op.drop_table("transcript_sentences")
    op.drop_table("transcript_paragraphs")
    op.drop_table("transcripts")
    op.drop_table("participant_summaries")
    op.drop_table("meeting_summaries")
    op.drop_table("meeting_recordings")
    op.drop_table("meetings")
    op.drop_table("platform_users")
