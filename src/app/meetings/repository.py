"""Meeting repository -- async persistence for the ingestion pipeline.

Provides MeetingRepository with the session_factory callable pattern. Every
write keyed by a natural key is an upsert (INSERT ... ON CONFLICT DO UPDATE)
so webhook re-deliveries never create second rows:

- platform users by (platform, platform_uuid)
- meetings by (platform, meeting_id, sub_meeting_id)
- recordings by (meeting_id, external_file_id)
- transcripts by recording_id

Summaries are versioned: a new generation flips the previous ``is_latest``
row to false and inserts version + 1 in the same transaction.

Transcript hierarchies are written through ``transcript_batch()``, which
yields a TranscriptBatchWriter bound to a single transaction.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.meetings.models import (
    MeetingModel,
    MeetingSummaryModel,
    ParticipantSummaryModel,
    PlatformUserModel,
    RecordingModel,
    TranscriptModel,
    TranscriptParagraphModel,
    TranscriptSentenceModel,
    TranscriptWordModel,
)
from src.app.meetings.schemas import (
    PLATFORM,
    Meeting,
    MeetingSummary,
    MeetingSummaryContent,
    MeetingType,
    MeetingUpsert,
    ParticipantSummary,
    PlatformUser,
    PlatformUserUpsert,
    ProcessingStatus,
    Recording,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_user(model: PlatformUserModel) -> PlatformUser:
    return PlatformUser(
        id=model.id,
        platform=model.platform,
        platform_uuid=model.platform_uuid,
        platform_user_id=model.platform_user_id or "",
        user_name=model.user_name or "",
        phone=model.phone,
        is_enterprise_user=bool(model.is_enterprise_user),
        platform_data=model.platform_data or {},
    )


def _model_to_meeting(model: MeetingModel) -> Meeting:
    return Meeting(
        id=model.id,
        platform=model.platform,
        meeting_id=model.meeting_id,
        sub_meeting_id=model.sub_meeting_id,
        title=model.title or "",
        meeting_code=model.meeting_code or "",
        meeting_type=MeetingType(model.meeting_type),
        start_at=model.start_at,
        end_at=model.end_at,
        duration_seconds=model.duration_seconds,
        has_recording=bool(model.has_recording),
        recording_status=ProcessingStatus(model.recording_status),
        processing_status=ProcessingStatus(model.processing_status),
        creator_id=model.creator_id,
    )


def _model_to_recording(model: RecordingModel) -> Recording:
    return Recording(
        id=model.id,
        meeting_id=model.meeting_id,
        external_file_id=model.external_file_id,
        language=model.language,
        status=ProcessingStatus(model.status),
    )


def _user_upsert_stmt(data: PlatformUserUpsert) -> Any:
    """INSERT ... ON CONFLICT (platform, platform_uuid) DO UPDATE for a user.

    Columns passed as None are left untouched on conflict.
    """
    values: dict[str, Any] = {
        "platform_user_id": data.platform_user_id,
        "user_name": data.user_name,
        "phone": data.phone,
        "is_enterprise_user": data.is_enterprise_user,
        "platform_data": data.platform_data,
    }
    provided = {k: v for k, v in values.items() if v is not None}
    stmt = pg_insert(PlatformUserModel).values(
        id=uuid.uuid4(),
        platform=PLATFORM,
        platform_uuid=data.platform_uuid,
        **provided,
    )
    return stmt.on_conflict_do_update(
        index_elements=["platform", "platform_uuid"],
        set_={**provided, "updated_at": func.now()},
    ).returning(PlatformUserModel)


# ── Transcript batch writer ─────────────────────────────────────────────────


class TranscriptBatchWriter:
    """Writes one paragraph batch inside an open transaction.

    Rows are added to the session with client-generated ids; ``flush()``
    sends them without committing. The owning ``transcript_batch()`` context
    commits on clean exit and rolls the whole batch back on any exception.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert_speaker(self, data: PlatformUserUpsert) -> uuid.UUID:
        result = await self._session.scalars(
            _user_upsert_stmt(data),
            execution_options={"populate_existing": True},
        )
        return result.one().id

    async def find_speaker_by_uuid(self, platform_uuid: str) -> uuid.UUID | None:
        stmt = select(PlatformUserModel.id).where(
            PlatformUserModel.platform == PLATFORM,
            PlatformUserModel.platform_uuid == platform_uuid,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    def add_paragraph(
        self,
        *,
        transcript_id: uuid.UUID,
        pid: int,
        start_time_ms: int,
        end_time_ms: int,
        speaker_id: uuid.UUID | None,
    ) -> uuid.UUID:
        model = TranscriptParagraphModel(
            id=uuid.uuid4(),
            transcript_id=transcript_id,
            pid=pid,
            start_time_ms=start_time_ms,
            end_time_ms=end_time_ms,
            speaker_id=speaker_id,
        )
        self._session.add(model)
        return model.id

    def add_sentence(
        self,
        *,
        paragraph_id: uuid.UUID,
        sid: int,
        start_time_ms: int,
        end_time_ms: int,
        text: str,
    ) -> uuid.UUID:
        model = TranscriptSentenceModel(
            id=uuid.uuid4(),
            paragraph_id=paragraph_id,
            sid=sid,
            start_time_ms=start_time_ms,
            end_time_ms=end_time_ms,
            text=text,
        )
        self._session.add(model)
        return model.id

    async def add_words(self, sentence_id: uuid.UUID, words: list[dict]) -> None:
        """Bulk insert the words of one sentence.

        Each dict carries wid, start_time_ms, end_time_ms and text; position
        is the word's order within the sentence.
        """
        if not words:
            return
        await self.flush()
        rows = [
            {"id": uuid.uuid4(), "sentence_id": sentence_id, "position": i, **w}
            for i, w in enumerate(words)
        ]
        await self._session.execute(insert(TranscriptWordModel), rows)

    async def flush(self) -> None:
        await self._session.flush()


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async persistence for users, meetings, recordings, transcripts and summaries.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Platform users ───────────────────────────────────────────────────

    async def upsert_platform_user(self, data: PlatformUserUpsert) -> PlatformUser:
        """Create or update the user keyed by (platform, platform_uuid).

        Raises:
            ValueError: If ``platform_uuid`` is empty.
        """
        if not data.platform_uuid:
            raise ValueError(
                f"platform_uuid is required to upsert a user (user_name={data.user_name or 'unknown'})"
            )
        async for session in self._session_factory():
            result = await session.scalars(
                _user_upsert_stmt(data),
                execution_options={"populate_existing": True},
            )
            model = result.one()
            await session.commit()
            return _model_to_user(model)

    async def _find_user(self, *criteria: Any) -> PlatformUser | None:
        async for session in self._session_factory():
            stmt = (
                select(PlatformUserModel)
                .where(PlatformUserModel.platform == PLATFORM, *criteria)
                .order_by(PlatformUserModel.created_at)
                .limit(1)
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _model_to_user(model) if model is not None else None

    async def find_platform_user_by_user_id(self, user_id: str) -> PlatformUser | None:
        return await self._find_user(PlatformUserModel.platform_user_id == user_id)

    async def find_platform_user_by_name(self, user_name: str) -> PlatformUser | None:
        return await self._find_user(PlatformUserModel.user_name == user_name)

    # ── Meetings ─────────────────────────────────────────────────────────

    async def upsert_meeting(self, data: MeetingUpsert) -> Meeting:
        """Create or update a meeting by (platform, meeting_id, sub_meeting_id)."""
        values = {
            "title": data.title,
            "meeting_code": data.meeting_code,
            "meeting_type": data.meeting_type.value,
            "start_at": data.start_at,
            "end_at": data.end_at,
            "duration_seconds": data.duration_seconds,
        }
        if data.creator_id is not None:
            values["creator_id"] = data.creator_id

        stmt = (
            pg_insert(MeetingModel)
            .values(
                id=uuid.uuid4(),
                platform=PLATFORM,
                meeting_id=data.meeting_id,
                sub_meeting_id=data.sub_meeting_id,
                recording_status=ProcessingStatus.PENDING.value,
                processing_status=ProcessingStatus.PENDING.value,
                **values,
            )
            .on_conflict_do_update(
                index_elements=["platform", "meeting_id", "sub_meeting_id"],
                set_={**values, "updated_at": func.now()},
            )
            .returning(MeetingModel)
        )
        async for session in self._session_factory():
            result = await session.scalars(
                stmt, execution_options={"populate_existing": True}
            )
            model = result.one()
            await session.commit()
            logger.info(
                "meeting.upserted",
                meeting_id=data.meeting_id,
                sub_meeting_id=data.sub_meeting_id,
            )
            return _model_to_meeting(model)

    async def find_meeting(self, meeting_id: str, sub_meeting_id: str) -> Meeting | None:
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(
                MeetingModel.platform == PLATFORM,
                MeetingModel.meeting_id == meeting_id,
                MeetingModel.sub_meeting_id == sub_meeting_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _model_to_meeting(model) if model is not None else None

    async def mark_recording_completed(self, meeting_pk: uuid.UUID) -> None:
        """Flag a meeting as having a fully processed recording."""
        async for session in self._session_factory():
            await session.execute(
                update(MeetingModel)
                .where(MeetingModel.id == meeting_pk)
                .values(
                    has_recording=True,
                    recording_status=ProcessingStatus.COMPLETED.value,
                )
            )
            await session.commit()

    # ── Recordings ───────────────────────────────────────────────────────

    async def upsert_recording(
        self,
        meeting_pk: uuid.UUID,
        external_file_id: str,
        language: str | None = None,
    ) -> Recording:
        """Create or update a recording by (meeting, external_file_id)."""
        stmt = (
            pg_insert(RecordingModel)
            .values(
                id=uuid.uuid4(),
                meeting_id=meeting_pk,
                external_file_id=external_file_id,
                language=language,
                status=ProcessingStatus.PROCESSING.value,
            )
            .on_conflict_do_update(
                index_elements=["meeting_id", "external_file_id"],
                set_={"language": language},
            )
            .returning(RecordingModel)
        )
        async for session in self._session_factory():
            result = await session.scalars(
                stmt, execution_options={"populate_existing": True}
            )
            model = result.one()
            await session.commit()
            return _model_to_recording(model)

    async def set_recording_status(
        self, recording_id: uuid.UUID, status: ProcessingStatus
    ) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(RecordingModel)
                .where(RecordingModel.id == recording_id)
                .values(status=status.value)
            )
            await session.commit()

    # ── Summaries ────────────────────────────────────────────────────────

    async def upsert_meeting_summary(
        self,
        meeting_pk: uuid.UUID,
        recording_id: uuid.UUID,
        content: MeetingSummaryContent,
    ) -> MeetingSummary:
        """Store a new latest meeting summary for (meeting, recording).

        The recording row is locked so concurrent writers serialize on the
        version bump.
        """
        async for session in self._session_factory():
            async with session.begin():
                await session.execute(
                    select(RecordingModel.id)
                    .where(RecordingModel.id == recording_id)
                    .with_for_update()
                )
                key = (
                    MeetingSummaryModel.meeting_id == meeting_pk,
                    MeetingSummaryModel.recording_id == recording_id,
                )
                current = await session.scalar(
                    select(func.max(MeetingSummaryModel.version)).where(*key)
                )
                await session.execute(
                    update(MeetingSummaryModel)
                    .where(*key, MeetingSummaryModel.is_latest.is_(True))
                    .values(is_latest=False)
                )
                model = MeetingSummaryModel(
                    id=uuid.uuid4(),
                    meeting_id=meeting_pk,
                    recording_id=recording_id,
                    version=(current or 0) + 1,
                    is_latest=True,
                    **content.model_dump(),
                )
                session.add(model)
            return MeetingSummary(
                id=model.id,
                meeting_id=meeting_pk,
                recording_id=recording_id,
                version=model.version,
                is_latest=True,
                **content.model_dump(),
            )

    async def upsert_participant_summary(
        self,
        platform_user_id: uuid.UUID,
        meeting_pk: uuid.UUID,
        recording_id: uuid.UUID,
        summary: str,
    ) -> ParticipantSummary:
        """Store a new latest personalized summary for (user, meeting, recording)."""
        async for session in self._session_factory():
            async with session.begin():
                await session.execute(
                    select(PlatformUserModel.id)
                    .where(PlatformUserModel.id == platform_user_id)
                    .with_for_update()
                )
                key = (
                    ParticipantSummaryModel.platform_user_id == platform_user_id,
                    ParticipantSummaryModel.meeting_id == meeting_pk,
                    ParticipantSummaryModel.recording_id == recording_id,
                )
                current = await session.scalar(
                    select(func.max(ParticipantSummaryModel.version)).where(*key)
                )
                await session.execute(
                    update(ParticipantSummaryModel)
                    .where(*key, ParticipantSummaryModel.is_latest.is_(True))
                    .values(is_latest=False)
                )
                model = ParticipantSummaryModel(
                    id=uuid.uuid4(),
                    platform_user_id=platform_user_id,
                    meeting_id=meeting_pk,
                    recording_id=recording_id,
                    summary=summary,
                    version=(current or 0) + 1,
                    is_latest=True,
                )
                session.add(model)
            return ParticipantSummary(
                id=model.id,
                platform_user_id=platform_user_id,
                meeting_id=meeting_pk,
                recording_id=recording_id,
                summary=summary,
                version=model.version,
            )

    # ── Transcripts ──────────────────────────────────────────────────────

    async def transcript_exists(self, recording_id: uuid.UUID) -> bool:
        async for session in self._session_factory():
            found = await session.scalar(
                select(TranscriptModel.id).where(TranscriptModel.recording_id == recording_id)
            )
            return found is not None

    async def create_transcript(self, recording_id: uuid.UUID, full_text: str) -> uuid.UUID:
        async for session in self._session_factory():
            model = TranscriptModel(
                id=uuid.uuid4(),
                recording_id=recording_id,
                full_text=full_text,
                status=ProcessingStatus.PROCESSING.value,
            )
            session.add(model)
            await session.commit()
            return model.id

    async def set_transcript_status(
        self, transcript_id: uuid.UUID, status: ProcessingStatus
    ) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(TranscriptModel)
                .where(TranscriptModel.id == transcript_id)
                .values(status=status.value)
            )
            await session.commit()

    @asynccontextmanager
    async def transcript_batch(self) -> AsyncIterator[TranscriptBatchWriter]:
        """One transaction for one paragraph batch.

        Commits when the block exits cleanly; any exception rolls back every
        row written through the yielded writer.
        """
        async for session in self._session_factory():
            async with session.begin():
                yield TranscriptBatchWriter(session)
            return
