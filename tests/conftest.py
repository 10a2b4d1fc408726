"""Shared fixtures for the meeting ingestion tests.

Provides:
- InMemoryMeetingRepository: MeetingRepository double whose
  transcript_batch() commits staged rows on clean exit and discards them on
  any exception, mirroring the real per-batch transaction

No database, Redis, Notion or LLM is reached from any test.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import pytest

from src.app.meetings.schemas import (
    Meeting,
    MeetingSummary,
    MeetingSummaryContent,
    MeetingUpsert,
    ParticipantSummary,
    PlatformUser,
    PlatformUserUpsert,
    ProcessingStatus,
    Recording,
)


# ── In-memory repository ─────────────────────────────────────────────────────


@dataclass
class _StagedBatch:
    users: dict[str, PlatformUser] = field(default_factory=dict)
    paragraphs: list[dict] = field(default_factory=list)
    sentences: list[dict] = field(default_factory=list)
    words: list[dict] = field(default_factory=list)


class InMemoryBatchWriter:
    """TranscriptBatchWriter double staging rows until the batch commits."""

    def __init__(self, repository: InMemoryMeetingRepository, batch_number: int) -> None:
        self._repository = repository
        self._batch_number = batch_number
        self.staged = _StagedBatch()

    async def upsert_speaker(self, data: PlatformUserUpsert) -> uuid.UUID:
        existing = self.staged.users.get(data.platform_uuid) or self._repository.users.get(
            data.platform_uuid
        )
        user = _merge_user(existing, data)
        self.staged.users[data.platform_uuid] = user
        return user.id

    async def find_speaker_by_uuid(self, platform_uuid: str) -> uuid.UUID | None:
        user = self.staged.users.get(platform_uuid) or self._repository.users.get(platform_uuid)
        return user.id if user is not None else None

    def add_paragraph(self, **values) -> uuid.UUID:
        row = {"id": uuid.uuid4(), **values}
        self.staged.paragraphs.append(row)
        return row["id"]

    def add_sentence(self, **values) -> uuid.UUID:
        row = {"id": uuid.uuid4(), **values}
        self.staged.sentences.append(row)
        return row["id"]

    async def add_words(self, sentence_id: uuid.UUID, words: list[dict]) -> None:
        for position, word in enumerate(words):
            self.staged.words.append(
                {"id": uuid.uuid4(), "sentence_id": sentence_id, "position": position, **word}
            )

    async def flush(self) -> None:
        self._repository.flushes += 1
        if self._batch_number == self._repository.fail_on_batch:
            raise RuntimeError(f"simulated failure in batch {self._batch_number}")


def _merge_user(existing: PlatformUser | None, data: PlatformUserUpsert) -> PlatformUser:
    provided = data.model_dump(exclude_none=True, exclude={"platform_uuid"})
    if existing is None:
        return PlatformUser(id=uuid.uuid4(), platform_uuid=data.platform_uuid, **provided)
    return existing.model_copy(update=provided)


class InMemoryMeetingRepository:
    """MeetingRepository double keyed exactly like the real unique constraints."""

    def __init__(self) -> None:
        self.users: dict[str, PlatformUser] = {}
        self.meetings: dict[tuple[str, str], Meeting] = {}
        self.recordings: dict[tuple[uuid.UUID, str], Recording] = {}
        self.meeting_summaries: list[MeetingSummary] = []
        self.participant_summaries: list[ParticipantSummary] = []
        self.transcripts: dict[uuid.UUID, dict] = {}
        self.paragraphs: list[dict] = []
        self.sentences: list[dict] = []
        self.words: list[dict] = []
        self.completed_meetings: set[uuid.UUID] = set()
        self.batches_started = 0
        self.batches_committed = 0
        self.flushes = 0
        self.fail_on_batch: int | None = None

    # Platform users

    async def upsert_platform_user(self, data: PlatformUserUpsert) -> PlatformUser:
        if not data.platform_uuid:
            raise ValueError("platform_uuid is required to upsert a user")
        user = _merge_user(self.users.get(data.platform_uuid), data)
        self.users[data.platform_uuid] = user
        return user

    async def find_platform_user_by_user_id(self, user_id: str) -> PlatformUser | None:
        return next((u for u in self.users.values() if u.platform_user_id == user_id), None)

    async def find_platform_user_by_name(self, user_name: str) -> PlatformUser | None:
        return next((u for u in self.users.values() if u.user_name == user_name), None)

    # Meetings and recordings

    async def upsert_meeting(self, data: MeetingUpsert) -> Meeting:
        key = (data.meeting_id, data.sub_meeting_id)
        existing = self.meetings.get(key)
        values = data.model_dump()
        values["duration_seconds"] = data.duration_seconds
        if existing is None:
            meeting = Meeting(id=uuid.uuid4(), **values)
        else:
            meeting = existing.model_copy(update=values)
        self.meetings[key] = meeting
        return meeting

    async def find_meeting(self, meeting_id: str, sub_meeting_id: str) -> Meeting | None:
        return self.meetings.get((meeting_id, sub_meeting_id))

    async def mark_recording_completed(self, meeting_pk: uuid.UUID) -> None:
        self.completed_meetings.add(meeting_pk)

    async def upsert_recording(
        self, meeting_pk: uuid.UUID, external_file_id: str, language: str | None = None
    ) -> Recording:
        key = (meeting_pk, external_file_id)
        recording = self.recordings.get(key)
        if recording is None:
            recording = Recording(
                id=uuid.uuid4(),
                meeting_id=meeting_pk,
                external_file_id=external_file_id,
                language=language,
                status=ProcessingStatus.PROCESSING,
            )
        else:
            recording = recording.model_copy(update={"language": language})
        self.recordings[key] = recording
        return recording

    async def set_recording_status(self, recording_id: uuid.UUID, status: ProcessingStatus) -> None:
        for key, recording in self.recordings.items():
            if recording.id == recording_id:
                self.recordings[key] = recording.model_copy(update={"status": status})

    # Summaries

    async def upsert_meeting_summary(
        self, meeting_pk: uuid.UUID, recording_id: uuid.UUID, content: MeetingSummaryContent
    ) -> MeetingSummary:
        versions = [
            s for s in self.meeting_summaries
            if s.meeting_id == meeting_pk and s.recording_id == recording_id
        ]
        for previous in versions:
            previous.is_latest = False
        summary = MeetingSummary(
            id=uuid.uuid4(),
            meeting_id=meeting_pk,
            recording_id=recording_id,
            version=len(versions) + 1,
            **content.model_dump(),
        )
        self.meeting_summaries.append(summary)
        return summary

    async def upsert_participant_summary(
        self,
        platform_user_id: uuid.UUID,
        meeting_pk: uuid.UUID,
        recording_id: uuid.UUID,
        summary: str,
    ) -> ParticipantSummary:
        versions = [
            s for s in self.participant_summaries
            if (s.platform_user_id, s.meeting_id, s.recording_id)
            == (platform_user_id, meeting_pk, recording_id)
        ]
        for previous in versions:
            previous.is_latest = False
        row = ParticipantSummary(
            id=uuid.uuid4(),
            platform_user_id=platform_user_id,
            meeting_id=meeting_pk,
            recording_id=recording_id,
            summary=summary,
            version=len(versions) + 1,
        )
        self.participant_summaries.append(row)
        return row

    def latest_participant_summaries(self) -> list[ParticipantSummary]:
        return [s for s in self.participant_summaries if s.is_latest]

    # Transcripts

    async def transcript_exists(self, recording_id: uuid.UUID) -> bool:
        return any(t["recording_id"] == recording_id for t in self.transcripts.values())

    async def create_transcript(self, recording_id: uuid.UUID, full_text: str) -> uuid.UUID:
        transcript_id = uuid.uuid4()
        self.transcripts[transcript_id] = {
            "recording_id": recording_id,
            "full_text": full_text,
            "status": ProcessingStatus.PROCESSING,
        }
        return transcript_id

    async def set_transcript_status(
        self, transcript_id: uuid.UUID, status: ProcessingStatus
    ) -> None:
        self.transcripts[transcript_id]["status"] = status

    @asynccontextmanager
    async def transcript_batch(self):
        self.batches_started += 1
        writer = InMemoryBatchWriter(self, self.batches_started)
        yield writer
        # Only reached when the block exits cleanly: commit
        self.users.update(writer.staged.users)
        self.paragraphs.extend(writer.staged.paragraphs)
        self.sentences.extend(writer.staged.sentences)
        self.words.extend(writer.staged.words)
        self.batches_committed += 1


@pytest.fixture
def repository() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()

