"""Tests for speaker resolution and the transactional transcript batch writer.

Uses the InMemoryMeetingRepository from conftest: each transcript_batch()
commits on clean exit and discards its rows when the block raises.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.app.meetings.recording.batch import TranscriptBatchProcessor, chunked
from src.app.meetings.recording.speaker import SpeakerService, match_roster
from src.app.meetings.schemas import PlatformUserUpsert
from src.app.services.tencent.schemas import (
    ParticipantDetail,
    SpeakerInfo,
    TranscriptParagraph,
    TranscriptSentence,
    TranscriptWord,
)

ROSTER = [
    ParticipantDetail(
        userid="u-alice",
        uuid="uuid-alice",
        user_name="Alice",
        ms_open_id="ms-alice",
        phone="13800000000",
        ip="10.0.0.1",
        location="Shenzhen",
        net="wifi",
        instanceid="1",
        is_enterprise_user=True,
    ),
    ParticipantDetail(userid="u-bob", uuid="uuid-bob", user_name="Bob", open_id="open-bob"),
    ParticipantDetail(userid="", uuid="uuid-guest", user_name="Guest"),
]


def _paragraph(pid: int, speaker: SpeakerInfo | None, sentences: int = 1, words: int = 2) -> TranscriptParagraph:
    return TranscriptParagraph(
        pid=str(pid),
        start_time=pid * 10_000,
        end_time=pid * 10_000 + 5_000,
        speaker_info=speaker,
        sentences=[
            TranscriptSentence(
                sid=str(pid * 1000 + s),
                start_time=pid * 10_000 + s * 100,
                end_time=pid * 10_000 + s * 100 + 90,
                words=[
                    TranscriptWord(wid=str(pid * 100_000 + s * 100 + w), text=f"w{w}")
                    for w in range(words)
                ],
            )
            for s in range(sentences)
        ],
    )


# ── SpeakerService ───────────────────────────────────────────────────────────


class TestMatchRoster:
    def test_userid_takes_priority_over_name(self):
        speaker = SpeakerInfo(userid="u-bob", username="Alice")
        assert match_roster(speaker, ROSTER).uuid == "uuid-bob"

    def test_open_id_match(self):
        speaker = SpeakerInfo(open_id="open-bob", username="someone")
        assert match_roster(speaker, ROSTER).uuid == "uuid-bob"

    def test_open_id_accepts_platform_alias(self):
        speaker = SpeakerInfo.model_validate({"openId": "open-bob"})
        assert match_roster(speaker, ROSTER).uuid == "uuid-bob"

    def test_ms_open_id_match(self):
        speaker = SpeakerInfo(ms_open_id="ms-alice")
        assert match_roster(speaker, ROSTER).uuid == "uuid-alice"

    def test_falls_back_to_display_name(self):
        speaker = SpeakerInfo(username="Guest")
        assert match_roster(speaker, ROSTER).uuid == "uuid-guest"

    def test_empty_identifiers_never_match(self):
        # Guest has an empty userid; an empty speaker userid must not pair them
        speaker = SpeakerInfo(userid="", username="Nobody")
        assert match_roster(speaker, ROSTER) is None


class TestSpeakerEnrich:
    @pytest.mark.asyncio
    async def test_roster_match_copies_roster_attributes(self):
        service = SpeakerService()
        original = SpeakerInfo(userid="u-alice", username="Alice")

        enriched = await service.enrich(original, ROSTER)

        assert enriched.uuid == "uuid-alice"
        assert enriched.phone == "13800000000"
        assert enriched.location == "Shenzhen"
        assert enriched.is_enterprise_user is True
        assert original.uuid is None

    @pytest.mark.asyncio
    async def test_none_speaker_stays_none(self):
        assert await SpeakerService().enrich(None, ROSTER) is None

    @pytest.mark.asyncio
    async def test_store_fallback_by_user_id(self, repository):
        await repository.upsert_platform_user(
            PlatformUserUpsert(platform_uuid="uuid-dave", platform_user_id="u-dave", user_name="Dave")
        )
        service = SpeakerService(repository)

        enriched = await service.enrich(SpeakerInfo(userid="u-dave", username="D."), ROSTER)

        assert enriched.uuid == "uuid-dave"

    @pytest.mark.asyncio
    async def test_store_fallback_by_name(self, repository):
        await repository.upsert_platform_user(
            PlatformUserUpsert(platform_uuid="uuid-erin", user_name="Erin")
        )
        service = SpeakerService(repository)

        enriched = await service.enrich(SpeakerInfo(username="Erin"), ROSTER)

        assert enriched.uuid == "uuid-erin"

    @pytest.mark.asyncio
    async def test_store_failure_returns_original(self):
        store = MagicMock()
        store.find_platform_user_by_user_id = AsyncMock(side_effect=RuntimeError("db down"))
        service = SpeakerService(store)
        speaker = SpeakerInfo(userid="u-zed", username="Zed")

        assert await service.enrich(speaker, ROSTER) is speaker

    @pytest.mark.asyncio
    async def test_no_match_anywhere_returns_original(self, repository):
        speaker = SpeakerInfo(userid="u-zed", username="Zed")
        assert await SpeakerService(repository).enrich(speaker, ROSTER) is speaker


class TestResolveSpeakerId:
    @pytest.mark.asyncio
    async def test_creates_user_once_then_reuses(self, repository):
        service = SpeakerService(repository)
        speaker = SpeakerInfo(userid="u-bob", username="Bob")

        async with repository.transcript_batch() as writer:
            first = await service.resolve_speaker_id(writer, speaker, ROSTER)
            second = await service.resolve_speaker_id(writer, speaker, ROSTER)

        assert first == second
        assert repository.users["uuid-bob"].id == first

    @pytest.mark.asyncio
    async def test_unresolvable_speaker_has_no_id(self, repository):
        service = SpeakerService(repository)
        async with repository.transcript_batch() as writer:
            result = await service.resolve_speaker_id(writer, SpeakerInfo(username="Zed"), ROSTER)
        assert result is None
        assert repository.users == {}


# ── TranscriptBatchProcessor ─────────────────────────────────────────────────


def test_chunked_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(chunked([1, 2, 3], 0))


def test_chunked_keeps_remainder():
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]


class TestTranscriptBatchProcessor:
    @pytest.mark.asyncio
    async def test_paragraphs_committed_in_batches_of_fifteen(self, repository):
        processor = TranscriptBatchProcessor(repository, SpeakerService(repository))
        paragraphs = [
            _paragraph(i, SpeakerInfo(userid="u-alice", username="Alice"), sentences=2, words=3)
            for i in range(31)
        ]

        stats = await processor.ingest(uuid.uuid4(), paragraphs, ROSTER)

        assert stats.batches == 3
        assert repository.batches_committed == 3
        assert len(repository.paragraphs) == stats.paragraphs == 31
        assert len(repository.sentences) == stats.sentences == 62
        assert len(repository.words) == stats.words == 186

    @pytest.mark.asyncio
    async def test_hierarchy_links_and_word_positions(self, repository):
        processor = TranscriptBatchProcessor(repository, SpeakerService(repository))
        transcript_id = uuid.uuid4()

        await processor.ingest(
            transcript_id,
            [_paragraph(7, SpeakerInfo(userid="u-bob", username="Bob"), sentences=1, words=3)],
            ROSTER,
        )

        paragraph = repository.paragraphs[0]
        sentence = repository.sentences[0]
        assert paragraph["transcript_id"] == transcript_id
        assert paragraph["pid"] == 7
        assert paragraph["speaker_id"] == repository.users["uuid-bob"].id
        assert sentence["paragraph_id"] == paragraph["id"]
        assert sentence["text"] == "w0w1w2"
        assert [w["position"] for w in repository.words] == [0, 1, 2]
        assert {w["sentence_id"] for w in repository.words} == {sentence["id"]}

    @pytest.mark.asyncio
    async def test_sentences_flushed_in_chunks(self, repository):
        processor = TranscriptBatchProcessor(
            repository, SpeakerService(), sentence_batch_size=75
        )
        # 2 paragraphs x 50 sentences = 100 sentences in one paragraph batch
        paragraphs = [_paragraph(i, None, sentences=50, words=1) for i in range(2)]

        await processor.ingest(uuid.uuid4(), paragraphs, ROSTER)

        # one paragraph flush + two sentence chunks (75 + 25)
        assert repository.flushes == 3
        assert len(repository.sentences) == 100

    @pytest.mark.asyncio
    async def test_failed_batch_rolls_back_alone(self, repository):
        repository.fail_on_batch = 2
        processor = TranscriptBatchProcessor(repository, SpeakerService(repository))
        paragraphs = [_paragraph(i, SpeakerInfo(username="Alice")) for i in range(31)]

        with pytest.raises(RuntimeError, match="batch 2"):
            await processor.ingest(uuid.uuid4(), paragraphs, ROSTER)

        assert repository.batches_committed == 1
        assert [p["pid"] for p in repository.paragraphs] == list(range(15))

    @pytest.mark.asyncio
    async def test_custom_paragraph_batch_size(self, repository):
        processor = TranscriptBatchProcessor(
            repository, SpeakerService(), paragraph_batch_size=4
        )
        await processor.ingest(uuid.uuid4(), [_paragraph(i, None) for i in range(9)], ROSTER)
        assert repository.batches_committed == 3
