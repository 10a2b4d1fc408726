"""Transactional batch writer for the paragraph -> sentence -> word hierarchy.

Paragraphs are written in batches (default 15). Each batch is one
transaction: resolve each paragraph's speaker, insert the paragraphs, then
insert the batch's sentences in chunks (default 75) with their words. A
failing batch rolls back alone; batches committed before it stay committed.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import TypeVar

import structlog

from src.app.meetings.recording.speaker import SpeakerService
from src.app.meetings.repository import MeetingRepository
from src.app.services.tencent.schemas import (
    ParticipantDetail,
    TranscriptParagraph,
    TranscriptSentence,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_PARAGRAPH_BATCH_SIZE = 15
DEFAULT_SENTENCE_BATCH_SIZE = 75


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass
class IngestStats:
    batches: int = 0
    paragraphs: int = 0
    sentences: int = 0
    words: int = 0


class TranscriptBatchProcessor:
    """Writes a fetched transcript into the relational store.

    Args:
        repository: Provides ``transcript_batch()`` transactions.
        speaker_service: Resolves or creates the speaker of each paragraph.
        paragraph_batch_size: Paragraphs per transaction.
        sentence_batch_size: Sentences flushed together within a transaction.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        speaker_service: SpeakerService,
        *,
        paragraph_batch_size: int = DEFAULT_PARAGRAPH_BATCH_SIZE,
        sentence_batch_size: int = DEFAULT_SENTENCE_BATCH_SIZE,
    ) -> None:
        self._repository = repository
        self._speakers = speaker_service
        self._paragraph_batch_size = paragraph_batch_size
        self._sentence_batch_size = sentence_batch_size

    async def ingest(
        self,
        transcript_id: uuid.UUID,
        paragraphs: list[TranscriptParagraph],
        roster: list[ParticipantDetail],
    ) -> IngestStats:
        """Persist every paragraph batch in order.

        Raises whatever the failing batch raised; earlier batches remain
        committed.
        """
        stats = IngestStats()

        for batch_number, batch in enumerate(
            chunked(paragraphs, self._paragraph_batch_size), start=1
        ):
            sentences, words = await self._write_batch(transcript_id, batch, roster)
            stats.batches += 1
            stats.paragraphs += len(batch)
            stats.sentences += sentences
            stats.words += words
            logger.debug(
                "transcript.batch_committed",
                transcript_id=str(transcript_id),
                batch=batch_number,
                paragraphs=len(batch),
                sentences=sentences,
            )

        logger.info(
            "transcript.ingested",
            transcript_id=str(transcript_id),
            batches=stats.batches,
            paragraphs=stats.paragraphs,
            sentences=stats.sentences,
            words=stats.words,
        )
        return stats

    async def _write_batch(
        self,
        transcript_id: uuid.UUID,
        batch: Sequence[TranscriptParagraph],
        roster: list[ParticipantDetail],
    ) -> tuple[int, int]:
        sentence_count = 0
        word_count = 0

        async with self._repository.transcript_batch() as writer:
            pending: list[tuple[uuid.UUID, TranscriptSentence]] = []
            for paragraph in batch:
                speaker_id = await self._speakers.resolve_speaker_id(
                    writer, paragraph.speaker_info, roster
                )
                paragraph_id = writer.add_paragraph(
                    transcript_id=transcript_id,
                    pid=int(paragraph.pid),
                    start_time_ms=paragraph.start_time,
                    end_time_ms=paragraph.end_time,
                    speaker_id=speaker_id,
                )
                pending.extend((paragraph_id, sentence) for sentence in paragraph.sentences)
            await writer.flush()

            for chunk in chunked(pending, self._sentence_batch_size):
                written: list[tuple[uuid.UUID, TranscriptSentence]] = []
                for paragraph_id, sentence in chunk:
                    sentence_id = writer.add_sentence(
                        paragraph_id=paragraph_id,
                        sid=int(sentence.sid),
                        start_time_ms=sentence.start_time,
                        end_time_ms=sentence.end_time,
                        text=sentence.text,
                    )
                    written.append((sentence_id, sentence))
                await writer.flush()

                for sentence_id, sentence in written:
                    await writer.add_words(
                        sentence_id,
                        [
                            {
                                "wid": int(word.wid),
                                "start_time_ms": word.start_time,
                                "end_time_ms": word.end_time,
                                "text": word.text,
                            }
                            for word in sentence.words
                        ],
                    )
                    word_count += len(sentence.words)
                sentence_count += len(chunk)

        return sentence_count, word_count
