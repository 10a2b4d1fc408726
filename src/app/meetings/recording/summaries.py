"""Personalized per-participant meeting summaries.

Only roster participants whose display name appears among the transcript's
detected speakers get a summary. Generations run concurrently under a
semaphore (default 5 in flight). Every participant's outcome is isolated:
failures are collected with the participant's identity and never abort the
rest of the batch.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field

import structlog

from src.app.core.monitoring import participant_summaries_total
from src.app.meetings.recording.prompts import (
    PARTICIPANT_SUMMARY_SYSTEM_PROMPT,
    build_participant_summary_prompt,
)
from src.app.meetings.repository import MeetingRepository
from src.app.meetings.schemas import PlatformUserUpsert
from src.app.services.llm import LLMService
from src.app.services.notion import NotionMeetingStore
from src.app.services.tencent.schemas import ParticipantDetail

logger = structlog.get_logger(__name__)

DEFAULT_SUMMARY_CONCURRENCY = 5


@dataclass
class SummaryContext:
    """Everything a participant prompt and its persistence need."""

    meeting_pk: uuid.UUID
    recording_id: uuid.UUID
    subject: str
    start_time: int
    end_time: int
    ai_minutes: str = ""
    todo: str = ""
    transcript: str = ""
    recording_page_id: str | None = None


@dataclass
class GeneratedSummary:
    uuid: str
    user_id: str
    user_name: str
    summary: str


@dataclass
class FailedSummary:
    user_name: str
    uuid: str
    reason: str


@dataclass
class SummaryBatchResult:
    succeeded: list[GeneratedSummary] = field(default_factory=list)
    failed: list[FailedSummary] = field(default_factory=list)


def select_speaking_participants(
    roster: list[ParticipantDetail], speaker_names: list[str]
) -> list[ParticipantDetail]:
    """Roster entries whose display name was detected as a speaker."""
    spoken = set(speaker_names)
    return [p for p in roster if p.user_name and p.user_name in spoken]


class ParticipantSummaryService:
    """Generates and stores one summary per speaking participant.

    Args:
        llm: Completion service exposing ``ask(prompt, system)``.
        repository: Relational store for users and summary versions.
        notion_store: Optional Notion mirror; failures there are logged only.
        concurrency: Maximum generations in flight.
    """

    def __init__(
        self,
        llm: LLMService,
        repository: MeetingRepository,
        notion_store: NotionMeetingStore | None = None,
        *,
        concurrency: int = DEFAULT_SUMMARY_CONCURRENCY,
    ) -> None:
        self._llm = llm
        self._repository = repository
        self._notion = notion_store
        self._concurrency = concurrency

    async def generate_all(
        self,
        context: SummaryContext,
        roster: list[ParticipantDetail],
        speaker_names: list[str],
    ) -> SummaryBatchResult:
        participants = select_speaking_participants(roster, speaker_names)
        result = SummaryBatchResult()
        if not participants:
            logger.info(
                "summary.no_speaking_participants",
                recording_id=str(context.recording_id),
                speakers=len(speaker_names),
            )
            return result

        semaphore = asyncio.Semaphore(self._concurrency)
        outcomes = await asyncio.gather(
            *(self._generate_one(semaphore, context, p) for p in participants),
            return_exceptions=True,
        )

        for participant, outcome in zip(participants, outcomes):
            if isinstance(outcome, BaseException):
                participant_summaries_total.labels(outcome="error").inc()
                logger.warning(
                    "summary.generation_failed",
                    participant=participant.user_name,
                    uuid=participant.uuid,
                    error=str(outcome),
                )
                result.failed.append(
                    FailedSummary(
                        user_name=participant.user_name,
                        uuid=participant.uuid,
                        reason=str(outcome),
                    )
                )
            else:
                participant_summaries_total.labels(outcome="success").inc()
                result.succeeded.append(outcome)

        logger.info(
            "summary.batch_completed",
            recording_id=str(context.recording_id),
            total=len(participants),
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            failed_participants=[f.user_name for f in result.failed],
        )
        return result

    async def _generate_one(
        self,
        semaphore: asyncio.Semaphore,
        context: SummaryContext,
        participant: ParticipantDetail,
    ) -> GeneratedSummary:
        prompt = build_participant_summary_prompt(
            subject=context.subject,
            start_time=context.start_time,
            end_time=context.end_time,
            username=participant.user_name,
            ai_minutes=context.ai_minutes,
            todo=context.todo,
            transcript=context.transcript,
        )

        async with semaphore:
            summary = await self._llm.ask(
                prompt,
                PARTICIPANT_SUMMARY_SYSTEM_PROMPT,
                metadata={"participant_uuid": participant.uuid},
            )

        user = await self._repository.upsert_platform_user(
            PlatformUserUpsert(
                platform_uuid=participant.uuid,
                platform_user_id=participant.userid or None,
                user_name=participant.user_name or None,
                phone=participant.phone or None,
                is_enterprise_user=participant.is_enterprise_user,
            )
        )
        await self._repository.upsert_participant_summary(
            user.id, context.meeting_pk, context.recording_id, summary
        )

        if self._notion is not None:
            await self._mirror_to_notion(context, participant, summary)

        logger.info(
            "summary.generated",
            participant=participant.user_name,
            uuid=participant.uuid,
        )
        return GeneratedSummary(
            uuid=participant.uuid,
            user_id=participant.userid,
            user_name=participant.user_name,
            summary=summary,
        )

    async def _mirror_to_notion(
        self,
        context: SummaryContext,
        participant: ParticipantDetail,
        summary: str,
    ) -> None:
        try:
            user_page_ids = await self._notion.find_user_ids_by_uuid(participant.uuid)
            await self._notion.create_participant_summary(
                title=f"{participant.user_name} - {context.subject}",
                participant_ids=user_page_ids,
                recording_page_id=context.recording_page_id,
                summary=summary,
            )
        except Exception as exc:
            logger.warning(
                "summary.notion_mirror_failed",
                participant=participant.user_name,
                uuid=participant.uuid,
                error=str(exc),
            )
