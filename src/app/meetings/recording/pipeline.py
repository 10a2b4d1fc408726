"""Recording pipeline -- one completed recording file, end to end.

Per file:
1. Fetch the participant roster, decode names, dedupe by uuid.
2. Fetch platform content (summary/minutes/todo) and the transcript
   concurrently; a failed branch degrades to empty strings.
3. Render the transcript as speaker-labelled lines.
4. Upsert the meeting and recording, then store a new latest meeting summary.
5. Ingest the paragraph/sentence/word hierarchy unless a transcript already
   exists for the recording, which makes re-delivery a no-op.
6. Mirror meeting, recording and users to Notion (best effort).
7. Generate a personalized summary for every roster participant who spoke.

Files in one notification are processed sequentially; a failure in one file
is logged and the next file still runs. Nothing here re-raises to the
webhook caller, which was acknowledged before the pipeline started.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field

import structlog

from src.app.core.monitoring import track_pipeline
from src.app.meetings.recording.batch import IngestStats, TranscriptBatchProcessor
from src.app.meetings.recording.content import (
    MeetingContent,
    TranscriptContent,
    fetch_meeting_content,
    fetch_transcript,
)
from src.app.meetings.recording.roster import fetch_roster
from src.app.meetings.recording.summaries import (
    ParticipantSummaryService,
    SummaryBatchResult,
    SummaryContext,
)
from src.app.meetings.repository import MeetingRepository
from src.app.meetings.schemas import MeetingSummaryContent, ProcessingStatus
from src.app.meetings.sync import MeetingSyncService
from src.app.services.notion import NotionMeetingStore
from src.app.services.tencent.client import TencentMeetingClient
from src.app.services.tencent.schemas import ParticipantDetail
from src.app.webhooks.schemas import EventPayload, MeetingInfo, RecordingFileRef

logger = structlog.get_logger(__name__)


@dataclass
class RecordingResult:
    record_file_id: str
    recording_id: uuid.UUID
    transcript_ingested: bool = False
    ingest_stats: IngestStats | None = None
    summaries: SummaryBatchResult = field(default_factory=SummaryBatchResult)


class RecordingPipeline:
    """Orchestrates ingestion of recording.completed notifications.

    Args:
        tencent_client: Meeting platform REST client.
        repository: Relational meeting store.
        batch_processor: Transcript hierarchy writer.
        summary_service: Per-participant summary generator.
        notion_store: Optional Notion mirror.
    """

    def __init__(
        self,
        tencent_client: TencentMeetingClient,
        repository: MeetingRepository,
        batch_processor: TranscriptBatchProcessor,
        summary_service: ParticipantSummaryService,
        notion_store: NotionMeetingStore | None = None,
    ) -> None:
        self._client = tencent_client
        self._repository = repository
        self._batch_processor = batch_processor
        self._summaries = summary_service
        self._notion = notion_store
        self._sync = MeetingSyncService(repository)

    async def process_payload(self, payload: EventPayload) -> list[RecordingResult]:
        """Run every referenced file in order, isolating failures per file."""
        info = payload.meeting_info
        results: list[RecordingResult] = []

        if not payload.recording_files:
            logger.info("recording.no_files", meeting_id=info.meeting_id)
            return results

        for recording_file in payload.recording_files:
            try:
                with track_pipeline():
                    results.append(await self.process_file(info, recording_file))
            except Exception:
                logger.error(
                    "recording.pipeline_failed",
                    meeting_id=info.meeting_id,
                    record_file_id=recording_file.record_file_id,
                    exc_info=True,
                )
        return results

    async def process_file(
        self, info: MeetingInfo, recording_file: RecordingFileRef
    ) -> RecordingResult:
        file_id = recording_file.record_file_id
        user_id = info.creator.userid
        log = logger.bind(meeting_id=info.meeting_id, record_file_id=file_id)
        log.info("recording.pipeline_started", subject=info.subject)

        roster = await fetch_roster(self._client, info.meeting_id, user_id, info.sub_meeting_id)
        content, transcript = await self._fetch_content(info, file_id, user_id)

        meeting = await self._sync.upsert_meeting_record(info)
        recording = await self._repository.upsert_recording(
            meeting.id, file_id, recording_file.lang
        )
        await self._repository.upsert_meeting_summary(
            meeting.id,
            recording.id,
            MeetingSummaryContent(
                full_summary=content.full_summary,
                ai_minutes=content.ai_minutes,
                todo=content.todo,
            ),
        )

        result = RecordingResult(record_file_id=file_id, recording_id=recording.id)
        result.ingest_stats = await self._ingest_transcript(recording.id, transcript, roster)
        result.transcript_ingested = result.ingest_stats is not None

        recording_page_id = await self._mirror_to_notion(info, file_id, content, transcript, roster)

        result.summaries = await self._summaries.generate_all(
            SummaryContext(
                meeting_pk=meeting.id,
                recording_id=recording.id,
                subject=info.subject,
                start_time=info.effective_start_time,
                end_time=info.effective_end_time,
                ai_minutes=content.ai_minutes,
                todo=content.todo,
                transcript=transcript.formatted,
                recording_page_id=recording_page_id,
            ),
            roster,
            transcript.speaker_names,
        )

        await self._repository.set_recording_status(recording.id, ProcessingStatus.COMPLETED)
        await self._repository.mark_recording_completed(meeting.id)
        log.info(
            "recording.pipeline_completed",
            transcript_ingested=result.transcript_ingested,
            summaries=len(result.summaries.succeeded),
            summary_failures=len(result.summaries.failed),
        )
        return result

    async def _fetch_content(
        self, info: MeetingInfo, file_id: str, user_id: str
    ) -> tuple[MeetingContent, TranscriptContent]:
        content_result, transcript_result = await asyncio.gather(
            fetch_meeting_content(self._client, file_id, user_id),
            fetch_transcript(self._client, file_id, user_id, meeting_id=info.meeting_id),
            return_exceptions=True,
        )

        if isinstance(content_result, BaseException):
            logger.warning(
                "recording.content_fetch_failed",
                record_file_id=file_id,
                error=str(content_result),
            )
            content_result = MeetingContent()
        if isinstance(transcript_result, BaseException):
            logger.warning(
                "recording.transcript_fetch_failed",
                record_file_id=file_id,
                error=str(transcript_result),
            )
            transcript_result = TranscriptContent()

        return content_result, transcript_result

    async def _ingest_transcript(
        self,
        recording_id: uuid.UUID,
        transcript: TranscriptContent,
        roster: list[ParticipantDetail],
    ) -> IngestStats | None:
        if await self._repository.transcript_exists(recording_id):
            logger.info("transcript.already_ingested", recording_id=str(recording_id))
            return None
        if not transcript.paragraphs:
            # An empty transcript row would block ingestion on re-delivery
            logger.info("transcript.empty_skipped", recording_id=str(recording_id))
            return None

        transcript_id = await self._repository.create_transcript(
            recording_id, transcript.formatted
        )
        try:
            stats = await self._batch_processor.ingest(
                transcript_id, transcript.paragraphs, roster
            )
        except Exception:
            await self._repository.set_transcript_status(transcript_id, ProcessingStatus.FAILED)
            raise
        await self._repository.set_transcript_status(transcript_id, ProcessingStatus.COMPLETED)
        return stats

    async def _mirror_to_notion(
        self,
        info: MeetingInfo,
        file_id: str,
        content: MeetingContent,
        transcript: TranscriptContent,
        roster: list[ParticipantDetail],
    ) -> str | None:
        """Write the Notion copies; returns the recording page id or None."""
        if self._notion is None:
            return None

        user_page_ids: list[str] = []
        for participant in roster:
            try:
                user_page_ids.append(
                    await self._notion.upsert_user(
                        uuid=participant.uuid,
                        userid=participant.userid,
                        user_name=participant.user_name,
                        phone=participant.phone or None,
                        is_enterprise_user=participant.is_enterprise_user,
                    )
                )
            except Exception as exc:
                logger.warning(
                    "recording.notion_user_failed",
                    participant=participant.user_name,
                    uuid=participant.uuid,
                    error=str(exc),
                )

        try:
            meeting_page_id = await self._notion.update_meeting_participants(info)
            return await self._notion.create_recording_file(
                record_file_id=file_id,
                meeting_page_id=meeting_page_id,
                meeting_info=info,
                full_summary=content.full_summary,
                ai_minutes=content.ai_minutes,
                todo=content.todo,
                transcript=transcript.formatted,
                participant_ids=user_page_ids,
            )
        except Exception as exc:
            logger.warning(
                "recording.notion_mirror_failed",
                record_file_id=file_id,
                error=str(exc),
            )
            return None
