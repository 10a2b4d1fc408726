"""Webhook event handlers and the event -> handler table.

Each handler serves exactly one event name. The table is built once at
startup by ``build_handler_table``; the dispatcher consumes its values in
declaration order.
"""

from __future__ import annotations

import structlog

from src.app.meetings.recording.pipeline import RecordingPipeline
from src.app.meetings.sync import MeetingSyncService
from src.app.webhooks.dispatcher import EventHandler
from src.app.webhooks.schemas import EventName, EventPayload

logger = structlog.get_logger(__name__)


def _log_processing(event: str, payload: EventPayload, index: int) -> None:
    info = payload.meeting_info
    logger.info(
        "webhook.event_processing",
        event_name=event,
        index=index,
        meeting_id=info.meeting_id,
        meeting_code=info.meeting_code,
        subject=info.subject,
    )


class MeetingLifecycleHandler:
    """meeting.started and meeting.end: user and meeting upserts in both stores."""

    def __init__(self, event: EventName, sync: MeetingSyncService) -> None:
        self.event = event.value
        self._sync = sync

    def supports(self, event: str) -> bool:
        return event == self.event

    async def handle(self, payload: EventPayload, index: int) -> None:
        _log_processing(self.event, payload, index)
        await self._sync.on_meeting_lifecycle(payload)


class ParticipantJoinedHandler:
    event = EventName.PARTICIPANT_JOINED.value

    def __init__(self, sync: MeetingSyncService) -> None:
        self._sync = sync

    def supports(self, event: str) -> bool:
        return event == self.event

    async def handle(self, payload: EventPayload, index: int) -> None:
        _log_processing(self.event, payload, index)
        await self._sync.on_participant_joined(payload)


class RecordingCompletedHandler:
    """Runs the recording pipeline for every file in the payload."""

    event = EventName.RECORDING_COMPLETED.value

    def __init__(self, pipeline: RecordingPipeline) -> None:
        self._pipeline = pipeline

    def supports(self, event: str) -> bool:
        return event == self.event

    async def handle(self, payload: EventPayload, index: int) -> None:
        _log_processing(self.event, payload, index)
        await self._pipeline.process_payload(payload)


class SmartNotificationHandler:
    """smart.* notifications: acknowledged and logged, no side effects."""

    def __init__(self, event: EventName) -> None:
        self.event = event.value

    def supports(self, event: str) -> bool:
        return event == self.event

    async def handle(self, payload: EventPayload, index: int) -> None:
        logger.info(
            "webhook.smart_notification",
            event_name=self.event,
            index=index,
            meeting_id=payload.meeting_info.meeting_id,
            subject=payload.meeting_info.subject,
            record_file_ids=[f.record_file_id for f in payload.recording_files],
        )


def build_handler_table(
    sync: MeetingSyncService, pipeline: RecordingPipeline
) -> dict[str, EventHandler]:
    return {
        EventName.MEETING_STARTED.value: MeetingLifecycleHandler(EventName.MEETING_STARTED, sync),
        EventName.MEETING_ENDED.value: MeetingLifecycleHandler(EventName.MEETING_ENDED, sync),
        EventName.PARTICIPANT_JOINED.value: ParticipantJoinedHandler(sync),
        EventName.RECORDING_COMPLETED.value: RecordingCompletedHandler(pipeline),
        EventName.SMART_FULLSUMMARY.value: SmartNotificationHandler(EventName.SMART_FULLSUMMARY),
        EventName.SMART_TRANSCRIPTS.value: SmartNotificationHandler(EventName.SMART_TRANSCRIPTS),
        EventName.SMART_MINUTES.value: SmartNotificationHandler(EventName.SMART_MINUTES),
    }
