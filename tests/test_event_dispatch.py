"""Tests for event dispatch, the handler table, meeting sync and the worker.

Tests verify:
- Unknown events are logged and dropped
- Payload items are validated and handled independently
- build_handler_table covers every supported event
- meeting.started / meeting.end / participant-joined fan out to both stores
  with independent failure
- BackgroundWorker bounds concurrency, logs outcomes and drains on shutdown
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.app.meetings.sync import MeetingSyncService
from src.app.webhooks.dispatcher import EventDispatcher
from src.app.webhooks.handlers import (
    MeetingLifecycleHandler,
    RecordingCompletedHandler,
    SmartNotificationHandler,
    build_handler_table,
)
from src.app.webhooks.schemas import ROOT_SUB_MEETING_ID, Envelope, EventName, EventPayload
from src.app.webhooks.worker import BackgroundWorker


# ── Helpers ──────────────────────────────────────────────────────────────────


def _item(meeting_id: str = "m-1", **overrides) -> dict:
    item = {
        "operator": {"userid": "op-1", "uuid": "uuid-operator", "user_name": "Oscar"},
        "meeting_info": {
            "meeting_id": meeting_id,
            "meeting_code": "987654321",
            "subject": "Planning",
            "creator": {"userid": "creator-1", "uuid": "uuid-creator", "user_name": "Carol"},
            "meeting_type": 0,
            "start_time": 1700000000,
            "end_time": 1700001800,
        },
    }
    item.update(overrides)
    return item


class _RecordingHandler:
    """Handler double recording which payloads it saw."""

    def __init__(self, event: str, fail_on: set[str] | None = None) -> None:
        self.event = event
        self.fail_on = fail_on or set()
        self.seen: list[tuple[str, int]] = []

    def supports(self, event: str) -> bool:
        return event == self.event

    async def handle(self, payload: EventPayload, index: int) -> None:
        if payload.meeting_info.meeting_id in self.fail_on:
            raise RuntimeError("handler exploded")
        self.seen.append((payload.meeting_info.meeting_id, index))


def _notion_store() -> MagicMock:
    store = MagicMock()
    store.upsert_meeting_user = AsyncMock(return_value="page-user")
    store.update_meeting_participants = AsyncMock(return_value="page-meeting")
    return store


# ── EventDispatcher ──────────────────────────────────────────────────────────


class TestEventDispatcher:
    @pytest.mark.asyncio
    async def test_unknown_event_is_dropped(self):
        handler = _RecordingHandler("meeting.started")
        dispatcher = EventDispatcher([handler])

        result = await dispatcher.dispatch(Envelope(event="meeting.exploded", payload=[_item()]))

        assert result.unhandled is True
        assert handler.seen == []

    @pytest.mark.asyncio
    async def test_items_handled_in_order_with_index(self):
        handler = _RecordingHandler("meeting.started")
        envelope = Envelope(event="meeting.started", payload=[_item("m-1"), _item("m-2")])

        result = await EventDispatcher([handler]).dispatch(envelope)

        assert handler.seen == [("m-1", 0), ("m-2", 1)]
        assert (result.handled, result.failed) == (2, 0)

    @pytest.mark.asyncio
    async def test_failing_item_does_not_stop_the_rest(self):
        handler = _RecordingHandler("meeting.started", fail_on={"m-2"})
        envelope = Envelope(
            event="meeting.started", payload=[_item("m-1"), _item("m-2"), _item("m-3")]
        )

        result = await EventDispatcher([handler]).dispatch(envelope)

        assert handler.seen == [("m-1", 0), ("m-3", 2)]
        assert (result.handled, result.failed) == (2, 1)

    @pytest.mark.asyncio
    async def test_invalid_item_is_counted_and_skipped(self):
        handler = _RecordingHandler("meeting.started")
        envelope = Envelope(
            event="meeting.started", payload=[{"operator": {}}, _item("m-2")]
        )

        result = await EventDispatcher([handler]).dispatch(envelope)

        assert handler.seen == [("m-2", 1)]
        assert result.failed == 1

    def test_first_supporting_handler_wins(self):
        first = _RecordingHandler("meeting.end")
        second = _RecordingHandler("meeting.end")
        assert EventDispatcher([first, second]).get_handler("meeting.end") is first


class TestHandlerTable:
    def test_every_event_has_a_handler(self):
        table = build_handler_table(MagicMock(), MagicMock())
        assert set(table) == {e.value for e in EventName}
        for event, handler in table.items():
            assert handler.supports(event)

    def test_handler_types(self):
        table = build_handler_table(MagicMock(), MagicMock())
        assert isinstance(table["meeting.started"], MeetingLifecycleHandler)
        assert isinstance(table["recording.completed"], RecordingCompletedHandler)
        assert isinstance(table["smart.minutes"], SmartNotificationHandler)

    @pytest.mark.asyncio
    async def test_recording_handler_runs_pipeline(self):
        pipeline = MagicMock()
        pipeline.process_payload = AsyncMock(return_value=[])
        handler = RecordingCompletedHandler(pipeline)
        payload = EventPayload.model_validate(_item(recording_files=[{"record_file_id": "rf"}]))

        await handler.handle(payload, 0)

        pipeline.process_payload.assert_awaited_once_with(payload)

    @pytest.mark.asyncio
    async def test_smart_notifications_have_no_side_effects(self):
        sync = MagicMock()
        pipeline = MagicMock()
        table = build_handler_table(sync, pipeline)

        await table["smart.transcripts"].handle(EventPayload.model_validate(_item()), 0)

        assert sync.mock_calls == []
        assert pipeline.mock_calls == []


class TestDispatchThroughHandlerTable:
    """Real handlers from build_handler_table driven by the real dispatcher."""

    def _dispatcher(self) -> tuple[EventDispatcher, MagicMock, MagicMock]:
        sync = MagicMock()
        sync.on_meeting_lifecycle = AsyncMock(return_value=None)
        sync.on_participant_joined = AsyncMock(return_value=None)
        pipeline = MagicMock()
        pipeline.process_payload = AsyncMock(return_value=[])
        return EventDispatcher(build_handler_table(sync, pipeline).values()), sync, pipeline

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event", [e.value for e in EventName])
    async def test_every_event_is_handled_without_failure(self, event):
        dispatcher, _, _ = self._dispatcher()
        item = _item(recording_files=[{"record_file_id": "rf-1"}])

        result = await dispatcher.dispatch(Envelope(event=event, trace_id="t-1", payload=[item]))

        assert (result.handled, result.failed, result.unhandled) == (1, 0, False)

    @pytest.mark.asyncio
    async def test_events_reach_sync_and_pipeline(self):
        dispatcher, sync, pipeline = self._dispatcher()

        await dispatcher.dispatch(Envelope(event="meeting.started", payload=[_item()]))
        await dispatcher.dispatch(Envelope(event="meeting.end", payload=[_item()]))
        await dispatcher.dispatch(Envelope(event="meeting.participant-joined", payload=[_item()]))
        await dispatcher.dispatch(Envelope(event="recording.completed", payload=[_item()]))

        assert sync.on_meeting_lifecycle.await_count == 2
        sync.on_participant_joined.assert_awaited_once()
        pipeline.process_payload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_event_name_is_bound_to_dispatch_logs(self):
        dispatcher, _, _ = self._dispatcher()
        with patch("src.app.webhooks.dispatcher.logger") as logger:
            await dispatcher.dispatch(Envelope(event="smart.minutes", trace_id="t-9", payload=[]))

        assert logger.bind.call_args.kwargs == {"event_name": "smart.minutes", "trace_id": "t-9"}


# ── MeetingSyncService ───────────────────────────────────────────────────────


class TestMeetingSync:
    @pytest.mark.asyncio
    async def test_meeting_started_writes_both_stores(self, repository):
        notion = _notion_store()
        sync = MeetingSyncService(repository, notion)

        await sync.on_meeting_lifecycle(EventPayload.model_validate(_item()))

        meeting = repository.meetings[("m-1", ROOT_SUB_MEETING_ID)]
        assert meeting.title == "Planning"
        assert meeting.duration_seconds == 1800
        assert meeting.creator_id == repository.users["uuid-creator"].id
        upserted = [c.args[0].uuid for c in notion.upsert_meeting_user.await_args_list]
        assert sorted(upserted) == ["uuid-creator", "uuid-operator"]
        notion.update_meeting_participants.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_creator_not_upserted_twice_when_operator(self, repository):
        notion = _notion_store()
        item = _item(operator={"userid": "creator-1", "uuid": "uuid-creator", "user_name": "Carol"})

        await MeetingSyncService(repository, notion).on_meeting_lifecycle(
            EventPayload.model_validate(item)
        )

        assert notion.upsert_meeting_user.await_count == 1

    @pytest.mark.asyncio
    async def test_notion_failure_does_not_block_database(self, repository):
        notion = _notion_store()
        notion.update_meeting_participants = AsyncMock(side_effect=RuntimeError("notion down"))

        await MeetingSyncService(repository, notion).on_meeting_lifecycle(
            EventPayload.model_validate(_item())
        )

        assert ("m-1", ROOT_SUB_MEETING_ID) in repository.meetings

    @pytest.mark.asyncio
    async def test_repeated_event_keeps_one_meeting(self, repository):
        sync = MeetingSyncService(repository)
        payload = EventPayload.model_validate(_item())

        await sync.on_meeting_lifecycle(payload)
        await sync.on_meeting_lifecycle(payload)

        assert len(repository.meetings) == 1
        assert len(repository.users) == 1

    @pytest.mark.asyncio
    async def test_recurring_occurrences_are_separate_meetings(self, repository):
        sync = MeetingSyncService(repository)
        for sub in ("sub-1", "sub-2"):
            item = _item()
            item["meeting_info"]["sub_meeting_id"] = sub
            await sync.on_meeting_lifecycle(EventPayload.model_validate(item))

        assert set(repository.meetings) == {("m-1", "sub-1"), ("m-1", "sub-2")}

    @pytest.mark.asyncio
    async def test_participant_joined_upserts_operator(self, repository):
        notion = _notion_store()

        await MeetingSyncService(repository, notion).on_participant_joined(
            EventPayload.model_validate(_item())
        )

        assert repository.users["uuid-operator"].user_name == "Oscar"
        notion.update_meeting_participants.assert_awaited_once()


# ── BackgroundWorker ─────────────────────────────────────────────────────────


class TestBackgroundWorker:
    @pytest.mark.asyncio
    async def test_completion_is_logged(self):
        worker = BackgroundWorker()
        with patch("src.app.webhooks.worker.logger") as logger:
            await worker.submit(asyncio.sleep(0), name="ok-task")
        logger.info.assert_called_once()
        assert logger.info.call_args.args[0] == "worker.task_completed"

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self):
        async def boom():
            raise RuntimeError("boom")

        worker = BackgroundWorker()
        with patch("src.app.webhooks.worker.logger") as logger:
            await worker.submit(boom(), name="bad-task")
        assert logger.error.call_args.args[0] == "worker.task_failed"
        assert worker.pending == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        in_flight = 0
        peak = 0

        async def job():
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        worker = BackgroundWorker(max_concurrency=2)
        for i in range(6):
            worker.submit(job(), name=f"job-{i}")
        await worker.drain()

        assert peak == 2
        assert worker.pending == 0

    @pytest.mark.asyncio
    async def test_drain_cancels_after_timeout(self):
        worker = BackgroundWorker()
        task = worker.submit(asyncio.sleep(10), name="slow")

        await worker.drain(timeout=0.01)

        assert task.cancelled()

    def test_rejects_non_positive_concurrency(self):
        with pytest.raises(ValueError):
            BackgroundWorker(max_concurrency=0)
