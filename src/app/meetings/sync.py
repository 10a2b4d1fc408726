"""Meeting lifecycle sync for the simple webhook events.

meeting.started / meeting.end / meeting.participant-joined each fan out a
few independent writes to two stores: the relational database and the
Notion mirror. Writes run concurrently with ``return_exceptions=True``; a
failed branch is logged and the others still land. There is no
compensation between stores.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable
from datetime import datetime, timezone

import structlog

from src.app.meetings.repository import MeetingRepository
from src.app.meetings.schemas import (
    Meeting,
    MeetingUpsert,
    PlatformUserUpsert,
    map_meeting_type,
)
from src.app.services.notion import NotionMeetingStore
from src.app.webhooks.schemas import EventPayload, MeetingInfo, MeetingUser

logger = structlog.get_logger(__name__)


def _from_epoch(seconds: int) -> datetime | None:
    if not seconds:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def meeting_upsert_from_info(
    info: MeetingInfo, creator_id: uuid.UUID | None = None
) -> MeetingUpsert:
    """Map a webhook meeting block onto the relational meeting upsert."""
    return MeetingUpsert(
        meeting_id=info.meeting_id,
        sub_meeting_id=info.sub_meeting_key,
        title=info.subject,
        meeting_code=info.meeting_code,
        meeting_type=map_meeting_type(info.meeting_type),
        start_at=_from_epoch(info.effective_start_time),
        end_at=_from_epoch(info.effective_end_time),
        creator_id=creator_id,
    )


def user_upsert_from_meeting_user(user: MeetingUser) -> PlatformUserUpsert:
    platform_data = {
        k: v
        for k, v in {"instance_id": user.instance_id, "ms_open_id": user.ms_open_id}.items()
        if v
    }
    return PlatformUserUpsert(
        platform_uuid=user.uuid,
        platform_user_id=user.userid or None,
        user_name=user.user_name or None,
        platform_data=platform_data or None,
    )


class MeetingSyncService:
    """Writes meeting and user records for lifecycle events.

    Args:
        repository: Relational meeting store.
        notion_store: Optional Notion mirror. When None only the database
            branches run.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        notion_store: NotionMeetingStore | None = None,
    ) -> None:
        self._repository = repository
        self._notion = notion_store

    async def upsert_meeting_record(self, info: MeetingInfo) -> Meeting:
        """Upsert the creator identity, then the meeting linked to it."""
        creator_id = None
        if info.creator.uuid:
            creator = await self._repository.upsert_platform_user(
                user_upsert_from_meeting_user(info.creator)
            )
            creator_id = creator.id
        return await self._repository.upsert_meeting(
            meeting_upsert_from_info(info, creator_id=creator_id)
        )

    async def on_meeting_lifecycle(self, payload: EventPayload) -> None:
        """meeting.started and meeting.end."""
        info = payload.meeting_info
        operator = payload.operator
        branches: dict[str, Awaitable] = {}

        if self._notion is not None:
            if operator is not None and operator.uuid:
                branches["notion_operator"] = self._notion.upsert_meeting_user(operator)
            if info.creator.uuid and (operator is None or info.creator.uuid != operator.uuid):
                branches["notion_creator"] = self._notion.upsert_meeting_user(info.creator)
            branches["notion_participants"] = self._notion.update_meeting_participants(
                info, operator
            )

        branches["db_meeting"] = self.upsert_meeting_record(info)
        await self._run_isolated(info, branches)

    async def on_participant_joined(self, payload: EventPayload) -> None:
        info = payload.meeting_info
        operator = payload.operator
        branches: dict[str, Awaitable] = {}

        if operator is not None and operator.uuid:
            branches["db_operator"] = self._repository.upsert_platform_user(
                user_upsert_from_meeting_user(operator)
            )

        if self._notion is not None:
            if operator is not None and operator.uuid:
                branches["notion_operator"] = self._notion.upsert_meeting_user(operator)
            if info.creator.uuid:
                branches["notion_creator"] = self._notion.upsert_meeting_user(info.creator)
            branches["notion_participants"] = self._notion.update_meeting_participants(
                info, operator
            )

        if not branches:
            logger.debug("meeting.participant_sync_skipped", meeting_id=info.meeting_id)
            return
        await self._run_isolated(info, branches)

    async def _run_isolated(self, info: MeetingInfo, branches: dict[str, Awaitable]) -> None:
        outcomes = await asyncio.gather(*branches.values(), return_exceptions=True)
        results = dict(zip(branches, outcomes))
        failed = [name for name, result in results.items() if isinstance(result, BaseException)]
        for name in failed:
            logger.warning(
                "meeting.sync_branch_failed",
                meeting_id=info.meeting_id,
                branch=name,
                error=str(results[name]),
            )
        logger.info(
            "meeting.synced",
            meeting_id=info.meeting_id,
            sub_meeting_id=info.sub_meeting_key,
            branches=len(results),
            failed=len(failed),
        )
