"""Notion workspace mirror for meetings, users, recordings and summaries.

The relational database is the system of record; this adapter keeps a
denormalized, human-browsable copy in four Notion databases:

- Users: one page per platform user, keyed by the stable uuid
- Meetings: one page per (meeting_id, sub_meeting_id), relating creator and
  participant user pages
- Recording files: one page per record_file_id with the platform's summary,
  minutes, todo and the formatted transcript
- Participant summaries: one page per participant and recording

Every write is search-then-create-or-update and returns the opaque Notion
page id. Calls are wrapped with tenacity retry + exponential backoff.
Unlike the relational writes, failures here propagate to the caller, which
decides whether to degrade (handlers fan out with independent failure).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from notion_client import AsyncClient
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.app.meetings.schemas import meeting_type_label
from src.app.webhooks.schemas import ROOT_SUB_MEETING_ID, MeetingInfo, MeetingUser

logger = structlog.get_logger(__name__)

# Notion caps a single rich_text content object at 2000 characters and a
# property at 100 objects
_TEXT_CHUNK = 2000
_MAX_TEXT_OBJECTS = 100

_notion_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(Exception),
    reraise=True,
)


# ── Property Mappings ─────────────────────────────────────────────────────

USER_PROPERTY_MAP: dict[str, dict[str, str]] = {
    "user_name": {"notion_name": "Name", "type": "title"},
    "uuid": {"notion_name": "UUID", "type": "rich_text"},
    "userid": {"notion_name": "User ID", "type": "rich_text"},
    "phone": {"notion_name": "Phone", "type": "rich_text"},
    "is_enterprise_user": {"notion_name": "Enterprise User", "type": "checkbox"},
}

MEETING_PROPERTY_MAP: dict[str, dict[str, str]] = {
    "subject": {"notion_name": "Subject", "type": "title"},
    "platform": {"notion_name": "Platform", "type": "select"},
    "meeting_id": {"notion_name": "Meeting ID", "type": "rich_text"},
    "sub_meeting_id": {"notion_name": "Sub Meeting ID", "type": "rich_text"},
    "meeting_code": {"notion_name": "Meeting Code", "type": "rich_text"},
    "start_time": {"notion_name": "Start Time", "type": "date"},
    "end_time": {"notion_name": "End Time", "type": "date"},
    "meeting_type": {"notion_name": "Meeting Type", "type": "select"},
    "creator": {"notion_name": "Creator", "type": "relation"},
    "participants": {"notion_name": "Participants", "type": "relation"},
}

RECORDING_PROPERTY_MAP: dict[str, dict[str, str]] = {
    "record_file_id": {"notion_name": "Record File ID", "type": "title"},
    "meeting": {"notion_name": "Meeting", "type": "relation"},
    "subject": {"notion_name": "Subject", "type": "rich_text"},
    "start_time": {"notion_name": "Start Time", "type": "date"},
    "end_time": {"notion_name": "End Time", "type": "date"},
    "full_summary": {"notion_name": "Full Summary", "type": "rich_text"},
    "ai_minutes": {"notion_name": "AI Minutes", "type": "rich_text"},
    "todo": {"notion_name": "Todo", "type": "rich_text"},
    "transcript": {"notion_name": "Transcript", "type": "rich_text"},
    "participants": {"notion_name": "Participants", "type": "relation"},
}

SUMMARY_PROPERTY_MAP: dict[str, dict[str, str]] = {
    "title": {"notion_name": "Title", "type": "title"},
    "participant": {"notion_name": "Participant", "type": "relation"},
    "recording_file": {"notion_name": "Recording File", "type": "relation"},
    "summary": {"notion_name": "Summary", "type": "rich_text"},
}


# ── Conversion Helpers ────────────────────────────────────────────────────


def _text_objects(value: str) -> list[dict]:
    chunks = [value[i : i + _TEXT_CHUNK] for i in range(0, len(value), _TEXT_CHUNK)]
    return [{"text": {"content": c}} for c in chunks[:_MAX_TEXT_OBJECTS]]


def _epoch_to_iso(seconds: int) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


def to_notion_properties(
    data: dict[str, Any],
    property_map: dict[str, dict[str, str]],
) -> dict[str, Any]:
    """Convert an internal field dict to the Notion API ``properties`` format.

    ``None`` values are skipped. Relations take a list of page ids.
    """
    properties: dict[str, Any] = {}

    for field_name, value in data.items():
        if field_name not in property_map or value is None:
            continue

        mapping = property_map[field_name]
        notion_name = mapping["notion_name"]
        prop_type = mapping["type"]

        if prop_type == "title":
            properties[notion_name] = {"title": _text_objects(str(value))}
        elif prop_type == "rich_text":
            properties[notion_name] = {"rich_text": _text_objects(str(value))}
        elif prop_type == "select":
            properties[notion_name] = {"select": {"name": str(value)}}
        elif prop_type == "date":
            date_str = value if isinstance(value, str) else value.isoformat()
            properties[notion_name] = {"date": {"start": date_str}}
        elif prop_type == "checkbox":
            properties[notion_name] = {"checkbox": bool(value)}
        elif prop_type == "relation":
            properties[notion_name] = {"relation": [{"id": pid} for pid in value]}

    return properties


def relation_ids(page: dict, notion_name: str) -> list[str]:
    """Page ids linked through a relation property of ``page``."""
    prop = page.get("properties", {}).get(notion_name, {})
    return [item["id"] for item in prop.get("relation", []) if item.get("id")]


def _equals(notion_name: str, value: str) -> dict:
    return {"property": notion_name, "rich_text": {"equals": value}}


# ── Notion Meeting Store ──────────────────────────────────────────────────


class NotionMeetingStore:
    """Search-then-create-or-update access to the four meeting databases.

    Args:
        notion_client: Pre-authenticated Notion AsyncClient instance.
        meeting_database_id: Meetings database (keyword-only).
        user_database_id: Users database (keyword-only).
        recording_database_id: Recording files database (keyword-only).
        summary_database_id: Participant summaries database (keyword-only).
    """

    def __init__(
        self,
        notion_client: AsyncClient,
        *,
        meeting_database_id: str,
        user_database_id: str,
        recording_database_id: str,
        summary_database_id: str,
    ) -> None:
        self._client = notion_client
        self._meeting_db = meeting_database_id
        self._user_db = user_database_id
        self._recording_db = recording_database_id
        self._summary_db = summary_database_id

    async def _query_first(self, database_id: str, filter_: dict) -> dict | None:
        response = await self._client.databases.query(
            database_id=database_id,
            filter=filter_,
            page_size=1,
        )
        results = response.get("results", [])
        return results[0] if results else None

    async def _create_or_update(
        self, database_id: str, existing: dict | None, properties: dict
    ) -> str:
        if existing is not None:
            await self._client.pages.update(page_id=existing["id"], properties=properties)
            return existing["id"]
        page = await self._client.pages.create(
            parent={"database_id": database_id},
            properties=properties,
        )
        return page["id"]

    # ── Users ────────────────────────────────────────────────────────────

    @_notion_retry
    async def find_user_ids_by_uuid(self, uuid: str) -> list[str]:
        """All user page ids whose UUID equals ``uuid``."""
        response = await self._client.databases.query(
            database_id=self._user_db,
            filter=_equals("UUID", uuid),
        )
        return [page["id"] for page in response.get("results", [])]

    async def upsert_user(
        self,
        *,
        uuid: str,
        userid: str = "",
        user_name: str = "",
        phone: str | None = None,
        is_enterprise_user: bool | None = None,
    ) -> str:
        """Create or update the user page keyed by ``uuid``. Returns its page id.

        Raises:
            ValueError: If ``uuid`` is empty.
        """
        if not uuid:
            raise ValueError(f"User uuid is required (user_name={user_name or 'unknown'})")
        return await self._write_user(uuid, userid, user_name, phone, is_enterprise_user)

    @_notion_retry
    async def _write_user(
        self,
        uuid: str,
        userid: str,
        user_name: str,
        phone: str | None,
        is_enterprise_user: bool | None,
    ) -> str:
        existing = await self._query_first(self._user_db, _equals("UUID", uuid))
        properties = to_notion_properties(
            {
                "user_name": user_name or None,
                "uuid": uuid,
                "userid": userid or None,
                "phone": phone or None,
                "is_enterprise_user": (
                    is_enterprise_user if is_enterprise_user is not None else bool(userid)
                ),
            },
            USER_PROPERTY_MAP,
        )
        page_id = await self._create_or_update(self._user_db, existing, properties)
        logger.info("notion.user_upserted", uuid=uuid, page_id=page_id)
        return page_id

    async def upsert_meeting_user(self, user: MeetingUser) -> str:
        return await self.upsert_user(
            uuid=user.uuid, userid=user.userid, user_name=user.user_name
        )

    async def _user_page_id(self, user: MeetingUser) -> str:
        """Existing page id for ``user`` or a freshly created one."""
        found = await self.find_user_ids_by_uuid(user.uuid)
        if found:
            return found[0]
        return await self.upsert_meeting_user(user)

    # ── Meetings ─────────────────────────────────────────────────────────

    def _meeting_filter(self, meeting_id: str, sub_meeting_key: str) -> dict:
        return {
            "and": [
                _equals("Meeting ID", meeting_id),
                _equals("Sub Meeting ID", sub_meeting_key),
            ]
        }

    @_notion_retry
    async def find_meeting(
        self, meeting_id: str, sub_meeting_id: str | None = None
    ) -> dict | None:
        return await self._query_first(
            self._meeting_db,
            self._meeting_filter(meeting_id, sub_meeting_id or ROOT_SUB_MEETING_ID),
        )

    @_notion_retry
    async def upsert_meeting(
        self,
        meeting_info: MeetingInfo,
        creator_ids: list[str] | None = None,
        participant_ids: list[str] | None = None,
    ) -> str:
        """Create or update the meeting page. Returns its page id."""
        existing = await self.find_meeting(
            meeting_info.meeting_id, meeting_info.sub_meeting_id
        )
        properties = to_notion_properties(
            {
                "subject": meeting_info.subject,
                "platform": "TENCENT_MEETING",
                "meeting_id": meeting_info.meeting_id,
                "sub_meeting_id": meeting_info.sub_meeting_key,
                "meeting_code": meeting_info.meeting_code or None,
                "start_time": _epoch_to_iso(meeting_info.start_time) if meeting_info.start_time else None,
                "end_time": _epoch_to_iso(meeting_info.end_time) if meeting_info.end_time else None,
                "meeting_type": meeting_type_label(meeting_info.meeting_type),
                "creator": creator_ids,
                "participants": participant_ids,
            },
            MEETING_PROPERTY_MAP,
        )
        page_id = await self._create_or_update(self._meeting_db, existing, properties)
        logger.info(
            "notion.meeting_upserted",
            meeting_id=meeting_info.meeting_id,
            page_id=page_id,
        )
        return page_id

    async def update_meeting_participants(
        self,
        meeting_info: MeetingInfo,
        operator: MeetingUser | None = None,
    ) -> str:
        """Add the operator and creator to the meeting page's participants.

        Existing participant links are preserved and the result is
        deduplicated in first-seen order.
        """
        existing = await self.find_meeting(
            meeting_info.meeting_id, meeting_info.sub_meeting_id
        )
        participants = relation_ids(existing, "Participants") if existing else []

        if operator is not None and operator.uuid:
            participants.append(await self._user_page_id(operator))

        creator_id: str | None = None
        if meeting_info.creator.uuid:
            creator_id = await self._user_page_id(meeting_info.creator)
            participants.append(creator_id)

        unique = list(dict.fromkeys(participants))
        return await self.upsert_meeting(
            meeting_info,
            creator_ids=[creator_id] if creator_id else [],
            participant_ids=unique,
        )

    # ── Recording files ──────────────────────────────────────────────────

    @_notion_retry
    async def create_recording_file(
        self,
        *,
        record_file_id: str,
        meeting_page_id: str,
        meeting_info: MeetingInfo,
        full_summary: str,
        ai_minutes: str,
        todo: str,
        transcript: str,
        participant_ids: list[str],
    ) -> str:
        """Create or update the recording page keyed by record_file_id."""
        existing = await self._query_first(
            self._recording_db,
            {"property": "Record File ID", "title": {"equals": record_file_id}},
        )
        properties = to_notion_properties(
            {
                "record_file_id": record_file_id,
                "meeting": [meeting_page_id],
                "subject": meeting_info.subject or None,
                "start_time": _epoch_to_iso(meeting_info.start_time) if meeting_info.start_time else None,
                "end_time": _epoch_to_iso(meeting_info.end_time) if meeting_info.end_time else None,
                "full_summary": full_summary or None,
                "ai_minutes": ai_minutes or None,
                "todo": todo or None,
                "transcript": transcript or None,
                "participants": participant_ids,
            },
            RECORDING_PROPERTY_MAP,
        )
        page_id = await self._create_or_update(self._recording_db, existing, properties)
        logger.info(
            "notion.recording_upserted",
            record_file_id=record_file_id,
            page_id=page_id,
        )
        return page_id

    # ── Participant summaries ────────────────────────────────────────────

    @_notion_retry
    async def create_participant_summary(
        self,
        *,
        title: str,
        participant_ids: list[str],
        recording_page_id: str | None,
        summary: str,
    ) -> str:
        """Create or update the summary page for one participant and recording.

        The page is keyed by title plus the participant and recording
        relations, so a re-delivered recording rewrites the existing page.
        Returns its page id.
        """
        conditions: list[dict] = [{"property": "Title", "title": {"equals": title}}]
        if participant_ids:
            conditions.append(
                {"property": "Participant", "relation": {"contains": participant_ids[0]}}
            )
        if recording_page_id:
            conditions.append(
                {"property": "Recording File", "relation": {"contains": recording_page_id}}
            )
        existing = await self._query_first(self._summary_db, {"and": conditions})

        properties = to_notion_properties(
            {
                "title": title,
                "participant": participant_ids,
                "recording_file": [recording_page_id] if recording_page_id else None,
                "summary": summary,
            },
            SUMMARY_PROPERTY_MAP,
        )
        page_id = await self._create_or_update(self._summary_db, existing, properties)
        logger.info("notion.participant_summary_upserted", title=title, page_id=page_id)
        return page_id
