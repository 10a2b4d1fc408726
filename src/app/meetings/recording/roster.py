"""Participant roster fetch and normalization."""

from __future__ import annotations

import base64
import binascii

import structlog

from src.app.services.tencent.client import TencentMeetingClient
from src.app.services.tencent.schemas import ParticipantDetail

logger = structlog.get_logger(__name__)


def decode_display_name(name: str) -> str:
    """Decode a base64 display name, or return it unchanged.

    The participants API base64-encodes names, but not every caller path
    does, so anything that does not decode to printable UTF-8 is kept as is.
    """
    if not name:
        return name
    try:
        decoded = base64.b64decode(name, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return name
    if not decoded or not decoded.isprintable():
        return name
    return decoded


def dedupe_roster(participants: list[ParticipantDetail]) -> list[ParticipantDetail]:
    """Drop repeat entries for the same uuid; the first occurrence wins.

    Entries without a uuid cannot be keyed and are dropped.
    """
    seen: set[str] = set()
    unique: list[ParticipantDetail] = []
    for participant in participants:
        if not participant.uuid or participant.uuid in seen:
            continue
        seen.add(participant.uuid)
        unique.append(
            participant.model_copy(
                update={"user_name": decode_display_name(participant.user_name)}
            )
        )
    return unique


async def fetch_roster(
    client: TencentMeetingClient,
    meeting_id: str,
    user_id: str,
    sub_meeting_id: str | None = None,
) -> list[ParticipantDetail]:
    """Fetch and deduplicate the roster. Returns [] when the fetch fails."""
    try:
        response = await client.get_participants(meeting_id, user_id, sub_meeting_id)
    except Exception as exc:
        logger.warning(
            "recording.roster_fetch_failed",
            meeting_id=meeting_id,
            error=str(exc),
        )
        return []

    roster = dedupe_roster(response.participants)
    logger.info(
        "recording.roster_loaded",
        meeting_id=meeting_id,
        fetched=len(response.participants),
        unique=len(roster),
    )
    return roster
