"""Speaker identity resolution for transcript paragraphs.

Diarization attaches a transient ``speaker_info`` to each paragraph. It is
matched against the meeting roster (userid, then open_id, then ms_open_id,
then display name) and, failing that, against durable platform users (by
user id, then by name). A match contributes the stable uuid plus the
roster-only attributes; no match is a normal outcome.
"""

from __future__ import annotations

import uuid

import structlog

from src.app.meetings.repository import MeetingRepository, TranscriptBatchWriter
from src.app.meetings.schemas import PlatformUserUpsert
from src.app.services.tencent.schemas import ParticipantDetail, SpeakerInfo

logger = structlog.get_logger(__name__)

# (speaker_info attribute, roster attribute), in match priority order
_MATCH_ORDER: tuple[tuple[str, str], ...] = (
    ("userid", "userid"),
    ("open_id", "open_id"),
    ("ms_open_id", "ms_open_id"),
    ("username", "user_name"),
)


def match_roster(
    speaker_info: SpeakerInfo, roster: list[ParticipantDetail]
) -> ParticipantDetail | None:
    for speaker_attr, roster_attr in _MATCH_ORDER:
        value = getattr(speaker_info, speaker_attr)
        if not value:
            continue
        for participant in roster:
            if getattr(participant, roster_attr) == value:
                return participant
    return None


class SpeakerService:
    """Resolves paragraph speakers to durable identities.

    Args:
        repository: Durable identity store consulted when the roster has no
            match. Optional; without it only the roster is used.
    """

    def __init__(self, repository: MeetingRepository | None = None) -> None:
        self._repository = repository

    async def enrich(
        self,
        speaker_info: SpeakerInfo | None,
        roster: list[ParticipantDetail],
    ) -> SpeakerInfo | None:
        """Return an enriched copy of ``speaker_info`` or the original unchanged."""
        if speaker_info is None:
            return None

        participant = match_roster(speaker_info, roster)
        if participant is not None:
            return speaker_info.model_copy(
                update={
                    "uuid": participant.uuid,
                    "phone": participant.phone or None,
                    "instanceid": participant.instanceid or None,
                    "ip": participant.ip or None,
                    "location": participant.location or None,
                    "net": participant.net or None,
                    "is_enterprise_user": participant.is_enterprise_user,
                }
            )

        if self._repository is None:
            return speaker_info

        try:
            user = None
            if speaker_info.userid:
                user = await self._repository.find_platform_user_by_user_id(
                    speaker_info.userid
                )
            if user is None and speaker_info.username:
                user = await self._repository.find_platform_user_by_name(
                    speaker_info.username
                )
        except Exception as exc:
            logger.warning(
                "speaker.store_lookup_failed",
                speaker=speaker_info.username,
                error=str(exc),
            )
            return speaker_info

        if user is None:
            return speaker_info

        return speaker_info.model_copy(
            update={
                "uuid": user.platform_uuid,
                "phone": user.phone,
                "is_enterprise_user": user.is_enterprise_user,
            }
        )

    async def resolve_speaker_id(
        self,
        writer: TranscriptBatchWriter,
        speaker_info: SpeakerInfo | None,
        roster: list[ParticipantDetail],
    ) -> uuid.UUID | None:
        """Find or lazily create the platform user behind a paragraph speaker.

        Runs inside the paragraph batch transaction, so a created user rolls
        back with the batch.
        """
        enriched = await self.enrich(speaker_info, roster)
        if enriched is None or not enriched.uuid:
            return None

        existing = await writer.find_speaker_by_uuid(enriched.uuid)
        if existing is not None:
            return existing

        return await writer.upsert_speaker(
            PlatformUserUpsert(
                platform_uuid=enriched.uuid,
                platform_user_id=enriched.userid or None,
                user_name=enriched.username or None,
                phone=enriched.phone,
                is_enterprise_user=enriched.is_enterprise_user,
            )
        )
