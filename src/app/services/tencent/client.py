"""Async HTTP client for the Tencent Meeting REST API.

Provides TencentMeetingClient with request signing and retry logic
(tenacity, 3 attempts, exponential backoff 1-10s) on transport failures.

Every request carries the AK/SK signature headers:
    X-TC-Key, X-TC-Timestamp, X-TC-Nonce, X-TC-Signature, AppId, SdkId,
    X-TC-Registered

where the signature is base64(hex(HMAC-SHA256(secret_key, string_to_sign)))
and string_to_sign is
    "{METHOD}\\nX-TC-Key={id}&X-TC-Nonce={nonce}&X-TC-Timestamp={ts}\\n{uri}\\n{body}".

A JSON body with an ``error_info`` block is a failed call even on HTTP 200;
it raises TencentApiError and is not retried.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import random
import time
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.app.services.tencent.schemas import (
    ErrorInfo,
    ParticipantsResponse,
    SmartFullSummaryResponse,
    SmartMinutesResponse,
    TranscriptMinutes,
    TranscriptResponse,
)

logger = structlog.get_logger(__name__)

_tencent_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)

IP_WHITELIST_ERROR_CODE = 500125

# Hard stop for transcript pagination
MAX_TRANSCRIPT_PAGES = 200


class TencentApiError(Exception):
    """The API answered with an error_info block."""

    def __init__(self, message: str, code: int | None = None, request_uri: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.request_uri = request_uri


def sign_request(
    secret_key: str,
    method: str,
    secret_id: str,
    nonce: str,
    timestamp: str,
    request_uri: str,
    body: str = "",
) -> str:
    """Compute the X-TC-Signature header value."""
    header_string = f"X-TC-Key={secret_id}&X-TC-Nonce={nonce}&X-TC-Timestamp={timestamp}"
    string_to_sign = f"{method}\n{header_string}\n{request_uri}\n{body}"
    digest = hmac.new(
        secret_key.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return base64.b64encode(digest.encode("utf-8")).decode("ascii")


class TencentMeetingClient:
    """Async client for the Tencent Meeting open API.

    Args:
        secret_id: Enterprise application SecretId.
        secret_key: Enterprise application SecretKey.
        app_id: Enterprise AppId.
        sdk_id: Application SdkId.
        base_url: API root (default: https://api.meeting.qq.com).
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        secret_id: str,
        secret_key: str,
        app_id: str,
        sdk_id: str,
        base_url: str = "https://api.meeting.qq.com",
        timeout: float = 15.0,
    ) -> None:
        self._secret_id = secret_id
        self._secret_key = secret_key
        self._app_id = app_id
        self._sdk_id = sdk_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _headers(self, method: str, request_uri: str) -> dict[str, str]:
        timestamp = str(int(time.time()))
        nonce = str(random.randint(1, 99999))
        signature = sign_request(
            self._secret_key, method, self._secret_id, nonce, timestamp, request_uri
        )
        return {
            "Content-Type": "application/json",
            "X-TC-Key": self._secret_id,
            "X-TC-Timestamp": timestamp,
            "X-TC-Nonce": nonce,
            "X-TC-Signature": signature,
            "AppId": self._app_id,
            "SdkId": self._sdk_id,
            "X-TC-Registered": "1",
        }

    @_tencent_retry
    async def _get(self, path: str, params: dict[str, Any]) -> dict:
        """Signed GET. ``None`` params are dropped before signing."""
        query = urlencode({k: v for k, v in params.items() if v is not None})
        request_uri = f"{path}?{query}" if query else path

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                f"{self._base_url}{request_uri}",
                headers=self._headers("GET", request_uri),
            )
            response.raise_for_status()
            data = response.json()

        error_info = data.get("error_info")
        if error_info:
            info = ErrorInfo.model_validate(error_info)
            code = info.new_error_code or info.error_code
            if code == IP_WHITELIST_ERROR_CODE:
                message = "Caller IP is not on the Tencent Meeting whitelist"
            else:
                message = info.message or f"API error at {request_uri}"
            logger.warning("tencent.api_error", uri=path, code=code, message=message)
            raise TencentApiError(message, code=code, request_uri=request_uri)

        return data

    # ── Endpoints ───────────────────────────────────────────────────────

    async def get_participants(
        self,
        meeting_id: str,
        user_id: str,
        sub_meeting_id: str | None = None,
    ) -> ParticipantsResponse:
        """Fetch the participant roster, following pagination.

        GET /v1/meetings/{meeting_id}/participants
        """
        participants = []
        pos: int | None = None
        response = ParticipantsResponse()
        while True:
            data = await self._get(
                f"/v1/meetings/{meeting_id}/participants",
                {"userid": user_id, "sub_meeting_id": sub_meeting_id, "pos": pos},
            )
            response = ParticipantsResponse.model_validate(data)
            participants.extend(response.participants)
            if not response.has_remaining or response.next_pos is None:
                break
            pos = response.next_pos

        logger.info(
            "tencent.participants_fetched",
            meeting_id=meeting_id,
            count=len(participants),
        )
        return response.model_copy(update={"participants": participants, "has_remaining": False})

    async def get_smart_full_summary(
        self, record_file_id: str, user_id: str
    ) -> SmartFullSummaryResponse:
        """GET /v1/smart/fullsummary -- ai_summary is base64 text."""
        data = await self._get(
            "/v1/smart/fullsummary",
            {
                "record_file_id": record_file_id,
                "operator_id": user_id,
                "operator_id_type": 1,
                "lang": "default",
            },
        )
        return SmartFullSummaryResponse.model_validate(data)

    async def get_smart_minutes(
        self, record_file_id: str, user_id: str
    ) -> SmartMinutesResponse:
        """GET /v1/smart/minutes/{record_file_id} -- minutes and todo text."""
        data = await self._get(
            f"/v1/smart/minutes/{record_file_id}",
            {
                "operator_id": user_id,
                "operator_id_type": 1,
                "minute_type": 1,
                "text_type": 1,
                "lang": "default",
            },
        )
        return SmartMinutesResponse.model_validate(data)

    async def get_transcript(
        self,
        record_file_id: str,
        user_id: str,
        meeting_id: str | None = None,
    ) -> TranscriptResponse:
        """Fetch the full transcript, concatenating pages while ``more`` is set.

        GET /v1/records/transcripts/details
        """
        paragraphs = []
        keywords: list[str] = []
        audio_detect = None
        pid: int | None = None

        for _ in range(MAX_TRANSCRIPT_PAGES):
            data = await self._get(
                "/v1/records/transcripts/details",
                {
                    "meeting_id": meeting_id,
                    "record_file_id": record_file_id,
                    "operator_id": user_id,
                    "operator_id_type": 1,
                    "pid": pid,
                },
            )
            page = TranscriptResponse.model_validate(data)
            if page.minutes is None:
                break
            paragraphs.extend(page.minutes.paragraphs)
            keywords = keywords or page.minutes.keywords
            audio_detect = page.minutes.audio_detect
            if not page.more or not page.minutes.paragraphs:
                break
            pid = int(page.minutes.paragraphs[-1].pid) + 1

        logger.info(
            "tencent.transcript_fetched",
            record_file_id=record_file_id,
            paragraphs=len(paragraphs),
        )
        return TranscriptResponse(
            minutes=TranscriptMinutes(
                paragraphs=paragraphs, keywords=keywords, audio_detect=audio_detect
            ),
            more=False,
        )
