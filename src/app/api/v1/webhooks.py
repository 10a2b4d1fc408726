"""Tencent Meeting webhook endpoints.

GET  /webhooks/tencent -- one-time URL verification; answers with the
     decrypted ``check_str`` as plain text.
POST /webhooks/tencent -- event delivery. Verifies the signature over the
     still-encrypted ``data``, decrypts, parses the envelope, hands it to the
     background worker and answers the literal ``successfully received
     callback``. The platform retries (+1, +3, +6 minutes) unless it gets that
     literal within about five seconds, so no business logic runs here.

Rejections (before acknowledgement):
    missing headers -> 400, signature mismatch -> 401,
    decryption / envelope parse failure -> 400, missing secrets -> 500.
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from src.app.api.deps import get_delivery_store, get_dispatcher, get_worker
from src.app.config import Settings, get_settings
from src.app.core.monitoring import webhook_deliveries_total
from src.app.core.store import ExpiringStore
from src.app.webhooks import crypto
from src.app.webhooks.dispatcher import EventDispatcher
from src.app.webhooks.exceptions import (
    ConfigurationMissingError,
    EnvelopeParseError,
    MissingHeadersError,
    SignatureMismatchError,
    WebhookError,
)
from src.app.webhooks.schemas import EncryptedBody, Envelope
from src.app.webhooks.worker import BackgroundWorker

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

ACK_BODY = "successfully received callback"


def _secrets(settings: Settings) -> tuple[str, str]:
    token = settings.TENCENT_MEETING_TOKEN
    key = settings.TENCENT_MEETING_ENCODING_AES_KEY
    if not token or not key:
        raise ConfigurationMissingError(
            "TENCENT_MEETING_TOKEN and TENCENT_MEETING_ENCODING_AES_KEY must be configured"
        )
    return token, key


def _reject(endpoint: str, exc: WebhookError) -> HTTPException:
    webhook_deliveries_total.labels(endpoint=endpoint, outcome="rejected").inc()
    logger.warning(
        "webhook.rejected",
        endpoint=endpoint,
        reason=type(exc).__name__,
        status_code=exc.status_code,
        detail=exc.message,
    )
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _parse_envelope(
    raw_body: bytes,
    token: str,
    key: str,
    timestamp: str,
    nonce: str,
    signature: str,
) -> Envelope:
    try:
        body = EncryptedBody.model_validate_json(raw_body)
    except ValidationError as exc:
        raise EnvelopeParseError(f"Invalid request body: {exc.error_count()} error(s)") from exc

    if not crypto.verify_signature(token, timestamp, nonce, body.data, signature):
        raise SignatureMismatchError()

    plaintext = crypto.decrypt(body.data, key)
    try:
        return Envelope.model_validate(json.loads(plaintext))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise EnvelopeParseError(f"Invalid event envelope: {exc}") from exc


@router.get("/tencent", response_class=PlainTextResponse)
async def verify_url(
    check_str: str | None = Query(None),
    timestamp: str | None = Header(None),
    nonce: str | None = Header(None),
    signature: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> PlainTextResponse:
    """Answer the URL ownership challenge with the decrypted check_str."""
    try:
        token, key = _secrets(settings)
        plaintext = crypto.verify_webhook_url(
            check_str or "", timestamp or "", nonce or "", signature or "", token, key
        )
    except WebhookError as exc:
        raise _reject("verification", exc) from exc

    webhook_deliveries_total.labels(endpoint="verification", outcome="accepted").inc()
    logger.info("webhook.url_verified")
    return PlainTextResponse(plaintext)


@router.post("/tencent", response_class=PlainTextResponse)
async def receive_event(
    request: Request,
    timestamp: str | None = Header(None),
    nonce: str | None = Header(None),
    signature: str | None = Header(None),
    settings: Settings = Depends(get_settings),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
    worker: BackgroundWorker = Depends(get_worker),
    delivery_store: ExpiringStore | None = Depends(get_delivery_store),
) -> PlainTextResponse:
    """Verify, decrypt and enqueue one delivery; acknowledge immediately."""
    try:
        if not timestamp or not nonce or not signature:
            raise MissingHeadersError("Missing required headers: timestamp, nonce, signature")
        token, key = _secrets(settings)
        envelope = _parse_envelope(await request.body(), token, key, timestamp, nonce, signature)
    except WebhookError as exc:
        raise _reject("event", exc) from exc

    log = logger.bind(event_name=envelope.event, trace_id=envelope.trace_id)

    if delivery_store is not None and envelope.trace_id:
        try:
            first_delivery = await delivery_store.claim(
                f"tencent:trace:{envelope.trace_id}", settings.WEBHOOK_DEDUP_TTL_SECONDS
            )
        except Exception as exc:
            log.warning("webhook.dedup_unavailable", error=str(exc))
            first_delivery = True
        if not first_delivery:
            webhook_deliveries_total.labels(endpoint="event", outcome="duplicate").inc()
            log.info("webhook.duplicate_delivery")
            return PlainTextResponse(ACK_BODY)

    worker.submit(
        dispatcher.dispatch(envelope),
        name=f"{envelope.event}:{envelope.trace_id or 'no-trace'}",
    )
    webhook_deliveries_total.labels(endpoint="event", outcome="accepted").inc()
    log.info("webhook.event_received", items=len(envelope.payload))
    return PlainTextResponse(ACK_BODY)
