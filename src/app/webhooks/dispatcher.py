"""Event dispatch for decrypted webhook envelopes.

A handler is anything exposing ``supports(event) -> bool`` and an async
``handle(payload, index)``. The dispatcher holds them in a fixed order and
routes each envelope to the first handler that supports its event.

Every payload item is validated and handled on its own: a malformed item or
a failing handler is logged and counted, and the remaining items still run.
An event with no handler is logged and dropped. Nothing propagates out of
``dispatch`` because the webhook was acknowledged before it started.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import structlog
from pydantic import ValidationError

from src.app.core.monitoring import webhook_events_total
from src.app.webhooks.schemas import Envelope, EventPayload

logger = structlog.get_logger(__name__)


class EventHandler(Protocol):
    def supports(self, event: str) -> bool: ...

    async def handle(self, payload: EventPayload, index: int) -> None: ...


@dataclass
class DispatchResult:
    event: str
    handled: int = 0
    failed: int = 0
    unhandled: bool = False


class EventDispatcher:
    """Routes envelopes to the first supporting handler.

    Args:
        handlers: Handlers in priority order.
    """

    def __init__(self, handlers: Iterable[EventHandler]) -> None:
        self._handlers: tuple[EventHandler, ...] = tuple(handlers)

    def get_handler(self, event: str) -> EventHandler | None:
        for handler in self._handlers:
            if handler.supports(event):
                return handler
        return None

    async def dispatch(self, envelope: Envelope) -> DispatchResult:
        result = DispatchResult(event=envelope.event)
        log = logger.bind(event_name=envelope.event, trace_id=envelope.trace_id)

        handler = self.get_handler(envelope.event)
        if handler is None:
            log.warning("webhook.event_unhandled", items=len(envelope.payload))
            webhook_events_total.labels(event=envelope.event, outcome="unhandled").inc()
            result.unhandled = True
            return result

        log.info("webhook.event_dispatching", items=len(envelope.payload))
        for index, item in enumerate(envelope.payload):
            try:
                payload = EventPayload.model_validate(item)
                await handler.handle(payload, index)
            except ValidationError as exc:
                result.failed += 1
                webhook_events_total.labels(event=envelope.event, outcome="invalid").inc()
                log.warning(
                    "webhook.payload_invalid",
                    index=index,
                    errors=exc.error_count(),
                )
            except Exception:
                result.failed += 1
                webhook_events_total.labels(event=envelope.event, outcome="error").inc()
                log.error("webhook.handler_failed", index=index, exc_info=True)
            else:
                result.handled += 1
                webhook_events_total.labels(event=envelope.event, outcome="success").inc()

        log.info(
            "webhook.event_dispatched",
            handled=result.handled,
            failed=result.failed,
        )
        return result
