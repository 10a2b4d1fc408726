"""FastAPI dependencies resolving collaborators wired onto app.state.

Components are created in the lifespan hook; one that failed to initialise
is left as None and the endpoints needing it answer 503.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.app.core.store import ExpiringStore
from src.app.webhooks.dispatcher import EventDispatcher
from src.app.webhooks.worker import BackgroundWorker


def _require(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not available",
        )
    return component


def get_dispatcher(request: Request) -> EventDispatcher:
    return _require(request, "event_dispatcher")


def get_worker(request: Request) -> BackgroundWorker:
    return _require(request, "background_worker")


def get_delivery_store(request: Request) -> ExpiringStore | None:
    """Optional: without a store every delivery is dispatched."""
    return getattr(request.app.state, "delivery_store", None)
