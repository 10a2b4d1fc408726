"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, Sentry,
lifespan-managed collaborators for the webhook pipeline, and the v1 router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response
from notion_client import AsyncClient as NotionAsyncClient

from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router
from src.app.config import get_settings
from src.app.core.database import close_db, get_session, init_db
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.app.core.redis import close_redis, get_redis_pool
from src.app.core.store import InMemoryExpiringStore, RedisExpiringStore
from src.app.meetings.recording import (
    ParticipantSummaryService,
    RecordingPipeline,
    SpeakerService,
    TranscriptBatchProcessor,
)
from src.app.meetings.repository import MeetingRepository
from src.app.meetings.sync import MeetingSyncService
from src.app.services.llm import get_llm_service
from src.app.services.notion import NotionMeetingStore
from src.app.services.tencent import TencentMeetingClient
from src.app.webhooks.dispatcher import EventDispatcher
from src.app.webhooks.handlers import build_handler_table
from src.app.webhooks.worker import BackgroundWorker

# Seconds to wait for in-flight webhook work on shutdown
SHUTDOWN_DRAIN_TIMEOUT = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire collaborators on startup, drain on shutdown.

    Each component is initialised in its own try/except; a failure leaves
    the component as None and the endpoints needing it answer 503.
    """
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    try:
        await init_db()
    except Exception:
        log.warning("startup.database_init_failed", exc_info=True)

    # Delivery dedup: Redis when reachable, process-local otherwise
    try:
        redis_client = get_redis_pool()
        await redis_client.ping()
        app.state.delivery_store = RedisExpiringStore(redis_client)
        log.info("startup.delivery_store_initialized", backend="redis")
    except Exception:
        log.warning("startup.redis_unavailable", exc_info=True)
        app.state.delivery_store = InMemoryExpiringStore()

    # Notion mirror (optional)
    notion_store: NotionMeetingStore | None = None
    if settings.notion_enabled:
        try:
            notion_store = NotionMeetingStore(
                NotionAsyncClient(auth=settings.NOTION_TOKEN),
                meeting_database_id=settings.NOTION_MEETING_DATABASE_ID,
                user_database_id=settings.NOTION_USER_DATABASE_ID,
                recording_database_id=settings.NOTION_RECORDING_DATABASE_ID,
                summary_database_id=settings.NOTION_SUMMARY_DATABASE_ID,
            )
            log.info("startup.notion_store_initialized")
        except Exception:
            log.warning("startup.notion_store_init_failed", exc_info=True)
    else:
        log.info("startup.notion_store_disabled")
    app.state.notion_store = notion_store

    # Event dispatch: repository -> pipeline -> handler table -> dispatcher
    try:
        repository = MeetingRepository(session_factory=get_session)
        tencent_client = TencentMeetingClient(
            secret_id=settings.TENCENT_MEETING_SECRET_ID,
            secret_key=settings.TENCENT_MEETING_SECRET_KEY,
            app_id=settings.TENCENT_MEETING_APP_ID,
            sdk_id=settings.TENCENT_MEETING_SDK_ID,
            base_url=settings.TENCENT_MEETING_API_BASE_URL,
        )
        pipeline = RecordingPipeline(
            tencent_client=tencent_client,
            repository=repository,
            batch_processor=TranscriptBatchProcessor(
                repository,
                SpeakerService(repository),
                paragraph_batch_size=settings.TRANSCRIPT_PARAGRAPH_BATCH_SIZE,
                sentence_batch_size=settings.TRANSCRIPT_SENTENCE_BATCH_SIZE,
            ),
            summary_service=ParticipantSummaryService(
                get_llm_service(),
                repository,
                notion_store,
                concurrency=settings.SUMMARY_CONCURRENCY,
            ),
            notion_store=notion_store,
        )
        sync = MeetingSyncService(repository, notion_store)
        handler_table = build_handler_table(sync, pipeline)
        app.state.meeting_repository = repository
        app.state.event_dispatcher = EventDispatcher(handler_table.values())
        log.info("startup.event_dispatcher_initialized", events=sorted(handler_table))
    except Exception:
        log.warning("startup.event_dispatcher_init_failed", exc_info=True)
        app.state.meeting_repository = None
        app.state.event_dispatcher = None

    app.state.background_worker = BackgroundWorker(
        max_concurrency=settings.WEBHOOK_WORKER_CONCURRENCY
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    await app.state.background_worker.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT)
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Meeting Hook API",
        version="0.1.0",
        description="Tencent Meeting webhook ingestion: transcripts and participant summaries",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
