"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events that build the scheduling and room services, and the API
router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.fitcoach.config import RoomStateBackend, Settings, get_settings
from src.fitcoach.core.database import close_db, get_session, init_db
from src.fitcoach.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.fitcoach.core.redis import close_redis, get_redis_pool
from src.fitcoach.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.fitcoach.api.v1.router import router as v1_router
from src.fitcoach.meetings.notifications import MeetingNotifier
from src.fitcoach.meetings.repository import MeetingRepository
from src.fitcoach.meetings.rooms.liveness import ConnectionLivenessTracker
from src.fitcoach.meetings.rooms.presence import PresenceRegistry
from src.fitcoach.meetings.rooms.signaling import SignalingRelay
from src.fitcoach.meetings.rooms.store import InMemoryRoomStore, RedisRoomStore, RoomStateStore
from src.fitcoach.meetings.scheduling import MeetingScheduler
from src.fitcoach.services.accounts import AccountRepository


def build_room_store(settings: Settings) -> RoomStateStore:
    """Room state backend selected by ROOM_STATE_BACKEND."""
    if settings.ROOM_STATE_BACKEND == RoomStateBackend.redis:
        return RedisRoomStore(
            get_redis_pool(),
            lock_timeout=settings.ROOM_LOCK_TIMEOUT_SECONDS,
        )
    return InMemoryRoomStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Accounts & Scheduling ───────────────────────────────────────────

    app.state.account_repository = AccountRepository(session_factory=get_session)
    app.state.meeting_scheduler = MeetingScheduler(
        MeetingRepository(session_factory=get_session),
        query_timeout=settings.DB_QUERY_TIMEOUT_SECONDS,
        timezone_name=settings.MEETING_TIMEZONE,
        reject_past=settings.REJECT_PAST_MEETINGS,
        public_app_url=settings.PUBLIC_APP_URL,
    )

    # Notification relay is optional; notify-start returns 503 without it
    if settings.NOTIFICATION_WEBHOOK_URL:
        app.state.meeting_notifier = MeetingNotifier(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    else:
        app.state.meeting_notifier = None
        log.info("notifications.disabled", reason="NOTIFICATION_WEBHOOK_URL not set")

    # ── Live Rooms ──────────────────────────────────────────────────────

    room_store = build_room_store(settings)
    app.state.presence_registry = PresenceRegistry(room_store)
    app.state.liveness_tracker = ConnectionLivenessTracker(
        room_store,
        stale_after_ms=settings.CONNECTION_STALE_AFTER_MS,
    )
    app.state.signaling_relay = SignalingRelay(room_store)

    log.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        room_state_backend=settings.ROOM_STATE_BACKEND.value,
    )

    yield

    # Shutdown
    await close_redis()
    await close_db()
    log.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="FitCoach API",
        version="0.1.0",
        description="Trainer/client meeting scheduling and live session coordination",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside the API router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
