"""HomeBase API — FastAPI application factory.

The app factory wires:
- one instance of each household store (SQLite, see src.data.db)
- the SyncOrchestrator, the per-source RateLimiter and the SyncJobQueue
- a lifespan handler that runs the SyncJobQueue worker
- error handlers producing {"error": "..."} bodies
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.adapters.calendar_factory import create_calendar_adapter
from src.api.errors import register_error_handlers
from src.api.routers.calendars import router as calendars_router
from src.api.routers.chores import router as chores_router
from src.api.routers.cron import router as cron_router
from src.api.routers.health import router as health_router
from src.api.routers.oauth import router as oauth_router
from src.api.routers.sync import router as sync_router
from src.api.routers.webhooks import router as webhooks_router
from src.core.calendar_sync import ProviderFactory
from src.core.orchestrator import SyncJobQueue, SyncOrchestrator
from src.core.rate_limiter import RateLimiter
from src.data.db import CalendarSourceDB, ChoreDB, EventDB, UserDB, WebhookChannelDB

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.sync_queue.start()
    yield
    await app.state.sync_queue.stop()


def create_app(
    db_path: str | None = None,
    provider_factory: ProviderFactory = create_calendar_adapter,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: SQLite file; defaults to settings.DATABASE_PATH.
        provider_factory: Builds a calendar provider client from credentials.
        rate_limiter: Limiter for on-demand syncs; defaults to the configured
            window in process memory.
    """
    from src.config import settings

    app = FastAPI(title="HomeBase API", version="0.1.0", lifespan=lifespan)

    app.state.user_db = UserDB(db_path)
    app.state.source_db = CalendarSourceDB(db_path)
    app.state.event_db = EventDB(db_path)
    app.state.channel_db = WebhookChannelDB(db_path)
    app.state.chore_db = ChoreDB(db_path)
    app.state.provider_factory = provider_factory
    app.state.orchestrator = SyncOrchestrator(
        source_db=app.state.source_db,
        event_db=app.state.event_db,
        channel_db=app.state.channel_db,
        provider_factory=provider_factory,
    )
    app.state.sync_queue = SyncJobQueue(app.state.orchestrator)
    app.state.rate_limiter = rate_limiter or RateLimiter(
        max_requests=settings.SYNC_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.SYNC_RATE_LIMIT_WINDOW_SECONDS,
    )

    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(sync_router)
    app.include_router(calendars_router)
    app.include_router(cron_router)
    app.include_router(webhooks_router)
    app.include_router(oauth_router)
    app.include_router(chores_router)

    logger.info("HomeBase API created (database: %s)", db_path or settings.DATABASE_PATH)
    return app
