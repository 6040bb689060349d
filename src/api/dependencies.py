"""FastAPI dependencies: identity, cron authorization and shared services.

Shared services (databases, orchestrator, job queue, rate limiter) are built
once by create_app() and kept on app.state.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Request

from src.api.errors import ApiError
from src.core.orchestrator import SyncJobQueue, SyncOrchestrator
from src.core.rate_limiter import RateLimiter
from src.data.db import CalendarSourceDB, ChoreDB, EventDB, UserDB, WebhookChannelDB

logger = logging.getLogger(__name__)


def get_user_db(request: Request) -> UserDB:
    return request.app.state.user_db


def get_source_db(request: Request) -> CalendarSourceDB:
    return request.app.state.source_db


def get_event_db(request: Request) -> EventDB:
    return request.app.state.event_db


def get_channel_db(request: Request) -> WebhookChannelDB:
    return request.app.state.channel_db


def get_chore_db(request: Request) -> ChoreDB:
    return request.app.state.chore_db


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_sync_queue(request: Request) -> SyncJobQueue:
    return request.app.state.sync_queue


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_provider_factory(request: Request):
    return request.app.state.provider_factory


def get_current_user_id(request: Request) -> str:
    """The signed-in user, as asserted by the upstream auth proxy."""
    from src.config import settings

    user_id = request.headers.get(settings.AUTH_USER_HEADER, "").strip()
    if not user_id:
        raise ApiError(401, "Unauthorized")
    return user_id


def get_household_id(
    user_id: str = Depends(get_current_user_id),
    user_db: UserDB = Depends(get_user_db),
) -> str:
    household_id = user_db.get_household_id(user_id)
    if not household_id:
        raise ApiError(400, "User not found or no household")
    return household_id


def require_cron_secret(request: Request) -> None:
    """Accept `Authorization: Bearer <CRON_SECRET>` or the bare secret."""
    from src.config import settings

    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET not configured")
        raise ApiError(500, "Server misconfigured")

    header = request.headers.get("Authorization", "")
    token = header[len("Bearer "):] if header.startswith("Bearer ") else header
    if not hmac.compare_digest(token.encode(), settings.CRON_SECRET.encode()):
        logger.warning("Cron request rejected: bad secret on %s", request.url.path)
        raise ApiError(401, "Unauthorized")
