"""Google Calendar push-notification receiver.

Google sends these headers:
- X-Goog-Channel-ID: our channel UUID
- X-Goog-Resource-ID: Google's id for the watched resource
- X-Goog-Resource-State: sync, exists or not_exists
- X-Goog-Message-Number: incrementing message number

Anything but malformed headers is answered 200 so Google does not retry.
The sync itself runs on the background SyncJobQueue.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from src.api.dependencies import get_channel_db, get_source_db, get_sync_queue
from src.api.schemas import WebhookAck
from src.core.orchestrator import SyncJobQueue
from src.data.db import CalendarSourceDB, WebhookChannelDB

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/google")
async def google_webhook(
    request: Request,
    channel_db: WebhookChannelDB = Depends(get_channel_db),
    source_db: CalendarSourceDB = Depends(get_source_db),
    sync_queue: SyncJobQueue = Depends(get_sync_queue),
):
    resource_id = request.headers.get("X-Goog-Resource-ID")
    channel_id = request.headers.get("X-Goog-Channel-ID")
    resource_state = request.headers.get("X-Goog-Resource-State")

    if not resource_id or not channel_id:
        logger.warning("Invalid webhook request: missing required headers")
        return JSONResponse(status_code=400, content={"error": "Invalid webhook headers"})

    logger.info(
        "Webhook received: channel=%s, resource=%s, state=%s",
        channel_id, resource_id, resource_state,
    )

    # Google verifying the endpoint after channel creation
    if resource_state == "sync":
        return WebhookAck().body()

    channel = channel_db.get_by_channel_id(channel_id)
    if channel is None:
        logger.warning("Unknown webhook channel: %s", channel_id)
        return WebhookAck(warning="Unknown channel").body()

    source = source_db.get_source(channel.calendar_source_id)
    if source is None:
        logger.warning("Calendar source not found for channel: %s", channel_id)
        return WebhookAck(warning="Calendar source not found").body()

    if not source.refresh_token_encrypted:
        logger.warning("Calendar source %s has no refresh token, skipping sync", source.id)
        return WebhookAck(warning="Calendar disconnected").body()

    queued = sync_queue.enqueue(source.id)
    return WebhookAck(calendar_source_id=source.id, queued=queued).body()
