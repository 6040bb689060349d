"""Scheduled jobs: stale-calendar sync and webhook channel renewal.

Both are protected by CRON_SECRET (see require_cron_secret).
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends

from src.api.dependencies import (
    get_channel_db,
    get_orchestrator,
    get_provider_factory,
    get_source_db,
    require_cron_secret,
)
from src.api.errors import ApiError
from src.api.schemas import CronSyncResponse, RenewalResponse
from src.core.orchestrator import SyncOrchestrator
from src.core.webhook_channels import renew_expiring_channels
from src.data.db import CalendarSourceDB, WebhookChannelDB

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)],
)


@router.get("/sync", response_model=CronSyncResponse)
async def cron_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Sync every enabled calendar that has gone stale."""
    summary = await orchestrator.sync_stale_calendars()
    return CronSyncResponse(
        calendars_synced=summary.calendars_synced,
        total_events_upserted=summary.total_events_upserted,
        total_events_deleted=summary.total_events_deleted,
        failures=summary.failures,
    )


@router.get("/webhooks", response_model=RenewalResponse)
async def cron_renew_webhooks(
    source_db: CalendarSourceDB = Depends(get_source_db),
    channel_db: WebhookChannelDB = Depends(get_channel_db),
    provider_factory=Depends(get_provider_factory),
):
    """Replace webhook channels expiring within the renewal horizon."""
    from src.config import settings

    if not settings.webhook_url:
        logger.error("No base URL configured for webhooks")
        raise ApiError(500, "Webhook URL not configured")

    summary = await renew_expiring_channels(
        settings.webhook_url,
        horizon=timedelta(hours=settings.WEBHOOK_RENEWAL_HORIZON_HOURS),
        source_db=source_db,
        channel_db=channel_db,
        provider_factory=provider_factory,
    )
    return RenewalResponse(
        renewed=summary.renewed, failed=summary.failed, skipped=summary.skipped,
    )
