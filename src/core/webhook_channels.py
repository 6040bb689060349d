"""
HomeBase — Webhook Channel Manager.

Registers, stops and renews Google push-notification channels so that
calendar changes trigger a sync instead of waiting for the next cron pass.

Google channels expire (about a week by default). The renewal job replaces
every channel that would expire within the renewal horizon. Teardown is
best effort throughout: a provider failure while stopping a channel is
logged, and the local row is removed anyway.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from src.adapters.calendar_factory import create_calendar_adapter
from src.core.calendar_sync import ProviderFactory, authorize_source
from src.data.db import CalendarSourceDB, WebhookChannelDB, utc_iso
from src.data.models import CalendarSource, WebhookChannel
from src.ports.calendar_port import CalendarProviderPort

logger = logging.getLogger(__name__)

RENEWAL_HORIZON = timedelta(hours=24)


@dataclass
class RegistrationResult:
    success: bool
    channel_id: str | None = None
    error: str | None = None


@dataclass
class RenewalSummary:
    renewed: int = 0
    failed: int = 0
    skipped: int = 0


async def _watch(
    provider: CalendarProviderPort,
    source: CalendarSource,
    callback_url: str,
    channel_db: WebhookChannelDB,
) -> str:
    channel_id = str(uuid.uuid4())
    watch = await provider.watch_events(source.external_id, channel_id, callback_url)
    channel_db.add_channel(source.id, channel_id, watch.resource_id, utc_iso(watch.expiration))
    return channel_id


async def register_webhook_channel(
    source: CalendarSource,
    callback_url: str,
    source_db: CalendarSourceDB | None = None,
    channel_db: WebhookChannelDB | None = None,
    provider_factory: ProviderFactory = create_calendar_adapter,
) -> RegistrationResult:
    """Open a push channel on the source's event feed and store it.

    Never raises; failures come back as RegistrationResult(success=False).
    """
    source_db = source_db or CalendarSourceDB()
    channel_db = channel_db or WebhookChannelDB()

    try:
        provider = await authorize_source(source, source_db, provider_factory)
        channel_id = await _watch(provider, source, callback_url, channel_db)
    except Exception as exc:
        logger.error("Failed to register webhook for calendar %s: %s", source.id, exc)
        return RegistrationResult(success=False, error=str(exc) or type(exc).__name__)

    return RegistrationResult(success=True, channel_id=channel_id)


async def _authorize_for_teardown(
    source: CalendarSource,
    source_db: CalendarSourceDB,
    provider_factory: ProviderFactory,
) -> CalendarProviderPort | None:
    """A provider for stopping channels, or None when the provider can't be reached."""
    if not source.refresh_token_encrypted:
        logger.info("Calendar %s has no tokens; channels are removed locally", source.id)
        return None
    try:
        return await authorize_source(source, source_db, provider_factory)
    except Exception as exc:
        logger.warning("Cannot authorize calendar %s to stop channels: %s", source.id, exc)
        return None


async def _stop_remote(
    provider: CalendarProviderPort | None, channel_id: str, resource_id: str,
) -> bool:
    """Ask the provider to stop a channel. Returns False (and logs) on failure."""
    if provider is None:
        return False
    try:
        await provider.stop_channel(channel_id, resource_id)
    except Exception as exc:
        logger.warning("Failed to stop webhook channel %s: %s", channel_id, exc)
        return False
    return True


async def stop_webhook_channel(
    source: CalendarSource,
    channel_id: str,
    resource_id: str,
    source_db: CalendarSourceDB | None = None,
    channel_db: WebhookChannelDB | None = None,
    provider_factory: ProviderFactory = create_calendar_adapter,
) -> None:
    """Stop a channel with the provider and delete its row.

    The row is deleted even when the provider call fails.
    """
    source_db = source_db or CalendarSourceDB()
    channel_db = channel_db or WebhookChannelDB()

    provider = await _authorize_for_teardown(source, source_db, provider_factory)
    await _stop_remote(provider, channel_id, resource_id)
    channel_db.delete_channel(channel_id)


async def stop_all_webhook_channels(
    source: CalendarSource,
    source_db: CalendarSourceDB | None = None,
    channel_db: WebhookChannelDB | None = None,
    provider_factory: ProviderFactory = create_calendar_adapter,
) -> int:
    """Stop every channel of a source. Returns how many rows were removed.

    Tokens are refreshed at most once for the whole batch. Never raises, so
    disconnecting or deleting a calendar is not held up by webhook teardown.
    """
    source_db = source_db or CalendarSourceDB()
    channel_db = channel_db or WebhookChannelDB()

    try:
        channels = channel_db.list_for_source(source.id)
    except Exception as exc:
        logger.error("Failed to list webhook channels for calendar %s: %s", source.id, exc)
        return 0
    if not channels:
        return 0

    provider = await _authorize_for_teardown(source, source_db, provider_factory)
    stopped = 0
    for channel in channels:
        await _stop_remote(provider, channel.channel_id, channel.resource_id)
        try:
            channel_db.delete_channel(channel.channel_id)
            stopped += 1
        except Exception as exc:
            logger.error("Failed to remove webhook channel %s: %s", channel.channel_id, exc)

    logger.info("Stopped %d webhook channel(s) for calendar %s", stopped, source.id)
    return stopped


async def _renew_one(
    channel: WebhookChannel,
    source: CalendarSource,
    callback_url: str,
    source_db: CalendarSourceDB,
    channel_db: WebhookChannelDB,
    provider_factory: ProviderFactory,
) -> bool:
    # One authorization covers both the stop and the new watch. The old row
    # is only dropped once its replacement is stored, so a failed
    # registration is retried by the next renewal pass.
    try:
        provider = await authorize_source(source, source_db, provider_factory)
    except Exception as exc:
        logger.error("Failed to renew webhook for calendar %s: %s", source.id, exc)
        return False

    await _stop_remote(provider, channel.channel_id, channel.resource_id)
    try:
        channel_id = await _watch(provider, source, callback_url, channel_db)
    except Exception as exc:
        logger.error("Failed to renew webhook for calendar %s: %s", source.id, exc)
        return False

    channel_db.delete_channel(channel.channel_id)
    logger.info("Renewed webhook for calendar %s: %s", source.id, channel_id)
    return True


async def renew_expiring_channels(
    callback_url: str,
    now: datetime | None = None,
    horizon: timedelta = RENEWAL_HORIZON,
    source_db: CalendarSourceDB | None = None,
    channel_db: WebhookChannelDB | None = None,
    provider_factory: ProviderFactory = create_calendar_adapter,
) -> RenewalSummary:
    """Replace every channel expiring before now + horizon.

    Channels of disabled or token-less calendars are deleted and counted as
    skipped instead of being renewed.
    """
    source_db = source_db or CalendarSourceDB()
    channel_db = channel_db or WebhookChannelDB()
    if now is None:
        now = datetime.now(timezone.utc)

    expiring = channel_db.list_expiring(utc_iso(now + horizon))
    summary = RenewalSummary()
    if not expiring:
        logger.info("No webhook channels need renewal")
        return summary

    logger.info("Found %d webhook channel(s) to renew", len(expiring))
    for channel in expiring:
        source = source_db.get_source(channel.calendar_source_id)
        if source is None or not source.enabled or not source.refresh_token_encrypted:
            logger.info(
                "Skipping disabled/disconnected calendar: %s", channel.calendar_source_id,
            )
            channel_db.delete_channel(channel.channel_id)
            summary.skipped += 1
            continue

        if await _renew_one(
            channel, source, callback_url, source_db, channel_db, provider_factory,
        ):
            summary.renewed += 1
        else:
            summary.failed += 1

    logger.info(
        "Webhook renewal complete: renewed=%d, failed=%d, skipped=%d",
        summary.renewed, summary.failed, summary.skipped,
    )
    return summary
