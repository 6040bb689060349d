"""
HomeBase — Sync Orchestrator.

One engine, three triggers:
- on demand (POST /api/calendars/sync), rate limited per calendar source;
- the cron pass, which syncs every stale enabled source concurrently;
- Google push notifications, which enqueue a job on SyncJobQueue so the
  webhook can be acknowledged before the sync runs.

All three go through SyncOrchestrator.sync_source, which keeps at most one
sync per calendar source in flight and disconnects sources whose refresh
token was revoked.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from src.adapters.calendar_factory import create_calendar_adapter
from src.core.calendar_sync import ProviderFactory, SyncResult, sync_calendar_events
from src.core.webhook_channels import stop_all_webhook_channels
from src.data.db import CalendarSourceDB, EventDB, WebhookChannelDB, utc_iso
from src.data.models import CalendarSource

logger = logging.getLogger(__name__)


@dataclass
class CronSyncSummary:
    calendars_synced: int = 0
    total_events_upserted: int = 0
    total_events_deleted: int = 0
    failures: int = 0


class SingleFlight:
    """Deduplicate concurrent calls per key.

    While a call for a key is running, later callers for the same key await
    the same result instead of starting their own.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, func: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is not None and not task.done():
            logger.debug("Joining in-flight call for %s", key)
            return await asyncio.shield(task)

        task = asyncio.ensure_future(func())
        self._inflight[key] = task

        def _forget(done: asyncio.Task) -> None:
            if self._inflight.get(key) is done:
                del self._inflight[key]

        task.add_done_callback(_forget)
        return await asyncio.shield(task)


class SyncOrchestrator:
    def __init__(
        self,
        source_db: CalendarSourceDB | None = None,
        event_db: EventDB | None = None,
        channel_db: WebhookChannelDB | None = None,
        provider_factory: ProviderFactory = create_calendar_adapter,
    ) -> None:
        self.source_db = source_db or CalendarSourceDB()
        self.event_db = event_db or EventDB()
        self.channel_db = channel_db or WebhookChannelDB()
        self._provider_factory = provider_factory
        self._single_flight = SingleFlight()

    async def sync_source(self, source: CalendarSource) -> SyncResult:
        """Sync one source, sharing the result with any concurrent caller."""
        return await self._single_flight.run(source.id, lambda: self._sync(source))

    async def sync_source_by_id(self, source_id: str) -> SyncResult | None:
        """Reload a source and sync it. None when it no longer exists."""
        source = self.source_db.get_source(source_id)
        if source is None:
            logger.warning("Calendar source %s not found, skipping sync", source_id)
            return None
        if not source.refresh_token_encrypted:
            logger.warning("Calendar source %s has no tokens, skipping sync", source_id)
            return None
        return await self.sync_source(source)

    async def _sync(self, source: CalendarSource) -> SyncResult:
        result = await sync_calendar_events(
            source,
            source_db=self.source_db,
            event_db=self.event_db,
            provider_factory=self._provider_factory,
        )
        if result.token_revoked:
            await self.disconnect(source)
        return result

    async def disconnect(self, source: CalendarSource) -> None:
        """Mark a revoked source disconnected and drop its webhook channels."""
        self.source_db.mark_disconnected(source.id)
        # Tokens are gone, so channels are only removed locally
        revoked = replace(source, access_token_encrypted=None, refresh_token_encrypted=None)
        await stop_all_webhook_channels(
            revoked,
            source_db=self.source_db,
            channel_db=self.channel_db,
            provider_factory=self._provider_factory,
        )

    async def _safe_sync(self, source: CalendarSource) -> SyncResult:
        try:
            return await self.sync_source(source)
        except Exception as exc:
            logger.error("Sync failed for calendar %s: %s", source.id, exc)
            return SyncResult(success=False, error=str(exc) or type(exc).__name__)

    async def sync_stale_calendars(
        self,
        stale_after: timedelta | None = None,
        now: datetime | None = None,
    ) -> CronSyncSummary:
        """Sync every enabled source not synced within stale_after, concurrently.

        One source failing never affects the others.
        """
        if stale_after is None:
            from src.config import settings
            stale_after = timedelta(minutes=settings.STALE_THRESHOLD_MINUTES)
        if now is None:
            now = datetime.now(timezone.utc)

        stale = self.source_db.list_stale_sources(utc_iso(now - stale_after))
        summary = CronSyncSummary()
        if not stale:
            logger.info("No stale calendars to sync")
            return summary

        logger.info("Syncing %d stale calendar(s)", len(stale))
        results = await asyncio.gather(*(self._safe_sync(s) for s in stale))

        for result in results:
            if result.success:
                summary.calendars_synced += 1
                summary.total_events_upserted += result.events_upserted
                summary.total_events_deleted += result.events_deleted
            else:
                summary.failures += 1

        logger.info(
            "Cron sync done: %d synced, %d failed, %d upserted, %d deleted",
            summary.calendars_synced, summary.failures,
            summary.total_events_upserted, summary.total_events_deleted,
        )
        return summary


class SyncJobQueue:
    """Background sync jobs, fed by the webhook receiver.

    A source id already waiting in the queue is not queued twice. Started and
    stopped by the application lifespan.
    """

    def __init__(self, orchestrator: SyncOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._pending: set[str] = set()
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, source_id: str) -> bool:
        """Queue a sync for source_id. Returns False if one is already waiting."""
        if source_id in self._pending:
            logger.debug("Sync for %s already queued", source_id)
            return False
        self._pending.add(source_id)
        self._queue.put_nowait(source_id)
        return True

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="sync-job-queue")
        logger.info("Sync job queue started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Sync job queue stopped")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            source_id = await self._queue.get()
            # Notifications arriving while this job runs queue a fresh sync
            self._pending.discard(source_id)
            try:
                result = await self._orchestrator.sync_source_by_id(source_id)
                if result is not None and not result.success:
                    logger.warning(
                        "Webhook sync failed for calendar %s: %s", source_id, result.error,
                    )
            except Exception:
                logger.exception("Webhook sync crashed for calendar %s", source_id)
            finally:
                self._queue.task_done()
