"""Calendar sources and events for the signed-in user's household."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from src.api.dependencies import (
    get_channel_db,
    get_event_db,
    get_household_id,
    get_orchestrator,
    get_provider_factory,
    get_source_db,
    get_sync_queue,
)
from src.api.errors import ApiError
from src.api.schemas import (
    CalendarSourceOut,
    EnabledSourcesRequest,
    EnabledSourcesResponse,
    EventCreateRequest,
    EventCreateResponse,
    EventOut,
    EventsResponse,
    SourcesResponse,
)
from src.core.calendar_sync import EventDraft, create_provider_event
from src.core.orchestrator import SyncJobQueue, SyncOrchestrator
from src.core.vault import VaultError
from src.core.webhook_channels import register_webhook_channel, stop_all_webhook_channels
from src.data.db import CalendarSourceDB, EventDB, WebhookChannelDB, utc_iso
from src.data.models import CalendarSource, Event
from src.integrations.google_auth import OAuthError, TokenRevokedError
from src.ports.calendar_port import CalendarError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendars", tags=["calendars"])


def _source_out(source: CalendarSource) -> CalendarSourceOut:
    return CalendarSourceOut(
        id=source.id,
        name=source.name,
        color=source.color,
        provider=source.provider,
        enabled=source.enabled,
        last_synced_at=source.last_synced_at,
    )


def _event_out(event: Event) -> EventOut:
    data = asdict(event)
    data.pop("raw_data", None)
    return EventOut(**data)


def _parse_bound(value: str, name: str) -> str:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ApiError(400, f"Invalid {name}. Use ISO 8601 format.")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return utc_iso(parsed)


@router.get("/sources", response_model=SourcesResponse)
async def list_sources(
    household_id: str = Depends(get_household_id),
    source_db: CalendarSourceDB = Depends(get_source_db),
):
    return SourcesResponse(
        sources=[_source_out(s) for s in source_db.list_sources(household_id)],
    )


@router.patch("/sources", response_model=EnabledSourcesResponse)
async def update_enabled_sources(
    body: EnabledSourcesRequest,
    household_id: str = Depends(get_household_id),
    source_db: CalendarSourceDB = Depends(get_source_db),
    channel_db: WebhookChannelDB = Depends(get_channel_db),
    sync_queue: SyncJobQueue = Depends(get_sync_queue),
    provider_factory=Depends(get_provider_factory),
):
    """Enable exactly the listed calendars; every other one is disabled.

    Newly enabled calendars get a push channel and an initial sync; newly
    disabled ones lose their push channels.
    """
    from src.config import settings

    enabled, disabled = source_db.set_enabled(household_id, body.enabled_ids)

    for source_id in enabled:
        source = source_db.get_source(source_id)
        if source is None:
            continue
        if settings.webhook_url:
            result = await register_webhook_channel(
                source, settings.webhook_url,
                source_db=source_db, channel_db=channel_db,
                provider_factory=provider_factory,
            )
            if not result.success:
                logger.warning(
                    "Calendar %s enabled without push updates: %s", source_id, result.error,
                )
        sync_queue.enqueue(source_id)

    for source_id in disabled:
        source = source_db.get_source(source_id)
        if source is not None:
            await stop_all_webhook_channels(
                source, source_db=source_db, channel_db=channel_db,
                provider_factory=provider_factory,
            )

    return EnabledSourcesResponse(enabled=enabled, disabled=disabled)


@router.delete("/sources/{source_id}")
async def delete_source(
    source_id: str,
    household_id: str = Depends(get_household_id),
    source_db: CalendarSourceDB = Depends(get_source_db),
    channel_db: WebhookChannelDB = Depends(get_channel_db),
    provider_factory=Depends(get_provider_factory),
):
    """Disconnect a calendar. Its events and channels go with it."""
    source = source_db.get_source(source_id, household_id=household_id)
    if source is None:
        raise ApiError(404, "Calendar not found")

    await stop_all_webhook_channels(
        source, source_db=source_db, channel_db=channel_db,
        provider_factory=provider_factory,
    )
    source_db.delete_source(source_id, household_id=household_id)
    return {"success": True}


@router.get("/events", response_model=EventsResponse)
async def list_events(
    start_date: str | None = None,
    end_date: str | None = None,
    calendar_source_ids: str | None = None,
    household_id: str = Depends(get_household_id),
    event_db: EventDB = Depends(get_event_db),
):
    """Events of enabled calendars overlapping a date range."""
    if not start_date or not end_date:
        raise ApiError(400, "start_date and end_date are required")
    start = _parse_bound(start_date, "start_date")
    end = _parse_bound(end_date, "end_date")
    ids = [i for i in (calendar_source_ids or "").split(",") if i]

    events = event_db.list_events_in_range(household_id, start, end, ids or None)
    return EventsResponse(events=[_event_out(e) for e in events])


@router.post("/events", response_model=EventCreateResponse, status_code=201)
async def create_event(
    body: EventCreateRequest,
    household_id: str = Depends(get_household_id),
    source_db: CalendarSourceDB = Depends(get_source_db),
    event_db: EventDB = Depends(get_event_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    provider_factory=Depends(get_provider_factory),
):
    """Create an event on Google and mirror it for immediate display."""
    writable = [
        s for s in source_db.list_sources(household_id)
        if s.enabled and s.refresh_token_encrypted
        and (body.calendar_source_id is None or s.id == body.calendar_source_id)
    ]
    if not writable:
        raise ApiError(400, "No writable calendar available. Connect a Google Calendar first.")
    source = writable[0]

    draft = EventDraft(
        title=body.title,
        start_time=body.start_time,
        end_time=body.end_time,
        all_day=body.all_day,
        description=body.description,
        location=body.location,
    )
    try:
        event = await create_provider_event(
            source, draft,
            source_db=source_db, event_db=event_db, provider_factory=provider_factory,
        )
    except TokenRevokedError:
        await orchestrator.disconnect(source)
        raise ApiError(500, "Failed to create event")
    except (OAuthError, VaultError, CalendarError, ValueError) as exc:
        logger.error("Error creating event on calendar %s: %s", source.id, exc)
        raise ApiError(500, "Failed to create event")

    return EventCreateResponse(event=_event_out(event), google_event_id=event.external_id)
