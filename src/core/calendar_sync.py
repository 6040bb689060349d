"""
HomeBase — Incremental Sync Engine.

Mirrors one remote calendar into the local events table.

Per source the engine moves between two states: no cursor (never synced,
or the provider invalidated the cursor) and incremental (holding a valid
sync token). Each call ends in one of three outcomes: success, a
recoverable failure, or token revocation, which needs the user to reconnect.

A sync pass never partially commits. Upserts, deletions, the new cursor and
last_synced_at land in one transaction, or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable

from google.oauth2.credentials import Credentials

from src.adapters.calendar_factory import create_calendar_adapter
from src.core.vault import VaultError, decrypt, encrypt
from src.data.db import CalendarSourceDB, EventDB, utc_iso
from src.data.models import CalendarSource, Event
from src.integrations.google_auth import (
    OAuthError,
    TokenBundle,
    TokenRevokedError,
    get_valid_credentials,
)
from src.ports.calendar_port import (
    CalendarError,
    CalendarProviderPort,
    SyncTokenExpiredError,
)

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "Untitled Event"
DISCONNECTED_MESSAGE = "Calendar disconnected: authentication expired. Please reconnect."

ProviderFactory = Callable[[Credentials, str], CalendarProviderPort]


@dataclass
class SyncResult:
    success: bool
    events_upserted: int = 0
    events_deleted: int = 0
    new_sync_token: str | None = None
    error: str | None = None
    token_revoked: bool = False


@dataclass
class EventDraft:
    """An event created from a HomeBase display or the dashboard."""

    title: str
    start_time: str          # ISO datetime, or a date for all-day events
    end_time: str
    all_day: bool = False
    description: str | None = None
    location: str | None = None


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def load_tokens(source: CalendarSource) -> TokenBundle:
    """Decrypt a source's stored tokens.

    Raises:
        OAuthError: the source has no refresh token (never connected, or
            already disconnected).
        VaultError: the stored ciphertext cannot be decrypted.
    """
    if not source.refresh_token_encrypted:
        raise OAuthError("Calendar source has no refresh token")
    access_token = None
    if source.access_token_encrypted:
        access_token = decrypt(source.access_token_encrypted)
    return TokenBundle(
        access_token=access_token,
        refresh_token=decrypt(source.refresh_token_encrypted),
        expiry=_parse_iso(source.token_expiry),
    )


def persist_rotated_tokens(
    source_db: CalendarSourceDB, source_id: str, tokens: TokenBundle,
) -> None:
    """Encrypt and store tokens handed back by a refresh."""
    source_db.update_tokens(
        source_id,
        access_token_encrypted=encrypt(tokens.access_token) if tokens.access_token else None,
        refresh_token_encrypted=encrypt(tokens.refresh_token) if tokens.refresh_token else None,
        token_expiry=utc_iso(tokens.expiry) if tokens.expiry else None,
    )


async def authorize_source(
    source: CalendarSource,
    source_db: CalendarSourceDB,
    provider_factory: ProviderFactory = create_calendar_adapter,
) -> CalendarProviderPort:
    """Return a provider client for a source, storing rotated tokens first."""
    auth = await get_valid_credentials(load_tokens(source))
    if auth.rotated_tokens is not None:
        persist_rotated_tokens(source_db, source.id, auth.rotated_tokens)
    return provider_factory(auth.credentials, source.provider)


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def _date_to_utc_midnight(value: str) -> str:
    return utc_iso(datetime.combine(date.fromisoformat(value[:10]), datetime.min.time()))


def map_provider_event(item: dict[str, Any], calendar_source_id: str) -> Event | None:
    """Map a Google event resource to a local Event.

    Returns None for items without an id, cancelled items, and timed items
    missing either dateTime. All-day events are stored at midnight UTC; the
    provider's exclusive end date is kept as-is.
    """
    if not item.get("id"):
        return None
    if item.get("status") == "cancelled":
        return None

    start = item.get("start") or {}
    end = item.get("end") or {}
    all_day = bool(start.get("date") and not start.get("dateTime"))

    if all_day:
        if not end.get("date"):
            return None
        start_time = _date_to_utc_midnight(start["date"])
        end_time = _date_to_utc_midnight(end["date"])
    else:
        if not start.get("dateTime") or not end.get("dateTime"):
            return None
        start_time = utc_iso(_parse_iso(start["dateTime"]))
        end_time = utc_iso(_parse_iso(end["dateTime"]))

    recurrence = item.get("recurrence") or []
    return Event(
        calendar_source_id=calendar_source_id,
        external_id=item["id"],
        title=item.get("summary") or UNTITLED_EVENT,
        description=item.get("description"),
        location=item.get("location"),
        start_time=start_time,
        end_time=end_time,
        all_day=all_day,
        recurrence_rule=recurrence[0] if recurrence else None,
        raw_data=item,
    )


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


async def sync_calendar_events(
    source: CalendarSource,
    source_db: CalendarSourceDB | None = None,
    event_db: EventDB | None = None,
    provider_factory: ProviderFactory = create_calendar_adapter,
) -> SyncResult:
    """Run one sync pass for a calendar source.

    Never raises. Token revocation comes back with token_revoked=True; the
    caller decides whether to mark the source disconnected.
    """
    source_db = source_db or CalendarSourceDB()
    event_db = event_db or EventDB()
    upserts: list[Event] = []
    deletions: list[str] = []

    try:
        provider = await authorize_source(source, source_db, provider_factory)

        try:
            page = await provider.list_events(source.external_id, source.sync_token)
        except SyncTokenExpiredError:
            logger.info(
                "Sync token expired for calendar %s, performing full sync", source.id,
            )
            page = await provider.list_events(source.external_id, None)

        for item in page.items:
            if item.get("status") == "cancelled" and item.get("id"):
                deletions.append(item["id"])
                continue
            event = map_provider_event(item, source.id)
            if event is not None:
                upserts.append(event)

        upserted, deleted = event_db.apply_sync_delta(
            source.id, upserts, deletions, page.next_sync_token, utc_iso(),
        )
    except TokenRevokedError:
        logger.warning("Refresh token revoked for calendar %s", source.id)
        return SyncResult(success=False, error=DISCONNECTED_MESSAGE, token_revoked=True)
    except (OAuthError, VaultError, CalendarError) as exc:
        logger.error("Sync failed for calendar %s: %s", source.id, exc)
        return SyncResult(
            success=False,
            events_upserted=0,
            events_deleted=0,
            error=str(exc),
        )
    except Exception as exc:
        logger.exception("Unexpected sync failure for calendar %s", source.id)
        return SyncResult(success=False, error=str(exc) or type(exc).__name__)

    logger.info(
        "Calendar %s synced: %d upserted, %d deleted", source.id, upserted, deleted,
    )
    return SyncResult(
        success=True,
        events_upserted=upserted,
        events_deleted=deleted,
        new_sync_token=page.next_sync_token,
    )


# ---------------------------------------------------------------------------
# Display-originated writes
# ---------------------------------------------------------------------------


def _draft_body(draft: EventDraft) -> dict[str, Any]:
    if draft.all_day:
        start: dict[str, str] = {"date": draft.start_time[:10]}
        end: dict[str, str] = {"date": draft.end_time[:10]}
    else:
        start = {"dateTime": draft.start_time}
        end = {"dateTime": draft.end_time}
    body: dict[str, Any] = {"summary": draft.title.strip(), "start": start, "end": end}
    if draft.description and draft.description.strip():
        body["description"] = draft.description.strip()
    if draft.location and draft.location.strip():
        body["location"] = draft.location.strip()
    return body


async def create_provider_event(
    source: CalendarSource,
    draft: EventDraft,
    source_db: CalendarSourceDB | None = None,
    event_db: EventDB | None = None,
    provider_factory: ProviderFactory = create_calendar_adapter,
) -> Event:
    """Create an event on the provider, then mirror it locally.

    The provider event is the source of truth: if the local insert fails it
    is logged and the next sync brings the event in.

    Raises:
        OAuthError / VaultError / CalendarError: the provider write failed.
    """
    source_db = source_db or CalendarSourceDB()
    event_db = event_db or EventDB()

    provider = await authorize_source(source, source_db, provider_factory)
    created = await provider.insert_event(source.external_id, _draft_body(draft))

    event = map_provider_event(created, source.id)
    if event is None:
        if draft.all_day:
            start_time = _date_to_utc_midnight(draft.start_time)
            end_time = _date_to_utc_midnight(draft.end_time)
        else:
            start_time = utc_iso(_parse_iso(draft.start_time))
            end_time = utc_iso(_parse_iso(draft.end_time))
        event = Event(
            calendar_source_id=source.id,
            external_id=created.get("id"),
            title=draft.title.strip(),
            description=(draft.description or "").strip() or None,
            location=(draft.location or "").strip() or None,
            start_time=start_time,
            end_time=end_time,
            all_day=draft.all_day,
            raw_data=created,
        )

    try:
        event_db.insert_event(event)
    except Exception as exc:
        logger.error("Error inserting local copy of event %s: %s", event.external_id, exc)
    return event
