"""Google Calendar adapter — implements CalendarProviderPort for Google Calendar API v3.

All Google-specific logic lives here. Core modules never import this directly;
they depend on the CalendarProviderPort protocol.

googleapiclient is synchronous, so every request runs in a worker thread via
asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.ports.calendar_port import (
    CalendarError,
    EventPage,
    SyncTokenExpiredError,
    WatchResponse,
)

logger = logging.getLogger(__name__)

# Full listings cover 30 days back to 90 days ahead
FULL_SYNC_PAST = timedelta(days=30)
FULL_SYNC_FUTURE = timedelta(days=90)
PAGE_SIZE = 250  # API maximum

# Failures below the HTTP layer: sockets, timeouts, TLS, credential refresh
TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error, TransportError, RefreshError)


def _status(exc: HttpError) -> int:
    return int(getattr(exc.resp, "status", 0) or 0)


class GoogleCalendarAdapter:
    """Google Calendar implementation of CalendarProviderPort."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials
        self._service = None

    def _get_service(self):
        if self._service is None:
            self._service = build(
                "calendar", "v3", credentials=self._credentials, cache_discovery=False,
            )
        return self._service

    async def list_calendars(self) -> list[dict[str, Any]]:
        def _list() -> list[dict[str, Any]]:
            service = self._get_service()
            calendars: list[dict[str, Any]] = []
            page_token = None
            while True:
                resp = service.calendarList().list(pageToken=page_token).execute()
                calendars.extend(resp.get("items", []))
                page_token = resp.get("nextPageToken")
                if not page_token:
                    return calendars

        try:
            calendars = await asyncio.to_thread(_list)
        except HttpError as exc:
            logger.error("Failed to list Google calendars: %s", exc)
            raise CalendarError(f"Failed to list calendars: {exc}", _status(exc)) from exc
        except TRANSPORT_ERRORS as exc:
            logger.error("Failed to reach Google while listing calendars: %s", exc)
            raise CalendarError(f"Failed to list calendars: {exc}") from exc

        logger.info("Found %d Google calendar(s)", len(calendars))
        return calendars

    async def list_events(
        self, calendar_id: str, sync_token: str | None = None,
    ) -> EventPage:
        """List every page of events.

        With a sync token only changes since that cursor are returned
        (including cancelled items). Without one, the full window is listed
        with recurring series expanded into instances.

        Raises:
            SyncTokenExpiredError: Google answered 410 for the sync token.
            CalendarError: any other API failure.
        """
        params: dict[str, Any] = {
            "calendarId": calendar_id,
            "singleEvents": True,
            "maxResults": PAGE_SIZE,
        }
        if sync_token:
            params["syncToken"] = sync_token
        else:
            now = datetime.now(timezone.utc)
            params["timeMin"] = (now - FULL_SYNC_PAST).isoformat()
            params["timeMax"] = (now + FULL_SYNC_FUTURE).isoformat()

        def _list() -> EventPage:
            service = self._get_service()
            items: list[dict[str, Any]] = []
            page_token = None
            next_sync_token = None
            while True:
                resp = service.events().list(pageToken=page_token, **params).execute()
                items.extend(resp.get("items", []))
                page_token = resp.get("nextPageToken")
                next_sync_token = resp.get("nextSyncToken")
                if not page_token:
                    return EventPage(items=items, next_sync_token=next_sync_token)

        try:
            page = await asyncio.to_thread(_list)
        except HttpError as exc:
            if _status(exc) == 410:
                raise SyncTokenExpiredError(
                    f"Sync token expired for calendar {calendar_id}", 410,
                ) from exc
            logger.error("Failed to list events for calendar %s: %s", calendar_id, exc)
            raise CalendarError(f"Failed to list events: {exc}", _status(exc)) from exc
        except TRANSPORT_ERRORS as exc:
            logger.error("Failed to reach Google for calendar %s: %s", calendar_id, exc)
            raise CalendarError(f"Failed to list events: {exc}") from exc

        logger.info(
            "Fetched %d item(s) from calendar %s (%s)",
            len(page.items), calendar_id, "incremental" if sync_token else "full",
        )
        return page

    async def insert_event(self, calendar_id: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            created = await asyncio.to_thread(
                lambda: self._get_service()
                .events()
                .insert(calendarId=calendar_id, body=body)
                .execute()
            )
        except HttpError as exc:
            logger.error("Google Calendar API error: %s", exc)
            raise CalendarError(f"Failed to create event: {exc}", _status(exc)) from exc
        except TRANSPORT_ERRORS as exc:
            logger.error("Failed to reach Google while creating event: %s", exc)
            raise CalendarError(f"Failed to create event: {exc}") from exc

        logger.info(
            "Event created: '%s' in %s: %s",
            body.get("summary", ""), calendar_id, created.get("htmlLink", ""),
        )
        return created

    async def watch_events(
        self, calendar_id: str, channel_id: str, address: str,
    ) -> WatchResponse:
        body = {"id": channel_id, "type": "web_hook", "address": address}
        try:
            resp = await asyncio.to_thread(
                lambda: self._get_service()
                .events()
                .watch(calendarId=calendar_id, body=body)
                .execute()
            )
        except HttpError as exc:
            logger.error("Failed to watch calendar %s: %s", calendar_id, exc)
            raise CalendarError(f"Failed to register channel: {exc}", _status(exc)) from exc
        except TRANSPORT_ERRORS as exc:
            logger.error("Failed to reach Google to watch calendar %s: %s", calendar_id, exc)
            raise CalendarError(f"Failed to register channel: {exc}") from exc

        resource_id = resp.get("resourceId")
        if not resource_id or not resp.get("expiration"):
            raise CalendarError("Google returned an incomplete channel registration")
        # expiration is milliseconds since the epoch, as a string
        expiration = datetime.fromtimestamp(int(resp["expiration"]) / 1000, tz=timezone.utc)
        return WatchResponse(resource_id=resource_id, expiration=expiration)

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        """Stop a push channel. A channel Google no longer knows is not an error."""
        body = {"id": channel_id, "resourceId": resource_id}
        try:
            await asyncio.to_thread(
                lambda: self._get_service().channels().stop(body=body).execute()
            )
        except HttpError as exc:
            if _status(exc) in (404, 410):
                logger.info("Channel %s already gone on Google", channel_id)
                return
            raise CalendarError(f"Failed to stop channel: {exc}", _status(exc)) from exc
        except TRANSPORT_ERRORS as exc:
            raise CalendarError(f"Failed to stop channel: {exc}") from exc
        logger.info("Channel %s stopped", channel_id)
