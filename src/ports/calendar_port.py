"""Calendar port — abstract interface for calendar provider operations.

Core modules (sync engine, webhook manager) depend on this protocol, never
on a specific provider SDK.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol


class CalendarError(Exception):
    """Raised when any calendar provider operation fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SyncTokenExpiredError(CalendarError):
    """The provider no longer accepts the stored incremental-sync cursor."""


@dataclass
class EventPage:
    """Result of one complete listing (all pages)."""

    items: list[dict[str, Any]]
    next_sync_token: str | None


@dataclass
class WatchResponse:
    """Provider answer to a push-notification subscription."""

    resource_id: str
    expiration: datetime            # aware UTC


class CalendarProviderPort(Protocol):
    """Provider operations used by the sync engine and webhook manager."""

    async def list_calendars(self) -> list[dict[str, Any]]: ...

    async def list_events(
        self, calendar_id: str, sync_token: str | None = None,
    ) -> EventPage: ...

    async def insert_event(self, calendar_id: str, body: dict[str, Any]) -> dict[str, Any]: ...

    async def watch_events(
        self, calendar_id: str, channel_id: str, address: str,
    ) -> WatchResponse: ...

    async def stop_channel(self, channel_id: str, resource_id: str) -> None: ...
