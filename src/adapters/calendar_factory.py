"""Calendar adapter factory — creates the right adapter for a calendar source."""

from __future__ import annotations

from google.oauth2.credentials import Credentials

from src.data.db import GOOGLE_PROVIDER
from src.ports.calendar_port import CalendarProviderPort


def create_calendar_adapter(
    credentials: Credentials, provider: str = GOOGLE_PROVIDER,
) -> CalendarProviderPort:
    """Return the calendar adapter for a source's provider.

    Args:
        credentials: Authorized credentials for the source's account.
        provider: The calendar_sources.provider value.
    """
    if provider.lower() == GOOGLE_PROVIDER:
        from src.adapters.google_calendar import GoogleCalendarAdapter

        return GoogleCalendarAdapter(credentials)

    raise ValueError(f"Unknown calendar provider: {provider!r}")
