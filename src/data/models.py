"""
HomeBase — Data Models.

Row shapes for the household store. Calendar events are a local mirror of
the provider's calendars; chores and their assignments are local state that
only HomeBase manages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class User:
    """A household member, as provisioned by the auth provider."""

    id: str
    display_name: str
    household_id: str | None = None
    created_at: str = ""


@dataclass
class CalendarSource:
    """One connected remote calendar.

    Tokens are stored encrypted (see src.core.vault). A null sync_token means
    the next sync performs a full listing.
    """

    id: str
    household_id: str
    provider: str
    external_id: str
    name: str
    color: str | None = None
    enabled: bool = False
    user_id: str | None = None
    access_token_encrypted: str | None = None
    refresh_token_encrypted: str | None = None
    token_expiry: str | None = None   # ISO timestamp, UTC
    sync_token: str | None = None
    last_synced_at: str | None = None
    created_at: str = ""


@dataclass
class Event:
    """A calendar event mirrored from a calendar source."""

    calendar_source_id: str
    title: str
    start_time: str                   # ISO timestamp, UTC
    end_time: str                     # ISO timestamp, UTC
    external_id: str | None = None
    description: str | None = None
    location: str | None = None
    all_day: bool = False
    recurrence_rule: str | None = None
    raw_data: dict[str, Any] | None = None
    id: str | None = None


@dataclass
class WebhookChannel:
    """A registered Google push-notification channel."""

    id: str
    calendar_source_id: str
    channel_id: str                   # generated locally (UUID4)
    resource_id: str                  # assigned by Google
    expiration: str                   # ISO timestamp, UTC
    created_at: str = ""


@dataclass
class Chore:
    """A household chore definition."""

    id: str
    household_id: str
    title: str
    description: str | None = None
    icon: str | None = None
    points: int = 0
    created_at: str = ""


@dataclass
class ChoreAssignment:
    """A concrete, dated occurrence of a chore.

    assigned_to=None means anyone in the household may do it.
    """

    id: str
    chore_id: str
    due_date: str                     # ISO date YYYY-MM-DD
    assigned_to: str | None = None
    recurrence_rule: str | None = None
    completed_at: str | None = None   # ISO timestamp, None while open
    completed_by: str | None = None
    created_at: str = field(default="")
