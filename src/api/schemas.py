"""Request and response bodies for the HTTP API."""

from __future__ import annotations

import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class SyncRequest(BaseModel):
    calendar_source_id: str

    @field_validator("calendar_source_id")
    @classmethod
    def must_be_uuid(cls, v: str) -> str:
        try:
            uuid.UUID(v)
        except ValueError:
            raise ValueError("Invalid calendar_source_id format")
        return v


class SyncResponse(BaseModel):
    success: bool
    events_upserted: int = 0
    events_deleted: int = 0
    error: str | None = None


class CronSyncResponse(BaseModel):
    calendars_synced: int
    total_events_upserted: int
    total_events_deleted: int
    failures: int


class RenewalResponse(BaseModel):
    renewed: int
    failed: int
    skipped: int


class CalendarSourceOut(BaseModel):
    """A calendar source as shown to users; never carries token material."""

    id: str
    name: str
    color: str | None = None
    provider: str
    enabled: bool
    last_synced_at: str | None = None


class SourcesResponse(BaseModel):
    sources: list[CalendarSourceOut]


class EnabledSourcesRequest(BaseModel):
    enabled_ids: list[str]


class EnabledSourcesResponse(BaseModel):
    success: bool = True
    enabled: list[str] = Field(default_factory=list)
    disabled: list[str] = Field(default_factory=list)


class EventCreateRequest(BaseModel):
    title: str
    start_time: str
    end_time: str
    all_day: bool = False
    description: str | None = None
    location: str | None = None
    calendar_source_id: str | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title is required")
        return v


class EventOut(BaseModel):
    id: str | None = None
    calendar_source_id: str
    external_id: str | None = None
    title: str
    description: str | None = None
    location: str | None = None
    start_time: str
    end_time: str
    all_day: bool = False
    recurrence_rule: str | None = None


class EventCreateResponse(BaseModel):
    event: EventOut
    google_event_id: str | None = None


class EventsResponse(BaseModel):
    events: list[EventOut]


class AssignmentUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""

    assigned_to: str | None = None
    due_date: str | None = None
    recurrence_rule: str | None = None
    completed_at: str | None = None
    completed_by: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class AssignmentOut(BaseModel):
    id: str
    chore_id: str
    due_date: str
    assigned_to: str | None = None
    recurrence_rule: str | None = None
    recurrence_text: str | None = None
    completed_at: str | None = None
    completed_by: str | None = None
    created_at: str = ""


class AssignmentUpdateResponse(BaseModel):
    assignment: AssignmentOut
    next_assignment: AssignmentOut | None = None


class RecurrenceOut(BaseModel):
    type: str = "none"
    weekday: int | None = None
    monthday: int | None = None


class RecurrenceIn(BaseModel):
    """Structured recurrence; weekday is 0=Monday..6=Sunday."""

    type: Literal["none", "daily", "weekly", "biweekly", "monthly"] = "none"
    weekday: int | None = Field(default=None, ge=0, le=6)
    monthday: int | None = Field(default=None, ge=1, le=31)


class AssignmentCreateRequest(BaseModel):
    chore_id: str
    due_date: str
    assigned_to: str | None = None
    recurrence_rule: str | None = None
    recurrence: RecurrenceIn | None = None


class AssignmentResponse(BaseModel):
    assignment: AssignmentOut


class AssignmentsResponse(BaseModel):
    assignments: list[AssignmentOut]


class ChoreCreateRequest(BaseModel):
    title: str
    description: str | None = None
    icon: str | None = None
    points: int = Field(default=0, ge=0)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title is required")
        return v


class ChoreOut(BaseModel):
    id: str
    household_id: str
    title: str
    description: str | None = None
    icon: str | None = None
    points: int = 0
    created_at: str = ""
    next_assignment: AssignmentOut | None = None


class ChoreResponse(BaseModel):
    chore: ChoreOut


class ChoresResponse(BaseModel):
    chores: list[ChoreOut]


class AssignmentDetailResponse(BaseModel):
    assignment: AssignmentOut
    chore: ChoreOut
    recurrence: RecurrenceOut
    upcoming_due_dates: list[str] = Field(default_factory=list)


class WebhookAck(BaseModel):
    received: bool = True
    calendar_source_id: str | None = None
    queued: bool | None = None
    warning: str | None = None

    def body(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class HealthResponse(BaseModel):
    status: str
    timestamp: str
