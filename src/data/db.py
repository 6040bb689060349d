"""
HomeBase — Household Database.

SQLite-backed storage for calendar sources, mirrored events, webhook
channels, chores and chore assignments. Every table belongs to a household,
directly or through its parent row; deleting a calendar source cascades to
its events and webhook channels.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.data.models import (
    CalendarSource,
    Chore,
    ChoreAssignment,
    Event,
    User,
    WebhookChannel,
)

logger = logging.getLogger(__name__)

GOOGLE_PROVIDER = "google"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            TEXT PRIMARY KEY,
    display_name  TEXT NOT NULL,
    household_id  TEXT,
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS calendar_sources (
    id                       TEXT PRIMARY KEY,
    household_id             TEXT NOT NULL,
    user_id                  TEXT,
    provider                 TEXT NOT NULL,
    external_id              TEXT NOT NULL,
    name                     TEXT NOT NULL,
    color                    TEXT,
    access_token_encrypted   TEXT,
    refresh_token_encrypted  TEXT,
    token_expiry             TEXT,
    sync_token               TEXT,
    last_synced_at           TEXT,
    enabled                  INTEGER NOT NULL DEFAULT 0,
    created_at               TEXT NOT NULL,
    UNIQUE (household_id, provider, external_id)
);

CREATE INDEX IF NOT EXISTS idx_calendar_sources_sync
    ON calendar_sources (enabled, last_synced_at);

CREATE TABLE IF NOT EXISTS events (
    id                  TEXT PRIMARY KEY,
    calendar_source_id  TEXT NOT NULL REFERENCES calendar_sources(id) ON DELETE CASCADE,
    external_id         TEXT,
    title               TEXT NOT NULL,
    description         TEXT,
    location            TEXT,
    start_time          TEXT NOT NULL,
    end_time            TEXT NOT NULL,
    all_day             INTEGER NOT NULL DEFAULT 0,
    recurrence_rule     TEXT,
    raw_data            TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    UNIQUE (calendar_source_id, external_id)
);

CREATE TABLE IF NOT EXISTS webhook_channels (
    id                  TEXT PRIMARY KEY,
    calendar_source_id  TEXT NOT NULL REFERENCES calendar_sources(id) ON DELETE CASCADE,
    channel_id          TEXT NOT NULL UNIQUE,
    resource_id         TEXT NOT NULL,
    expiration          TEXT NOT NULL,
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chores (
    id            TEXT PRIMARY KEY,
    household_id  TEXT NOT NULL,
    title         TEXT NOT NULL,
    description   TEXT,
    icon          TEXT,
    points        INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chore_assignments (
    id               TEXT PRIMARY KEY,
    chore_id         TEXT NOT NULL REFERENCES chores(id) ON DELETE CASCADE,
    assigned_to      TEXT,
    due_date         TEXT NOT NULL,
    recurrence_rule  TEXT,
    completed_at     TEXT,
    completed_by     TEXT,
    created_at       TEXT NOT NULL
);
"""


def utc_iso(dt: datetime | None = None) -> str:
    """Render a datetime (default: now) as a fixed-width UTC ISO string.

    Fixed width keeps lexical order equal to chronological order, which the
    staleness and expiry queries rely on.
    """
    if dt is None:
        dt = datetime.now(timezone.utc)
    elif dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _new_id() -> str:
    return str(uuid.uuid4())


class _HouseholdDB:
    """Shared connection handling; each subclass owns one table group."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("%s initialized at %s", type(self).__name__, self._db_path)


class UserDB(_HouseholdDB):
    """Household members, as mirrored from the auth provider."""

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            display_name=row["display_name"],
            household_id=row["household_id"],
            created_at=row["created_at"],
        )

    def add_user(
        self, user_id: str, display_name: str, household_id: str | None = None,
    ) -> User:
        now = utc_iso()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO users (id, display_name, household_id, created_at) "
                "VALUES (?, ?, ?, ?)",
                (user_id, display_name, household_id, now),
            )
        logger.info("User registered: %s '%s'", user_id, display_name)
        return User(
            id=user_id, display_name=display_name,
            household_id=household_id, created_at=now,
        )

    def get_user(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_household_id(self, user_id: str) -> str | None:
        """Return the user's household, or None when unknown or unassigned."""
        user = self.get_user(user_id)
        return user.household_id if user else None


class CalendarSourceDB(_HouseholdDB):
    """Connected calendars and their encrypted OAuth tokens."""

    @staticmethod
    def _row_to_source(row: sqlite3.Row) -> CalendarSource:
        return CalendarSource(
            id=row["id"],
            household_id=row["household_id"],
            user_id=row["user_id"],
            provider=row["provider"],
            external_id=row["external_id"],
            name=row["name"],
            color=row["color"],
            enabled=bool(row["enabled"]),
            access_token_encrypted=row["access_token_encrypted"],
            refresh_token_encrypted=row["refresh_token_encrypted"],
            token_expiry=row["token_expiry"],
            sync_token=row["sync_token"],
            last_synced_at=row["last_synced_at"],
            created_at=row["created_at"],
        )

    def upsert_sources(
        self,
        household_id: str,
        user_id: str | None,
        calendars: list[dict[str, Any]],
        access_token_encrypted: str | None,
        refresh_token_encrypted: str | None,
        token_expiry: str | None = None,
        provider: str = GOOGLE_PROVIDER,
    ) -> list[CalendarSource]:
        """Insert or refresh one row per remote calendar.

        New rows start disabled. Existing rows keep their enabled flag and
        sync cursor but receive the new tokens, name and colour.

        Args:
            calendars: dicts with keys external_id, name and optional color.
        """
        now = utc_iso()
        with self._connect() as conn:
            for cal in calendars:
                conn.execute(
                    """
                    INSERT INTO calendar_sources
                        (id, household_id, user_id, provider, external_id, name, color,
                         access_token_encrypted, refresh_token_encrypted, token_expiry,
                         enabled, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
                    ON CONFLICT (household_id, provider, external_id) DO UPDATE SET
                        user_id = excluded.user_id,
                        name = excluded.name,
                        color = excluded.color,
                        access_token_encrypted = excluded.access_token_encrypted,
                        refresh_token_encrypted = excluded.refresh_token_encrypted,
                        token_expiry = excluded.token_expiry
                    """,
                    (
                        _new_id(), household_id, user_id, provider,
                        cal["external_id"], cal["name"], cal.get("color"),
                        access_token_encrypted, refresh_token_encrypted,
                        token_expiry, now,
                    ),
                )
            rows = conn.execute(
                "SELECT * FROM calendar_sources WHERE household_id = ? AND provider = ? "
                "ORDER BY name",
                (household_id, provider),
            ).fetchall()
        logger.info(
            "Stored %d calendar source(s) for household %s", len(calendars), household_id,
        )
        return [self._row_to_source(r) for r in rows]

    def get_source(
        self, source_id: str, household_id: str | None = None,
    ) -> CalendarSource | None:
        """Fetch a source, optionally requiring it to belong to a household."""
        query = "SELECT * FROM calendar_sources WHERE id = ?"
        params: list = [source_id]
        if household_id is not None:
            query += " AND household_id = ?"
            params.append(household_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_source(row)

    def list_sources(self, household_id: str) -> list[CalendarSource]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM calendar_sources WHERE household_id = ? ORDER BY name",
                (household_id,),
            ).fetchall()
        return [self._row_to_source(r) for r in rows]

    def list_stale_sources(
        self, stale_before: str, provider: str = GOOGLE_PROVIDER,
    ) -> list[CalendarSource]:
        """Enabled sources never synced or last synced before stale_before."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM calendar_sources
                WHERE enabled = 1 AND provider = ?
                  AND (last_synced_at IS NULL OR last_synced_at < ?)
                ORDER BY last_synced_at
                """,
                (provider, stale_before),
            ).fetchall()
        return [self._row_to_source(r) for r in rows]

    def set_enabled(
        self, household_id: str, enabled_ids: list[str],
    ) -> tuple[list[str], list[str]]:
        """Enable exactly enabled_ids within the household; disable the rest.

        Unknown ids are ignored. Returns (newly_enabled, newly_disabled).
        """
        wanted = set(enabled_ids)
        newly_enabled: list[str] = []
        newly_disabled: list[str] = []
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, enabled FROM calendar_sources WHERE household_id = ?",
                (household_id,),
            ).fetchall()
            for row in rows:
                should_enable = row["id"] in wanted
                if should_enable == bool(row["enabled"]):
                    continue
                conn.execute(
                    "UPDATE calendar_sources SET enabled = ? WHERE id = ?",
                    (int(should_enable), row["id"]),
                )
                (newly_enabled if should_enable else newly_disabled).append(row["id"])
        logger.info(
            "Household %s: enabled %d, disabled %d calendar(s)",
            household_id, len(newly_enabled), len(newly_disabled),
        )
        return newly_enabled, newly_disabled

    def update_tokens(
        self,
        source_id: str,
        access_token_encrypted: str | None,
        refresh_token_encrypted: str | None,
        token_expiry: str | None,
    ) -> None:
        """Persist rotated tokens. None leaves the stored value unchanged."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE calendar_sources SET
                    access_token_encrypted = COALESCE(?, access_token_encrypted),
                    refresh_token_encrypted = COALESCE(?, refresh_token_encrypted),
                    token_expiry = COALESCE(?, token_expiry)
                WHERE id = ?
                """,
                (access_token_encrypted, refresh_token_encrypted, token_expiry, source_id),
            )
        logger.info("Rotated tokens stored for calendar source %s", source_id)

    def mark_disconnected(self, source_id: str) -> None:
        """Disable a source whose refresh token was revoked and wipe its secrets."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE calendar_sources SET
                    enabled = 0,
                    access_token_encrypted = NULL,
                    refresh_token_encrypted = NULL,
                    token_expiry = NULL,
                    sync_token = NULL
                WHERE id = ?
                """,
                (source_id,),
            )
        logger.warning("Calendar source %s marked disconnected", source_id)

    def delete_source(self, source_id: str, household_id: str | None = None) -> bool:
        """Delete a source; its events and webhook channels cascade."""
        query = "DELETE FROM calendar_sources WHERE id = ?"
        params: list = [source_id]
        if household_id is not None:
            query += " AND household_id = ?"
            params.append(household_id)
        with self._connect() as conn:
            cursor = conn.execute(query, params)
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Calendar source %s deleted", source_id)
        return deleted


class EventDB(_HouseholdDB):
    """Local mirror of provider events."""

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        raw = row["raw_data"]
        return Event(
            id=row["id"],
            calendar_source_id=row["calendar_source_id"],
            external_id=row["external_id"],
            title=row["title"],
            description=row["description"],
            location=row["location"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            all_day=bool(row["all_day"]),
            recurrence_rule=row["recurrence_rule"],
            raw_data=json.loads(raw) if raw else None,
        )

    @staticmethod
    def _upsert(conn: sqlite3.Connection, event: Event, now: str) -> None:
        conn.execute(
            """
            INSERT INTO events
                (id, calendar_source_id, external_id, title, description, location,
                 start_time, end_time, all_day, recurrence_rule, raw_data,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (calendar_source_id, external_id) DO UPDATE SET
                title = excluded.title,
                description = excluded.description,
                location = excluded.location,
                start_time = excluded.start_time,
                end_time = excluded.end_time,
                all_day = excluded.all_day,
                recurrence_rule = excluded.recurrence_rule,
                raw_data = excluded.raw_data,
                updated_at = excluded.updated_at
            """,
            (
                event.id or _new_id(), event.calendar_source_id, event.external_id,
                event.title, event.description, event.location,
                event.start_time, event.end_time, int(event.all_day),
                event.recurrence_rule,
                json.dumps(event.raw_data) if event.raw_data is not None else None,
                now, now,
            ),
        )

    def apply_sync_delta(
        self,
        calendar_source_id: str,
        upserts: list[Event],
        deleted_external_ids: list[str],
        sync_token: str | None,
        synced_at: str,
    ) -> tuple[int, int]:
        """Apply one sync pass atomically.

        Upserts, deletions, the new cursor and last_synced_at are written in a
        single transaction: if anything fails, nothing is committed and the
        previous cursor stays valid.

        Returns:
            (events_upserted, events_deleted)
        """
        now = utc_iso()
        deleted = 0
        with self._connect() as conn:
            for event in upserts:
                self._upsert(conn, event, now)
            for external_id in deleted_external_ids:
                cursor = conn.execute(
                    "DELETE FROM events WHERE calendar_source_id = ? AND external_id = ?",
                    (calendar_source_id, external_id),
                )
                deleted += cursor.rowcount
            cursor = conn.execute(
                "UPDATE calendar_sources SET sync_token = ?, last_synced_at = ? WHERE id = ?",
                (sync_token, synced_at, calendar_source_id),
            )
            if cursor.rowcount == 0:
                raise sqlite3.IntegrityError(
                    f"Calendar source {calendar_source_id} no longer exists"
                )
        return len(upserts), deleted

    def insert_event(self, event: Event) -> Event:
        """Insert (or refresh) a single event outside a sync pass."""
        if event.id is None:
            event.id = _new_id()
        with self._connect() as conn:
            self._upsert(conn, event, utc_iso())
        return event

    def list_events(self, calendar_source_id: str) -> list[Event]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE calendar_source_id = ? ORDER BY start_time",
                (calendar_source_id,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def list_events_in_range(
        self,
        household_id: str,
        start: str,
        end: str,
        calendar_source_ids: list[str] | None = None,
    ) -> list[Event]:
        """Events of the household's enabled calendars overlapping [start, end)."""
        query = """
            SELECT e.* FROM events e
            JOIN calendar_sources s ON s.id = e.calendar_source_id
            WHERE s.household_id = ? AND s.enabled = 1
              AND e.start_time < ? AND e.end_time > ?
        """
        params: list = [household_id, end, start]
        if calendar_source_ids:
            query += f" AND e.calendar_source_id IN ({', '.join('?' * len(calendar_source_ids))})"
            params.extend(calendar_source_ids)
        query += " ORDER BY e.start_time"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    def get_by_external_id(
        self, calendar_source_id: str, external_id: str,
    ) -> Event | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM events WHERE calendar_source_id = ? AND external_id = ?",
                (calendar_source_id, external_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)


class WebhookChannelDB(_HouseholdDB):
    """Registered Google push-notification channels."""

    @staticmethod
    def _row_to_channel(row: sqlite3.Row) -> WebhookChannel:
        return WebhookChannel(
            id=row["id"],
            calendar_source_id=row["calendar_source_id"],
            channel_id=row["channel_id"],
            resource_id=row["resource_id"],
            expiration=row["expiration"],
            created_at=row["created_at"],
        )

    def add_channel(
        self,
        calendar_source_id: str,
        channel_id: str,
        resource_id: str,
        expiration: str,
    ) -> WebhookChannel:
        channel = WebhookChannel(
            id=_new_id(),
            calendar_source_id=calendar_source_id,
            channel_id=channel_id,
            resource_id=resource_id,
            expiration=expiration,
            created_at=utc_iso(),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO webhook_channels "
                "(id, calendar_source_id, channel_id, resource_id, expiration, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    channel.id, channel.calendar_source_id, channel.channel_id,
                    channel.resource_id, channel.expiration, channel.created_at,
                ),
            )
        logger.info(
            "Webhook channel %s stored for calendar source %s (expires %s)",
            channel_id, calendar_source_id, expiration,
        )
        return channel

    def get_by_channel_id(self, channel_id: str) -> WebhookChannel | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM webhook_channels WHERE channel_id = ?", (channel_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_channel(row)

    def list_for_source(self, calendar_source_id: str) -> list[WebhookChannel]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM webhook_channels WHERE calendar_source_id = ? "
                "ORDER BY expiration",
                (calendar_source_id,),
            ).fetchall()
        return [self._row_to_channel(r) for r in rows]

    def list_expiring(self, before: str) -> list[WebhookChannel]:
        """Channels whose expiration falls before the given timestamp."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM webhook_channels WHERE expiration < ? ORDER BY expiration",
                (before,),
            ).fetchall()
        return [self._row_to_channel(r) for r in rows]

    def delete_channel(self, channel_id: str) -> bool:
        """Delete a channel row by its (locally generated) channel id."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM webhook_channels WHERE channel_id = ?", (channel_id,),
            )
        return cursor.rowcount > 0


class ChoreDB(_HouseholdDB):
    """Chore definitions and their dated assignments."""

    @staticmethod
    def _row_to_chore(row: sqlite3.Row) -> Chore:
        return Chore(
            id=row["id"],
            household_id=row["household_id"],
            title=row["title"],
            description=row["description"],
            icon=row["icon"],
            points=row["points"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_assignment(row: sqlite3.Row) -> ChoreAssignment:
        return ChoreAssignment(
            id=row["id"],
            chore_id=row["chore_id"],
            assigned_to=row["assigned_to"],
            due_date=row["due_date"],
            recurrence_rule=row["recurrence_rule"],
            completed_at=row["completed_at"],
            completed_by=row["completed_by"],
            created_at=row["created_at"],
        )

    def add_chore(
        self,
        household_id: str,
        title: str,
        description: str | None = None,
        icon: str | None = None,
        points: int = 0,
    ) -> Chore:
        chore = Chore(
            id=_new_id(), household_id=household_id, title=title,
            description=description, icon=icon, points=points, created_at=utc_iso(),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO chores (id, household_id, title, description, icon, points, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    chore.id, household_id, title, description, icon, points,
                    chore.created_at,
                ),
            )
        logger.info("Chore added: %s '%s'", chore.id, title)
        return chore

    def get_chore(self, chore_id: str) -> Chore | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM chores WHERE id = ?", (chore_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_chore(row)

    def list_chores(self, household_id: str) -> list[Chore]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM chores WHERE household_id = ? ORDER BY title COLLATE NOCASE",
                (household_id,),
            ).fetchall()
        return [self._row_to_chore(r) for r in rows]

    def next_open_assignments(
        self, household_id: str, on_or_after: str,
    ) -> dict[str, ChoreAssignment]:
        """The earliest open assignment due on/after a date, per chore."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT a.* FROM chore_assignments a
                JOIN chores c ON c.id = a.chore_id
                WHERE c.household_id = ? AND a.completed_at IS NULL AND a.due_date >= ?
                ORDER BY a.due_date, a.created_at
                """,
                (household_id, on_or_after),
            ).fetchall()
        upcoming: dict[str, ChoreAssignment] = {}
        for row in rows:
            upcoming.setdefault(row["chore_id"], self._row_to_assignment(row))
        return upcoming

    def list_household_assignments(
        self,
        household_id: str,
        assigned_to: str | None = None,
        unassigned: bool = False,
        due_from: str | None = None,
        due_to: str | None = None,
        status: str = "pending",
    ) -> list[ChoreAssignment]:
        """Assignments of a household's chores, ordered by due date.

        status is "pending", "completed" or "all".
        """
        query = (
            "SELECT a.* FROM chore_assignments a JOIN chores c ON c.id = a.chore_id "
            "WHERE c.household_id = ?"
        )
        params: list = [household_id]
        if unassigned:
            query += " AND a.assigned_to IS NULL"
        elif assigned_to:
            query += " AND a.assigned_to = ?"
            params.append(assigned_to)
        if due_from:
            query += " AND a.due_date >= ?"
            params.append(due_from)
        if due_to:
            query += " AND a.due_date <= ?"
            params.append(due_to)
        if status == "pending":
            query += " AND a.completed_at IS NULL"
        elif status == "completed":
            query += " AND a.completed_at IS NOT NULL"
        query += " ORDER BY a.due_date, a.created_at"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_assignment(r) for r in rows]

    @staticmethod
    def _insert_assignment(conn: sqlite3.Connection, assignment: ChoreAssignment) -> None:
        conn.execute(
            """
            INSERT INTO chore_assignments
                (id, chore_id, assigned_to, due_date, recurrence_rule,
                 completed_at, completed_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                assignment.id, assignment.chore_id, assignment.assigned_to,
                assignment.due_date, assignment.recurrence_rule,
                assignment.completed_at, assignment.completed_by, assignment.created_at,
            ),
        )

    def add_assignment(
        self,
        chore_id: str,
        due_date: str,
        assigned_to: str | None = None,
        recurrence_rule: str | None = None,
    ) -> ChoreAssignment:
        assignment = ChoreAssignment(
            id=_new_id(), chore_id=chore_id, due_date=due_date,
            assigned_to=assigned_to, recurrence_rule=recurrence_rule,
            created_at=utc_iso(),
        )
        with self._connect() as conn:
            self._insert_assignment(conn, assignment)
        logger.info("Assignment %s added for chore %s due %s", assignment.id, chore_id, due_date)
        return assignment

    def get_assignment(self, assignment_id: str) -> ChoreAssignment | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM chore_assignments WHERE id = ?", (assignment_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_assignment(row)

    def list_assignments(self, chore_id: str) -> list[ChoreAssignment]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM chore_assignments WHERE chore_id = ? ORDER BY due_date, created_at",
                (chore_id,),
            ).fetchall()
        return [self._row_to_assignment(r) for r in rows]

    _UPDATABLE = ("assigned_to", "due_date", "recurrence_rule", "completed_at", "completed_by")

    def update_assignment(
        self,
        assignment_id: str,
        updates: dict[str, Any],
        successor: ChoreAssignment | None = None,
        require_open: bool = False,
    ) -> tuple[ChoreAssignment | None, ChoreAssignment | None]:
        """Update an assignment and optionally insert its successor atomically.

        With require_open=True the update only applies while completed_at is
        still NULL, so two racing completions cannot both spawn a successor.

        Returns:
            (updated_assignment, inserted_successor). The first element is None
            when no row matched; the second is None when no successor was written.
        """
        unknown = set(updates) - set(self._UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update assignment fields: {sorted(unknown)}")
        if not updates:
            raise ValueError("No fields to update")

        assignments = ", ".join(f"{col} = ?" for col in updates)
        query = f"UPDATE chore_assignments SET {assignments} WHERE id = ?"
        params: list = [*updates.values(), assignment_id]
        if require_open:
            query += " AND completed_at IS NULL"

        inserted = None
        with self._connect() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                return None, None
            if successor is not None:
                self._insert_assignment(conn, successor)
                inserted = successor
            row = conn.execute(
                "SELECT * FROM chore_assignments WHERE id = ?", (assignment_id,),
            ).fetchone()
        return self._row_to_assignment(row), inserted

    def delete_assignment(self, assignment_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM chore_assignments WHERE id = ?", (assignment_id,),
            )
        return cursor.rowcount > 0

    @staticmethod
    def new_assignment(
        chore_id: str,
        due_date: str,
        assigned_to: str | None,
        recurrence_rule: str | None,
    ) -> ChoreAssignment:
        """Build (but do not store) an assignment row."""
        return ChoreAssignment(
            id=_new_id(), chore_id=chore_id, due_date=due_date,
            assigned_to=assigned_to, recurrence_rule=recurrence_rule,
            created_at=utc_iso(),
        )
