"""
HomeBase — Chores and their assignments.

Creating a recurring assignment stores its rule as RRULE text, either given
directly or generated from a RecurrenceConfig anchored at the due date.

Completing a recurring assignment schedules the next one: when completed_at
goes from empty to set and the assignment has a recurrence rule, a successor
is created for the same chore and assignee, due on the next occurrence after
the completion time.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from src.core.recurrence import (
    RecurrenceConfig,
    generate_rrule,
    get_next_occurrence,
    get_next_occurrences,
    is_valid_rrule,
)
from src.data.db import ChoreDB, utc_iso
from src.data.models import Chore, ChoreAssignment

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_FIELDS = ("assigned_to", "due_date", "recurrence_rule", "completed_at", "completed_by")


class ChoreNotFoundError(Exception):
    """No such chore, or it belongs to another household."""


class AssignmentNotFoundError(Exception):
    """No such assignment, or it belongs to another household."""


class InvalidAssignmentUpdate(ValueError):
    """A chore or assignment request is malformed."""


@dataclass
class AssignmentUpdateResult:
    assignment: ChoreAssignment
    next_assignment: ChoreAssignment | None = None


def _parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as exc:
        raise InvalidAssignmentUpdate("completed_at must be an ISO 8601 timestamp") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _check_rule(rule_text: str | None) -> str | None:
    if rule_text and not is_valid_rrule(rule_text):
        raise InvalidAssignmentUpdate("recurrence_rule is not a valid RRULE")
    return rule_text or None


def _normalize(updates: dict[str, Any]) -> dict[str, Any]:
    unknown = set(updates) - set(_FIELDS)
    if unknown:
        raise InvalidAssignmentUpdate(f"Unknown fields: {', '.join(sorted(unknown))}")
    if not updates:
        raise InvalidAssignmentUpdate("No fields to update")

    clean: dict[str, Any] = {}
    for key, value in updates.items():
        if key in ("assigned_to", "completed_by"):
            clean[key] = value or None
        elif key == "recurrence_rule":
            clean[key] = _check_rule(value)
        elif key == "due_date":
            if not value or not _DATE_RE.match(value):
                raise InvalidAssignmentUpdate("due_date must be in YYYY-MM-DD format")
            clean[key] = value
        elif key == "completed_at":
            # None un-completes the assignment
            clean[key] = utc_iso(_parse_timestamp(value)) if value else None
    return clean


def _get_owned(
    chore_db: ChoreDB, assignment_id: str, household_id: str | None,
) -> ChoreAssignment:
    current = chore_db.get_assignment(assignment_id)
    if current is None:
        raise AssignmentNotFoundError(assignment_id)
    if household_id is not None:
        chore = chore_db.get_chore(current.chore_id)
        if chore is None or chore.household_id != household_id:
            raise AssignmentNotFoundError(assignment_id)
    return current


def update_assignment(
    chore_db: ChoreDB,
    assignment_id: str,
    updates: dict[str, Any],
    household_id: str | None = None,
) -> AssignmentUpdateResult:
    """Apply a partial update, creating the successor of a completed recurring chore.

    The update and the successor are written together. Only the request that
    actually moves completed_at from empty to set creates a successor, so two
    racing completions produce one.

    Raises:
        InvalidAssignmentUpdate: malformed fields.
        AssignmentNotFoundError: unknown id or another household's assignment.
    """
    clean = _normalize(updates)
    current = _get_owned(chore_db, assignment_id, household_id)

    completing = current.completed_at is None and clean.get("completed_at") is not None
    rule = clean.get("recurrence_rule", current.recurrence_rule)

    successor = None
    if completing and rule:
        next_at = get_next_occurrence(rule, _parse_timestamp(clean["completed_at"]))
        if next_at is not None:
            successor = ChoreDB.new_assignment(
                chore_id=current.chore_id,
                due_date=next_at.date().isoformat(),
                assigned_to=clean.get("assigned_to", current.assigned_to),
                recurrence_rule=rule,
            )
        else:
            logger.info("Recurrence for assignment %s has no further dates", assignment_id)

    updated, inserted = chore_db.update_assignment(
        assignment_id, clean, successor=successor, require_open=completing,
    )
    if updated is None and completing:
        # Completed concurrently; apply the update without a second successor
        logger.info("Assignment %s was already completed", assignment_id)
        updated, inserted = chore_db.update_assignment(assignment_id, clean)
    if updated is None:
        raise AssignmentNotFoundError(assignment_id)

    if inserted is not None:
        logger.info(
            "Assignment %s completed; next occurrence %s due %s",
            assignment_id, inserted.id, inserted.due_date,
        )
    return AssignmentUpdateResult(assignment=updated, next_assignment=inserted)


def complete_assignment(
    chore_db: ChoreDB,
    assignment_id: str,
    completed_by: str | None = None,
    completed_at: datetime | None = None,
    household_id: str | None = None,
) -> AssignmentUpdateResult:
    """Mark an assignment done now (or at completed_at)."""
    updates: dict[str, Any] = {"completed_at": utc_iso(completed_at)}
    if completed_by is not None:
        updates["completed_by"] = completed_by
    return update_assignment(chore_db, assignment_id, updates, household_id=household_id)


# ---------------------------------------------------------------------------
# Creation, lookup and deletion
# ---------------------------------------------------------------------------


def create_chore(
    chore_db: ChoreDB,
    household_id: str,
    title: str,
    description: str | None = None,
    icon: str | None = None,
    points: int = 0,
) -> Chore:
    """Add a chore to a household. Title is required; points must be >= 0."""
    if not title or not title.strip():
        raise InvalidAssignmentUpdate("Title is required")
    if points < 0:
        raise InvalidAssignmentUpdate("Points must be a non-negative number")
    return chore_db.add_chore(
        household_id,
        title.strip(),
        description=(description or "").strip() or None,
        icon=icon or None,
        points=points,
    )


def _parse_due_date(value: str | None) -> date:
    if not value:
        raise InvalidAssignmentUpdate("due_date is required")
    if not _DATE_RE.match(value):
        raise InvalidAssignmentUpdate("due_date must be in YYYY-MM-DD format")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidAssignmentUpdate("due_date must be in YYYY-MM-DD format") from exc


def create_assignment(
    chore_db: ChoreDB,
    household_id: str,
    chore_id: str,
    due_date: str,
    assigned_to: str | None = None,
    recurrence_rule: str | None = None,
    recurrence: RecurrenceConfig | None = None,
) -> ChoreAssignment:
    """Schedule a chore.

    A recurrence config is turned into RRULE text anchored at the due date.
    Passing both a config and raw rule text is rejected.

    Raises:
        InvalidAssignmentUpdate: malformed date or rule.
        ChoreNotFoundError: unknown chore or another household's chore.
    """
    due = _parse_due_date(due_date)
    if recurrence is not None and recurrence_rule:
        raise InvalidAssignmentUpdate("Send either recurrence or recurrence_rule, not both")

    chore = chore_db.get_chore(chore_id)
    if chore is None or chore.household_id != household_id:
        raise ChoreNotFoundError(chore_id)

    if recurrence is not None:
        if recurrence.weekday is not None and not 0 <= recurrence.weekday <= 6:
            raise InvalidAssignmentUpdate("weekday must be 0 (Monday) to 6 (Sunday)")
        if recurrence.monthday is not None and not 1 <= recurrence.monthday <= 31:
            raise InvalidAssignmentUpdate("monthday must be between 1 and 31")
        try:
            rule = generate_rrule(recurrence, due)
        except ValueError as exc:
            raise InvalidAssignmentUpdate(str(exc)) from exc
    else:
        rule = _check_rule(recurrence_rule)

    return chore_db.add_assignment(
        chore_id, due.isoformat(), assigned_to=assigned_to or None, recurrence_rule=rule,
    )


def get_assignment(
    chore_db: ChoreDB, assignment_id: str, household_id: str | None = None,
) -> ChoreAssignment:
    return _get_owned(chore_db, assignment_id, household_id)


def delete_assignment(
    chore_db: ChoreDB, assignment_id: str, household_id: str | None = None,
) -> None:
    _get_owned(chore_db, assignment_id, household_id)
    if not chore_db.delete_assignment(assignment_id):
        raise AssignmentNotFoundError(assignment_id)
    logger.info("Assignment %s deleted", assignment_id)


def upcoming_due_dates(assignment: ChoreAssignment, count: int = 5) -> list[str]:
    """Due dates the rule would produce after this assignment's own."""
    if not assignment.recurrence_rule:
        return []
    anchor = date.fromisoformat(assignment.due_date)
    return [
        occ.date().isoformat()
        for occ in get_next_occurrences(assignment.recurrence_rule, anchor, count=count)
    ]


_STATUSES = ("pending", "completed", "all")


def list_assignments(
    chore_db: ChoreDB,
    household_id: str,
    user_filter: str | None = None,
    current_user_id: str | None = None,
    due_from: str | None = None,
    due_to: str | None = None,
    status: str = "pending",
) -> list[ChoreAssignment]:
    """Household assignments, filtered.

    user_filter is a user id, "me" (the current user) or "unassigned".
    """
    if status not in _STATUSES:
        raise InvalidAssignmentUpdate("status must be one of: pending, completed, all")
    for value in (due_from, due_to):
        if value:
            _parse_due_date(value)

    assigned_to = current_user_id if user_filter == "me" else user_filter
    return chore_db.list_household_assignments(
        household_id,
        assigned_to=None if user_filter == "unassigned" else assigned_to,
        unassigned=user_filter == "unassigned",
        due_from=due_from,
        due_to=due_to,
        status=status,
    )


def list_chores_with_next(
    chore_db: ChoreDB, household_id: str, today: date | None = None,
) -> list[tuple[Chore, ChoreAssignment | None]]:
    """Each household chore with its earliest open assignment due today or later."""
    today = today or datetime.now(timezone.utc).date()
    upcoming = chore_db.next_open_assignments(household_id, today.isoformat())
    return [(chore, upcoming.get(chore.id)) for chore in chore_db.list_chores(household_id)]
