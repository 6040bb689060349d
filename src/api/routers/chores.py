"""Chores and chore assignments, including completion of recurring chores."""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_chore_db, get_current_user_id, get_household_id
from src.api.errors import ApiError
from src.api.schemas import (
    AssignmentCreateRequest,
    AssignmentDetailResponse,
    AssignmentOut,
    AssignmentResponse,
    AssignmentsResponse,
    AssignmentUpdateRequest,
    AssignmentUpdateResponse,
    ChoreCreateRequest,
    ChoreOut,
    ChoreResponse,
    ChoresResponse,
    RecurrenceOut,
)
from src.core.chores import (
    AssignmentNotFoundError,
    AssignmentUpdateResult,
    ChoreNotFoundError,
    InvalidAssignmentUpdate,
    complete_assignment,
    create_assignment,
    create_chore,
    delete_assignment,
    get_assignment,
    list_assignments,
    list_chores_with_next,
    update_assignment,
    upcoming_due_dates,
)
from src.core.recurrence import RecurrenceConfig, parse_rrule_to_config, parse_rrule_to_text
from src.data.db import ChoreDB
from src.data.models import Chore, ChoreAssignment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chores", tags=["chores"])


def _assignment_out(assignment: ChoreAssignment) -> AssignmentOut:
    return AssignmentOut(
        **asdict(assignment),
        recurrence_text=parse_rrule_to_text(assignment.recurrence_rule),
    )


def _chore_out(chore: Chore, next_assignment: ChoreAssignment | None = None) -> ChoreOut:
    return ChoreOut(
        **asdict(chore),
        next_assignment=_assignment_out(next_assignment) if next_assignment else None,
    )


def _response(result: AssignmentUpdateResult) -> AssignmentUpdateResponse:
    return AssignmentUpdateResponse(
        assignment=_assignment_out(result.assignment),
        next_assignment=(
            _assignment_out(result.next_assignment) if result.next_assignment else None
        ),
    )


# ---------------------------------------------------------------------------
# Chores
# ---------------------------------------------------------------------------


@router.get("", response_model=ChoresResponse)
async def list_chores(
    household_id: str = Depends(get_household_id),
    chore_db: ChoreDB = Depends(get_chore_db),
):
    """Household chores by title, each with its next open assignment."""
    return ChoresResponse(
        chores=[
            _chore_out(chore, upcoming)
            for chore, upcoming in list_chores_with_next(chore_db, household_id)
        ],
    )


@router.post("", response_model=ChoreResponse, status_code=201)
async def add_chore(
    body: ChoreCreateRequest,
    household_id: str = Depends(get_household_id),
    chore_db: ChoreDB = Depends(get_chore_db),
):
    try:
        chore = create_chore(
            chore_db, household_id, body.title,
            description=body.description, icon=body.icon, points=body.points,
        )
    except InvalidAssignmentUpdate as exc:
        raise ApiError(400, str(exc))
    return ChoreResponse(chore=_chore_out(chore))


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@router.get("/assignments", response_model=AssignmentsResponse)
async def get_assignments(
    user_id: str | None = None,
    due_from: str | None = Query(default=None, alias="from"),
    due_to: str | None = Query(default=None, alias="to"),
    status: str = "pending",
    current_user_id: str = Depends(get_current_user_id),
    household_id: str = Depends(get_household_id),
    chore_db: ChoreDB = Depends(get_chore_db),
):
    """Household assignments.

    user_id may be a user id, "me" or "unassigned"; status is pending
    (default), completed or all.
    """
    try:
        assignments = list_assignments(
            chore_db,
            household_id,
            user_filter=user_id,
            current_user_id=current_user_id,
            due_from=due_from,
            due_to=due_to,
            status=status,
        )
    except InvalidAssignmentUpdate as exc:
        raise ApiError(400, str(exc))
    return AssignmentsResponse(assignments=[_assignment_out(a) for a in assignments])


@router.post("/assignments", response_model=AssignmentResponse, status_code=201)
async def add_assignment(
    body: AssignmentCreateRequest,
    household_id: str = Depends(get_household_id),
    chore_db: ChoreDB = Depends(get_chore_db),
):
    """Schedule a chore. `recurrence` is turned into an RRULE anchored at due_date."""
    recurrence = (
        RecurrenceConfig(**body.recurrence.model_dump()) if body.recurrence else None
    )
    try:
        assignment = create_assignment(
            chore_db,
            household_id,
            body.chore_id,
            body.due_date,
            assigned_to=body.assigned_to,
            recurrence_rule=body.recurrence_rule,
            recurrence=recurrence,
        )
    except InvalidAssignmentUpdate as exc:
        raise ApiError(400, str(exc))
    except ChoreNotFoundError:
        raise ApiError(404, "Chore not found")
    return AssignmentResponse(assignment=_assignment_out(assignment))


@router.get("/assignments/{assignment_id}", response_model=AssignmentDetailResponse)
async def get_assignment_detail(
    assignment_id: str,
    household_id: str = Depends(get_household_id),
    chore_db: ChoreDB = Depends(get_chore_db),
):
    """One assignment with its chore, structured recurrence and next due dates."""
    try:
        assignment = get_assignment(chore_db, assignment_id, household_id=household_id)
    except AssignmentNotFoundError:
        raise ApiError(404, "Assignment not found")

    config = parse_rrule_to_config(assignment.recurrence_rule)
    return AssignmentDetailResponse(
        assignment=_assignment_out(assignment),
        chore=_chore_out(chore_db.get_chore(assignment.chore_id)),
        recurrence=RecurrenceOut(**asdict(config)),
        upcoming_due_dates=upcoming_due_dates(assignment),
    )


@router.patch("/assignments/{assignment_id}", response_model=AssignmentUpdateResponse)
async def patch_assignment(
    assignment_id: str,
    body: AssignmentUpdateRequest,
    household_id: str = Depends(get_household_id),
    chore_db: ChoreDB = Depends(get_chore_db),
):
    """Update an assignment. Completing a recurring one schedules the next."""
    try:
        result = update_assignment(
            chore_db, assignment_id, body.changes(), household_id=household_id,
        )
    except InvalidAssignmentUpdate as exc:
        raise ApiError(400, str(exc))
    except AssignmentNotFoundError:
        raise ApiError(404, "Assignment not found")
    return _response(result)


@router.delete("/assignments/{assignment_id}")
async def remove_assignment(
    assignment_id: str,
    household_id: str = Depends(get_household_id),
    chore_db: ChoreDB = Depends(get_chore_db),
):
    try:
        delete_assignment(chore_db, assignment_id, household_id=household_id)
    except AssignmentNotFoundError:
        raise ApiError(404, "Assignment not found")
    return {"success": True}


@router.post("/assignments/{assignment_id}/complete", response_model=AssignmentUpdateResponse)
async def complete(
    assignment_id: str,
    user_id: str = Depends(get_current_user_id),
    household_id: str = Depends(get_household_id),
    chore_db: ChoreDB = Depends(get_chore_db),
):
    """Mark an assignment done now, credited to the signed-in user."""
    try:
        result = complete_assignment(
            chore_db, assignment_id, completed_by=user_id, household_id=household_id,
        )
    except AssignmentNotFoundError:
        raise ApiError(404, "Assignment not found")
    return _response(result)
