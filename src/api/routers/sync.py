"""On-demand calendar sync endpoint."""

from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.api.dependencies import (
    get_current_user_id,
    get_orchestrator,
    get_rate_limiter,
    get_source_db,
    get_user_db,
)
from src.api.errors import ApiError
from src.api.schemas import SyncRequest, SyncResponse
from src.core.orchestrator import SyncOrchestrator
from src.core.rate_limiter import RateLimiter
from src.data.db import CalendarSourceDB, UserDB

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendars", tags=["sync"])


@router.post("/sync", response_model=SyncResponse)
async def sync_calendar(
    body: SyncRequest,
    user_id: str = Depends(get_current_user_id),
    user_db: UserDB = Depends(get_user_db),
    source_db: CalendarSourceDB = Depends(get_source_db),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Sync one calendar source now.

    Limited per calendar source (default 5 requests per minute).
    """
    decision = rate_limiter.check(body.calendar_source_id)
    if not decision.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "Too many sync requests. Please wait before trying again."},
            headers={"Retry-After": str(max(1, math.ceil(decision.retry_after)))},
        )

    household_id = user_db.get_household_id(user_id)
    if not household_id:
        raise ApiError(400, "User not found or no household")

    source = source_db.get_source(body.calendar_source_id, household_id=household_id)
    if source is None:
        raise ApiError(404, "Calendar not found or access denied")

    result = await orchestrator.sync_source(source)
    if not result.success:
        return JSONResponse(
            status_code=500,
            content=SyncResponse(
                success=False, error=result.error or "Sync failed",
            ).model_dump(),
        )

    return SyncResponse(
        success=True,
        events_upserted=result.events_upserted,
        events_deleted=result.events_deleted,
    )
