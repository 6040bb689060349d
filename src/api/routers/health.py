"""Liveness check for always-on displays and monitoring."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.api.schemas import HealthResponse
from src.data.db import utc_iso

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health():
    body = HealthResponse(status="healthy", timestamp=utc_iso())
    return JSONResponse(
        content=body.model_dump(),
        headers={"Cache-Control": "no-store, no-cache, must-revalidate"},
    )
