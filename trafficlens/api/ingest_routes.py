"""Trafficlens — Ingestion API Routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from trafficlens.config import settings
from trafficlens.database import get_session
from trafficlens.ingestion.pipeline import (
    IngestionInputError,
    refresh_user_data,
    run_ingestion,
)
from trafficlens.ingestion.status import describe_status, get_fetch_status
from trafficlens.models.report_models import IngestionResult
from trafficlens.core.logging import get_logger

logger = get_logger("api.ingest")

router = APIRouter(prefix="/analytics", tags=["Ingestion"])


# ── Request Models ──


class InitialFetchRequest(BaseModel):
    """Request body for POST /analytics/initial-fetch."""

    user_id: str = ""
    property_id: str = ""
    days: int = Field(default_factory=lambda: settings.default_fetch_days, ge=1, le=365)


class FetchRequest(BaseModel):
    """Request body for POST /analytics/fetch."""

    user_id: str
    days: int = Field(default_factory=lambda: settings.default_fetch_days, ge=1, le=365)
    force_refresh: bool = False
    """Re-fetch from Google even if stored data is complete and fresh."""


# ── Endpoints ──


@router.post("/initial-fetch", response_model=IngestionResult)
async def initial_fetch(
    request: InitialFetchRequest,
    session: Session = Depends(get_session),
):
    """Fetch, store and analyze the first window of data after a property is connected."""
    if not request.user_id:
        raise HTTPException(status_code=400, detail="User ID is required")
    if not request.property_id:
        raise HTTPException(status_code=400, detail="Property ID is required")

    result = await run_ingestion(
        session,
        request.user_id,
        request.property_id,
        days=request.days,
    )
    if not result.success and result.status_code:
        raise HTTPException(status_code=result.status_code, detail=result.error)
    if not result.success:
        raise HTTPException(
            status_code=500,
            detail={"error": result.error, "details": result.details},
        )
    return result


@router.post("/fetch", response_model=IngestionResult)
async def fetch_analytics(
    request: FetchRequest,
    session: Session = Depends(get_session),
):
    """Refresh the user's data, reusing stored rows when they are still fresh."""
    try:
        result = await refresh_user_data(
            session,
            request.user_id,
            days=request.days,
            force=request.force_refresh,
        )
    except IngestionInputError as e:
        logger.warning(f"Fetch rejected: {e}", extra={"user_id": request.user_id})
        raise HTTPException(status_code=e.status_code, detail=str(e))

    if not result.success and result.status_code:
        raise HTTPException(status_code=result.status_code, detail=result.error)
    if not result.success:
        raise HTTPException(
            status_code=500,
            detail={"error": result.error, "details": result.details},
        )
    return result


@router.get("/fetch-status")
async def fetch_status(
    user_id: str = Query(..., description="User whose fetch status to report"),
    session: Session = Depends(get_session),
):
    """Current ingestion status with an estimated progress percentage."""
    record = get_fetch_status(session, user_id)
    payload = describe_status(record)
    logger.debug(
        f"Status {payload['status']}, progress {payload['progress']}%",
        extra={"user_id": user_id},
    )
    return payload
