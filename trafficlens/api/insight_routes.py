"""Trafficlens — Insight & Breakdown API Routes."""

from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select

from trafficlens.config import settings
from trafficlens.database import get_session
from trafficlens.analyzer.breakdown import build_breakdown, day_detail
from trafficlens.core.event_registry import get_event
from trafficlens.models.insight_models import InsightEvent, InsightEventOut
from trafficlens.core.logging import get_logger

logger = get_logger("api.insights")

router = APIRouter(tags=["Insights"])


def _validate_date(d: Optional[str]) -> Optional[str]:
    """Return the date string if valid YYYY-MM-DD, else None."""
    if not d:
        return None
    try:
        datetime.strptime(d, "%Y-%m-%d")
        return d
    except ValueError:
        return None


def _resolve_range(start_date: Optional[str], end_date: Optional[str]) -> tuple[str, str]:
    today = datetime.now(timezone.utc).date()
    end = _validate_date(end_date) or today.isoformat()
    start = _validate_date(start_date) or (
        today - timedelta(days=settings.default_fetch_days)
    ).isoformat()
    return start, end


@router.get("/insights")
async def list_insights(
    user_id: str = Query(...),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    event_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    session: Session = Depends(get_session),
):
    """Stored insight events for a date range, newest first."""
    start, end = _resolve_range(start_date, end_date)
    query = select(InsightEvent).where(
        InsightEvent.user_id == user_id,
        InsightEvent.date >= start,
        InsightEvent.date <= end,
    )
    if event_type:
        if get_event(event_type) is None:
            raise HTTPException(status_code=400, detail=f"Unknown event type: {event_type}")
        query = query.where(InsightEvent.event_type == event_type)
    query = query.order_by(
        InsightEvent.date.desc(), InsightEvent.created_at.desc()  # type: ignore
    ).limit(limit)

    events = session.exec(query).all()
    return {
        "status": "success",
        "count": len(events),
        "date_range": f"{start} → {end}",
        "events": [InsightEventOut.from_row(e) for e in events],
    }


@router.get("/insights/{date}")
async def get_day_insight(
    date: str,
    user_id: str = Query(...),
    spike_type: Literal["spike", "drop"] = Query("spike", alias="type"),
    change: int = Query(0),
    session: Session = Depends(get_session),
):
    """Top sources and pages behind a spike or drop on one date."""
    if not _validate_date(date):
        raise HTTPException(status_code=400, detail=f"Invalid date: {date}")

    detail = day_detail(session, user_id, date)
    return {
        "date": date,
        "spike_type": "Traffic Spike" if spike_type == "spike" else "Traffic Drop",
        "percentage_change": abs(change),
        **detail,
    }


@router.get("/analytics/breakdown")
async def get_breakdown(
    user_id: str = Query(...),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    session: Session = Depends(get_session),
):
    """Daily series plus referrer, page, country and device breakdowns."""
    start, end = _resolve_range(start_date, end_date)
    if start > end:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    return {
        "status": "success",
        "date_range_start": start,
        "date_range_end": end,
        **build_breakdown(session, user_id, start, end),
    }
