"""Trafficlens — Data Freshness Check.

Decides whether stored metrics for a date range are complete and recent
enough to skip calling the provider.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlmodel import Session, select

from trafficlens.config import settings
from trafficlens.models.analytics_models import DailyMetric
from trafficlens.core.logging import get_logger

logger = get_logger("ingestion.freshness")


def _date_range(start_date: str, end_date: str) -> List[str]:
    start = datetime.strptime(start_date, "%Y-%m-%d").date()
    stop = datetime.strptime(end_date, "%Y-%m-%d").date()
    return [
        (start + timedelta(days=i)).isoformat() for i in range((stop - start).days + 1)
    ]


def needs_data_refresh(
    session: Session,
    user_id: str,
    start_date: str,
    end_date: str,
    now: Optional[datetime] = None,
) -> bool:
    """True if any date in the range is missing or the newest row is stale."""
    rows = session.exec(
        select(DailyMetric).where(
            DailyMetric.user_id == user_id,
            DailyMetric.date >= start_date,
            DailyMetric.date <= end_date,
        )
    ).all()

    if not rows:
        logger.info("No stored data, refresh needed", extra={"user_id": user_id})
        return True

    stored = {r.date for r in rows}
    missing = [d for d in _date_range(start_date, end_date) if d not in stored]
    if missing:
        logger.info(
            f"Missing data for {len(missing)} dates ({missing[0]} … {missing[-1]})",
            extra={"user_id": user_id},
        )
        return True

    latest = max(r.updated_at for r in rows)
    if latest.tzinfo is None:
        latest = latest.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    hours_since_update = (now - latest).total_seconds() / 3600
    if hours_since_update > settings.stale_after_hours:
        logger.info(
            f"Data is stale ({hours_since_update:.1f} hours old)",
            extra={"user_id": user_id},
        )
        return True

    logger.info("Data is up to date, no refresh needed", extra={"user_id": user_id})
    return False
