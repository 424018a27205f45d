"""Trafficlens — Fetch Status Tracking.

The UI polls this record instead of waiting on the ingestion call, so every
transition carries a message that says what is happening or what failed.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlmodel import Session, select

from trafficlens.models.account_models import FetchState, FetchStatus
from trafficlens.core.logging import get_logger

logger = get_logger("ingestion.status")

EXPECTED_FETCH_SECONDS = 45
FETCHING_PROGRESS_CAP = 95
TERMINAL_STATES = {FetchState.COMPLETE.value, FetchState.ERROR.value}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_fetch_status(session: Session, user_id: str) -> Optional[FetchStatus]:
    return session.exec(
        select(FetchStatus).where(FetchStatus.user_id == user_id)
    ).first()


def update_fetch_status(
    session: Session, user_id: str, status: FetchState, message: str
) -> None:
    """Create or update the user's status record and commit it.

    A status write never fails the run it reports on; errors are logged.
    """
    logger.info(
        f"Status → {status.value}: {message}", extra={"user_id": user_id}
    )
    now = datetime.now(timezone.utc)
    try:
        record = get_fetch_status(session, user_id)
        if record is None:
            record = FetchStatus(user_id=user_id)

        if status == FetchState.FETCHING and (
            record.started_at is None or record.status in TERMINAL_STATES
        ):
            record.started_at = now
        record.status = status.value
        record.message = message
        record.updated_at = now
        record.completed_at = now if status.value in TERMINAL_STATES else None
        session.add(record)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Status update failed: {e}", extra={"user_id": user_id})


def compute_progress(record: FetchStatus, now: Optional[datetime] = None) -> int:
    """100 when complete; elapsed/45s capped at 95 while fetching; 0 otherwise."""
    if record.status == FetchState.COMPLETE.value:
        return 100
    if record.status == FetchState.FETCHING.value and record.started_at:
        now = now or datetime.now(timezone.utc)
        elapsed = (now - _as_utc(record.started_at)).total_seconds()
        return min(round(elapsed / EXPECTED_FETCH_SECONDS * 100), FETCHING_PROGRESS_CAP)
    return 0


def describe_status(record: Optional[FetchStatus]) -> Dict[str, Any]:
    """Payload served to the polling UI."""
    if record is None:
        return {
            "status": FetchState.PENDING.value,
            "message": "Preparing to fetch data",
            "progress": 0,
        }
    return {
        "status": record.status,
        "message": record.message or "Processing data...",
        "progress": compute_progress(record),
        "started_at": record.started_at,
        "updated_at": record.updated_at,
        "completed_at": record.completed_at,
    }
