"""Trafficlens — Ingestion Pipeline Orchestrator.

Runs the full data flow for one user and property:
  refresh token → fetch 5 reports → group by date → upsert per date
  → daily events → weekly insights

Every step reports progress through the fetch status record so the UI can
poll it while the run is in flight.
"""

from datetime import date as date_type, datetime, timedelta, timezone
from typing import Optional

import httpx
from sqlmodel import Session, select

from trafficlens.config import settings
from trafficlens.connectors.google.auth import TokenManager
from trafficlens.connectors.google.client import GoogleAnalyticsClient
from trafficlens.connectors.google.endpoints import GoogleAnalyticsEndpoints
from trafficlens.connectors.google.transformer import group_reports
from trafficlens.models.account_models import (
    PLACEHOLDER_PROPERTY_IDS,
    FetchState,
    GAAccount,
    TokenStatus,
)
from trafficlens.models.report_models import IngestionResult
from trafficlens.ingestion.freshness import needs_data_refresh
from trafficlens.ingestion.status import update_fetch_status
from trafficlens.ingestion.upserter import upsert_reports
from trafficlens.analyzer.daily_events import detect_and_store_daily_events
from trafficlens.analyzer.weekly_insights import detect_and_store_weekly_insights
from trafficlens.core.logging import get_logger

logger = get_logger("ingestion.pipeline")


class IngestionInputError(Exception):
    """Raised when a run cannot start: missing ids, account or credentials."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)


def resolve_date_range(days: int, today: Optional[date_type] = None) -> tuple[str, str]:
    """``days`` before today through today, inclusive."""
    today = today or datetime.now(timezone.utc).date()
    return (today - timedelta(days=days)).isoformat(), today.isoformat()


def find_account(
    session: Session, user_id: str, property_id: Optional[str] = None
) -> Optional[GAAccount]:
    query = select(GAAccount).where(GAAccount.user_id == user_id)
    if property_id:
        query = query.where(GAAccount.property_id == property_id)
    return session.exec(query.order_by(GAAccount.updated_at.desc())).first()  # type: ignore


def _check_account(account: Optional[GAAccount]) -> GAAccount:
    if account is None:
        raise IngestionInputError("No GA account found for this property")
    if not account.access_token or not account.refresh_token:
        raise IngestionInputError("Missing authentication tokens")
    if account.property_id in PLACEHOLDER_PROPERTY_IDS:
        raise IngestionInputError("Invalid property ID")
    return account


def _run_detectors(session: Session, user_id: str, today: Optional[date_type]) -> None:
    """Detector failures are logged and never fail the run."""
    try:
        detect_and_store_daily_events(session, user_id, today=today)
    except Exception as e:
        session.rollback()
        logger.error(f"Daily event detection failed: {e}", extra={"user_id": user_id})

    try:
        detect_and_store_weekly_insights(session, user_id, today=today)
    except Exception as e:
        session.rollback()
        logger.error(f"Weekly insight detection failed: {e}", extra={"user_id": user_id})


async def run_ingestion(
    session: Session,
    user_id: str,
    property_id: str,
    days: Optional[int] = None,
    today: Optional[date_type] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> IngestionResult:
    """Fetch, store and analyze the last ``days`` days for one property."""
    if not user_id:
        logger.warning("Ingestion requested without a user id")
        return IngestionResult(success=False, error="User ID is required")
    if not property_id:
        logger.warning("Ingestion requested without a property id", extra={"user_id": user_id})
        return IngestionResult(success=False, error="Property ID is required")

    days = days or settings.default_fetch_days
    started = datetime.now(timezone.utc)
    logger.info(
        f"Starting ingestion for property {property_id} ({days} days)",
        extra={"user_id": user_id},
    )
    update_fetch_status(session, user_id, FetchState.FETCHING, "Starting data fetch...")

    try:
        # ── Step 1: Account + Token ──
        account = _check_account(find_account(session, user_id, property_id))
        start_date, end_date = resolve_date_range(days, today)

        tokens = TokenManager(session, account, http_client)
        access_token = await tokens.ensure_fresh()

        # ── Step 2: Fetch from Google ──
        update_fetch_status(
            session,
            user_id,
            FetchState.FETCHING,
            f"Fetching data from {start_date} to {end_date}...",
        )
        async with GoogleAnalyticsClient(
            access_token,
            account.property_id,
            on_unauthorized=tokens.refresh,
            http_client=http_client,
        ) as client:
            bundle = await GoogleAnalyticsEndpoints(client).fetch_all(start_date, end_date)

        # ── Step 3: Normalize + Persist ──
        update_fetch_status(
            session, user_id, FetchState.PROCESSING, "Processing and storing data..."
        )
        grouped = group_reports(
            bundle, on_unrecognized=settings.unrecognized_date_policy, today=today
        )
        summary = upsert_reports(session, user_id, account.property_id, grouped)

        # ── Step 4: Detectors ──
        _run_detectors(session, user_id, today)

        failed = len(summary.failed_dates)
        update_fetch_status(
            session,
            user_id,
            FetchState.COMPLETE,
            f"Successfully processed {summary.days_processed} days of data"
            + (f" ({failed} failed)" if failed else ""),
        )
        duration_ms = int((datetime.now(timezone.utc) - started).total_seconds() * 1000)
        logger.info(
            f"Ingestion complete: {summary.days_processed} days stored",
            extra={"user_id": user_id, "duration_ms": duration_ms},
        )
        return IngestionResult(
            success=True,
            days_processed=summary.days_processed,
            days_failed=failed,
        )

    except IngestionInputError as e:
        logger.warning(f"Ingestion rejected: {e}", extra={"user_id": user_id})
        update_fetch_status(session, user_id, FetchState.ERROR, str(e))
        return IngestionResult(success=False, error=str(e), status_code=e.status_code)

    except Exception as e:
        logger.error(f"Ingestion failed: {e}", extra={"user_id": user_id}, exc_info=True)
        session.rollback()
        update_fetch_status(session, user_id, FetchState.ERROR, str(e))
        return IngestionResult(
            success=False,
            error="Failed to fetch analytics data",
            details=str(e),
        )


async def refresh_user_data(
    session: Session,
    user_id: str,
    days: Optional[int] = None,
    force: bool = False,
    today: Optional[date_type] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> IngestionResult:
    """Re-run ingestion for the user's connected property unless stored data is fresh."""
    account = find_account(session, user_id)
    if account is None:
        raise IngestionInputError("Google Analytics account not found", status_code=404)
    if not account.has_selected_property:
        raise IngestionInputError("Google Analytics property not selected")
    if account.token_status == TokenStatus.INVALID.value:
        raise IngestionInputError("Google account needs to be reconnected")

    days = days or settings.default_fetch_days
    start_date, end_date = resolve_date_range(days, today)
    if not force and not needs_data_refresh(session, user_id, start_date, end_date):
        logger.info("Using stored data, skipping fetch", extra={"user_id": user_id})
        return IngestionResult(success=True, skipped_fetch=True)

    return await run_ingestion(
        session,
        user_id,
        account.property_id,
        days=days,
        today=today,
        http_client=http_client,
    )
