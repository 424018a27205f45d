"""Trafficlens — Scheduler Jobs.

APScheduler daily job that refreshes every connected property at the
configured hour.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session, select

from trafficlens.config import settings
from trafficlens.database import engine
from trafficlens.ingestion.pipeline import IngestionInputError, refresh_user_data
from trafficlens.models.account_models import GAAccount, PLACEHOLDER_PROPERTY_IDS, TokenStatus
from trafficlens.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


def _refreshable_users(session: Session) -> list[str]:
    accounts = session.exec(
        select(GAAccount).where(
            GAAccount.token_status == TokenStatus.VALID.value,
            GAAccount.property_id.notin_(list(PLACEHOLDER_PROPERTY_IDS)),  # type: ignore
        )
    ).all()
    return sorted({a.user_id for a in accounts})


async def daily_refresh_job(session_engine=None) -> dict:
    """Refresh stale data for every user with a usable connection.

    Users run one after another; a failure for one user is logged and the
    job moves on.
    """
    logger.info("Scheduled daily refresh starting...")
    counts = {"refreshed": 0, "skipped": 0, "failed": 0}

    with Session(session_engine or engine) as session:
        for user_id in _refreshable_users(session):
            try:
                result = await refresh_user_data(session, user_id)
            except IngestionInputError as e:
                logger.warning(f"Skipping refresh: {e}", extra={"user_id": user_id})
                counts["failed"] += 1
                continue
            except Exception as e:
                session.rollback()
                logger.error(f"Scheduled refresh failed: {e}", extra={"user_id": user_id})
                counts["failed"] += 1
                continue

            if result.skipped_fetch:
                counts["skipped"] += 1
            elif result.success:
                counts["refreshed"] += 1
            else:
                counts["failed"] += 1

    logger.info(
        f"Scheduled refresh complete: {counts['refreshed']} refreshed, "
        f"{counts['skipped']} fresh, {counts['failed']} failed"
    )
    return counts


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        daily_refresh_job,
        "cron",
        hour=settings.refresh_hour,
        minute=0,
        id="daily_refresh",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Daily refresh at {settings.refresh_hour}:00 UTC")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
