"""Trafficlens — Per-Date Upsert of Grouped Reports.

Each date is one transaction: the DailyMetric is updated (or inserted), its
child rows are deleted, and the current batch's children are inserted. A
failing date is rolled back and skipped; the others still commit.
"""

from datetime import datetime, timezone
from typing import List

from sqlalchemy import delete
from sqlmodel import Session, SQLModel, select

from trafficlens.models.analytics_models import (
    CHILD_MODELS,
    DailyMetric,
    DeviceRecord,
    GeographyRecord,
    ReferrerRecord,
    TopPageRecord,
)
from trafficlens.models.report_models import DailyTotals, GroupedReports, UpsertSummary
from trafficlens.core.logging import get_logger

logger = get_logger("ingestion.upserter")


def _build_children(
    metric: DailyMetric, grouped: GroupedReports
) -> List[SQLModel]:
    """Child rows for the metric's date, tagged with its id."""
    day = metric.date
    owner = {"daily_metric_id": metric.id, "user_id": metric.user_id, "date": day}
    children: List[SQLModel] = []

    children.extend(
        ReferrerRecord(**owner, source=r.source, visitors=r.visitors)
        for r in grouped.referrers.get(day, [])
    )
    children.extend(
        TopPageRecord(
            **owner,
            page_path=p.page_path,
            page_views=p.page_views,
            avg_engagement_time=p.avg_engagement_time,
        )
        for p in grouped.pages.get(day, [])
    )
    children.extend(
        GeographyRecord(
            **owner,
            country=g.country,
            country_code=g.country_code,
            city=g.city,
            visitors=g.visitors,
            page_views=g.page_views,
        )
        for g in grouped.geography.get(day, [])
    )
    children.extend(
        DeviceRecord(
            **owner,
            device_category=d.device_category,
            browser=d.browser,
            operating_system=d.operating_system,
            visitors=d.visitors,
            page_views=d.page_views,
        )
        for d in grouped.devices.get(day, [])
    )
    return children


def upsert_day(
    session: Session,
    user_id: str,
    property_id: str,
    totals: DailyTotals,
    grouped: GroupedReports,
) -> DailyMetric:
    """Write one date's aggregate and replace its children. Does not commit."""
    now = datetime.now(timezone.utc)
    metric = session.exec(
        select(DailyMetric).where(
            DailyMetric.user_id == user_id,
            DailyMetric.date == totals.date,
        )
    ).first()

    if metric:
        metric.visitors = totals.visitors
        metric.page_views = totals.page_views
        metric.avg_session_duration = totals.avg_session_duration
        metric.bounce_rate = totals.bounce_rate
        metric.property_id = property_id
        metric.updated_at = now
        session.add(metric)
        for model in CHILD_MODELS:
            session.exec(delete(model).where(model.daily_metric_id == metric.id))
    else:
        metric = DailyMetric(
            user_id=user_id,
            property_id=property_id,
            date=totals.date,
            visitors=totals.visitors,
            page_views=totals.page_views,
            avg_session_duration=totals.avg_session_duration,
            bounce_rate=totals.bounce_rate,
            created_at=now,
            updated_at=now,
        )
        session.add(metric)
        session.flush()

    children = _build_children(metric, grouped)
    session.add_all(children)
    session.flush()
    logger.debug(
        f"Upserted {totals.date}: visitors={totals.visitors}, {len(children)} child rows",
        extra={"user_id": user_id, "date": totals.date},
    )
    return metric


def upsert_reports(
    session: Session,
    user_id: str,
    property_id: str,
    grouped: GroupedReports,
) -> UpsertSummary:
    """Upsert every date of the daily-totals report in date order."""
    summary = UpsertSummary()

    for day in grouped.dates():
        try:
            upsert_day(session, user_id, property_id, grouped.daily[day], grouped)
            session.commit()
            summary.processed_dates.append(day)
        except Exception as e:
            session.rollback()
            summary.failed_dates.append(day)
            logger.error(
                f"Upsert failed for {day}, skipping: {e}",
                extra={"user_id": user_id, "date": day},
                exc_info=True,
            )

    logger.info(
        f"Stored {summary.days_processed} days ({len(summary.failed_dates)} failed)",
        extra={"user_id": user_id},
    )
    return summary
