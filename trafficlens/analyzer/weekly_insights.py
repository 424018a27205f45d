"""Trafficlens — Weekly Insight Engine.

Buckets the last 8 weeks of traffic into ISO weeks and produces trend
narratives: momentum, quality traffic, referrer milestones, growth
acceleration and referrer dependency risk. Weekly insights are regenerated
in full on every run.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete
from sqlmodel import Session, select

from trafficlens.core.event_registry import EventType, WEEKLY_EVENT_TYPES
from trafficlens.models.analytics_models import DailyMetric, ReferrerRecord
from trafficlens.models.insight_models import DetectedEvent, InsightEvent
from trafficlens.core.logging import get_logger

logger = get_logger("analyzer.weekly")

# Thresholds
LOOKBACK_WEEKS = 8
MOMENTUM_THRESHOLD = 15.0  # % week-over-week
QUALITY_SCORE_THRESHOLD = 7.0
QUALITY_MIN_DAYS = 3
QUALITY_MAX_BOUNCE = 0.4
QUALITY_MIN_SESSION_SECONDS = 180
REFERRER_SHARE_THRESHOLD = 20.0  # % of the week's referred visitors
ACCELERATION_FACTOR = 1.1
RISK_SHARE_THRESHOLD = 50.0
CRITICAL_SHARE_THRESHOLD = 70.0


@dataclass
class WeekStats:
    """Aggregates for one ISO week (Monday to Sunday)."""

    key: str
    start: date_type
    end: date_type
    days: List[DailyMetric] = field(default_factory=list)
    total_visitors: int = 0
    total_page_views: int = 0
    avg_bounce_rate: float = 0.0
    avg_session_duration: float = 0.0
    quality_days: int = 0


def _parse(day: str) -> date_type:
    return datetime.strptime(day, "%Y-%m-%d").date()


def build_weeks(days: Sequence[DailyMetric]) -> List[WeekStats]:
    """Group days into ISO weeks and compute per-week aggregates."""
    weeks: Dict[str, WeekStats] = {}

    for day in sorted(days, key=lambda d: d.date):
        d = _parse(day.date)
        year, week_no, weekday = d.isocalendar()
        key = f"{year}-W{week_no:02d}"
        if key not in weeks:
            start = d - timedelta(days=weekday - 1)
            weeks[key] = WeekStats(key=key, start=start, end=start + timedelta(days=6))
        weeks[key].days.append(day)

    for week in weeks.values():
        n = len(week.days)
        week.total_visitors = sum(d.visitors for d in week.days)
        week.total_page_views = sum(d.page_views for d in week.days)
        week.avg_bounce_rate = sum(d.bounce_rate for d in week.days) / n
        week.avg_session_duration = sum(d.avg_session_duration for d in week.days) / n
        week.quality_days = sum(
            1
            for d in week.days
            if d.bounce_rate < QUALITY_MAX_BOUNCE
            and d.avg_session_duration > QUALITY_MIN_SESSION_SECONDS
        )

    return sorted(weeks.values(), key=lambda w: w.start)


def _referrer_shares(
    week: WeekStats, referrers: Sequence[ReferrerRecord]
) -> tuple[Dict[str, int], int]:
    """Visitors per source inside the week, plus the week's referred total."""
    start, end = week.start.isoformat(), week.end.isoformat()
    by_source: Dict[str, int] = defaultdict(int)
    for ref in referrers:
        if start <= ref.date <= end:
            by_source[ref.source] += ref.visitors
    return dict(by_source), sum(by_source.values())


# ── Rules ──


def weekly_momentum(weeks: List[WeekStats]) -> List[DetectedEvent]:
    events: List[DetectedEvent] = []
    for i in range(1, len(weeks)):
        this_week, last_week = weeks[i], weeks[i - 1]
        if last_week.total_visitors == 0:
            continue

        growth = (
            (this_week.total_visitors - last_week.total_visitors)
            / last_week.total_visitors
            * 100
        )
        if abs(growth) <= MOMENTUM_THRESHOLD:
            continue

        if growth > 0:
            title = f"📈 {round(growth)}% week-over-week growth"
            description = (
                f"This week: {this_week.total_visitors:,} visitors (was "
                f"{last_week.total_visitors:,} last week). You're on an upward trajectory!"
            )
        else:
            title = f"📉 {round(abs(growth))}% decline"
            description = (
                f"This week trending down. {this_week.total_visitors:,} visitors vs "
                f"{last_week.total_visitors:,} last week. Time to investigate what changed."
            )

        events.append(
            DetectedEvent(
                date=this_week.end.isoformat(),
                event_type=EventType.WEEKLY_MOMENTUM.value,
                title=title,
                description=description,
                value=growth,
                metadata={
                    "week": this_week.key,
                    "direction": "up" if growth > 0 else "down",
                    "growth_percent": round(growth, 1),
                    "this_week_visitors": this_week.total_visitors,
                    "last_week_visitors": last_week.total_visitors,
                },
            )
        )
    return events


def quality_traffic(weeks: List[WeekStats]) -> List[DetectedEvent]:
    events: List[DetectedEvent] = []
    for week in weeks:
        avg_minutes = week.avg_session_duration / 60
        engagement_score = min(avg_minutes / 2, 10)
        bounce_score = max(10 - week.avg_bounce_rate * 25, 0)
        quality_score = (engagement_score + bounce_score) / 2

        if quality_score < QUALITY_SCORE_THRESHOLD or week.quality_days < QUALITY_MIN_DAYS:
            continue

        events.append(
            DetectedEvent(
                date=week.end.isoformat(),
                event_type=EventType.QUALITY_TRAFFIC.value,
                title="✨ Quality traffic week - High engagement",
                description=(
                    f"{week.quality_days} high-quality days this week. Avg "
                    f"{avg_minutes:.1f}m session time, {week.avg_bounce_rate * 100:.1f}% "
                    f"bounce rate. People are genuinely interested in your content."
                ),
                value=quality_score,
                metadata={
                    "week": week.key,
                    "quality_days": week.quality_days,
                    "avg_engagement_minutes": round(avg_minutes, 1),
                    "bounce_rate": round(week.avg_bounce_rate * 100),
                    "engagement_score": round(engagement_score, 2),
                    "bounce_score": round(bounce_score, 2),
                },
            )
        )
    return events


def referrer_milestones(
    weeks: List[WeekStats], referrers: Sequence[ReferrerRecord]
) -> List[DetectedEvent]:
    events: List[DetectedEvent] = []
    for week in weeks:
        by_source, total = _referrer_shares(week, referrers)
        if total == 0:
            continue

        for source, visitors in by_source.items():
            percentage = visitors / total * 100
            if percentage <= REFERRER_SHARE_THRESHOLD:
                continue
            events.append(
                DetectedEvent(
                    date=week.end.isoformat(),
                    event_type=EventType.REFERRER_MILESTONE.value,
                    event_key=source,
                    title=f"🔥 {source} dominated this week",
                    description=(
                        f"{source} brought {round(percentage)}% of your weekly traffic "
                        f"({visitors:,} visitors). This is your top performer this week."
                    ),
                    value=percentage,
                    metadata={
                        "week": week.key,
                        "source": source,
                        "visitors": visitors,
                        "total_referred_visitors": total,
                        "percentage": round(percentage),
                    },
                )
            )
    return events


def growth_acceleration(weeks: List[WeekStats]) -> List[DetectedEvent]:
    events: List[DetectedEvent] = []
    for i in range(2, len(weeks)):
        week1, week2, week3 = weeks[i - 2], weeks[i - 1], weeks[i]
        if week1.total_visitors == 0 or week2.total_visitors == 0:
            continue

        growth1 = week2.total_visitors - week1.total_visitors
        growth2 = week3.total_visitors - week2.total_visitors
        if growth1 <= 0 or growth2 <= growth1 * ACCELERATION_FACTOR:
            continue

        acceleration = (growth2 - growth1) / growth1 * 100
        events.append(
            DetectedEvent(
                date=week3.end.isoformat(),
                event_type=EventType.GROWTH_ACCELERATION.value,
                title="🚀 Acceleration detected - Growing faster",
                description=(
                    f"Your growth is accelerating. Last week +{growth1:,} visitors, "
                    f"this week +{growth2:,} visitors. You're gaining momentum!"
                ),
                value=acceleration,
                metadata={
                    "week": week3.key,
                    "last_week_growth": growth1,
                    "this_week_growth": growth2,
                    "acceleration_percent": round(acceleration),
                },
            )
        )
    return events


def referrer_risk(
    weeks: List[WeekStats], referrers: Sequence[ReferrerRecord]
) -> List[DetectedEvent]:
    """Over-reliance check for the most recent week only."""
    if not weeks:
        return []
    latest = weeks[-1]
    by_source, total = _referrer_shares(latest, referrers)
    if total == 0:
        return []

    events: List[DetectedEvent] = []
    for source, visitors in by_source.items():
        percentage = visitors / total * 100
        if percentage <= RISK_SHARE_THRESHOLD:
            continue
        events.append(
            DetectedEvent(
                date=latest.end.isoformat(),
                event_type=EventType.REFERRER_RISK.value,
                event_key=source,
                title="⚠️ Over-dependent on one source",
                description=(
                    f"{source} is {round(percentage)}% of your traffic. This is risky. "
                    f"Diversify your marketing - don't put all your eggs in one basket."
                ),
                value=percentage,
                metadata={
                    "week": latest.key,
                    "source": source,
                    "visitors": visitors,
                    "total_referred_visitors": total,
                    "percentage": round(percentage),
                    "dependency_risk": (
                        "critical" if percentage > CRITICAL_SHARE_THRESHOLD else "warning"
                    ),
                },
            )
        )
    return events


def detect_weekly_insights(
    days: Sequence[DailyMetric], referrers: Sequence[ReferrerRecord]
) -> List[DetectedEvent]:
    """Run every weekly rule over the given days and referrer rows."""
    weeks = build_weeks(days)
    if not weeks:
        return []

    events: List[DetectedEvent] = []
    events.extend(weekly_momentum(weeks))
    events.extend(quality_traffic(weeks))
    if referrers:
        events.extend(referrer_milestones(weeks, referrers))
    events.extend(growth_acceleration(weeks))
    if referrers:
        events.extend(referrer_risk(weeks, referrers))
    return events


def detect_and_store_weekly_insights(
    session: Session,
    user_id: str,
    today: Optional[date_type] = None,
) -> List[InsightEvent]:
    """Clear and regenerate weekly insights for the last 8 weeks."""
    today = today or datetime.now(timezone.utc).date()
    start = (today - timedelta(weeks=LOOKBACK_WEEKS)).isoformat()
    end = today.isoformat()

    days = session.exec(
        select(DailyMetric)
        .where(
            DailyMetric.user_id == user_id,
            DailyMetric.date >= start,
            DailyMetric.date <= end,
        )
        .order_by(DailyMetric.date)
    ).all()

    if not days:
        logger.info("No analytics data for weekly detection", extra={"user_id": user_id})
        return []

    referrers = session.exec(
        select(ReferrerRecord).where(
            ReferrerRecord.user_id == user_id,
            ReferrerRecord.date >= start,
            ReferrerRecord.date <= end,
        )
    ).all()

    # Week-end dates can fall after today, so the window has no upper bound
    session.exec(
        delete(InsightEvent).where(
            InsightEvent.user_id == user_id,
            InsightEvent.event_type.in_(WEEKLY_EVENT_TYPES),  # type: ignore
            InsightEvent.date >= start,
        )
    )

    detected = detect_weekly_insights(days, referrers)
    rows = [e.to_row(user_id) for e in detected]
    session.add_all(rows)
    session.commit()

    logger.info(
        f"Stored {len(rows)} weekly insights", extra={"user_id": user_id}
    )
    return rows
