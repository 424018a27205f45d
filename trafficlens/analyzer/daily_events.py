"""Trafficlens — Daily Event Engine.

Walks the last 30 days of a user's traffic as (yesterday, today) pairs and
flags:
- Spikes (> +50% day over day)
- Drops (< 70% of a day with more than 10 visitors)
- Milestones (first day at or above 100 / 500 / 1k / 5k / 10k visitors)
- Growth streaks (5+ days in a row of rising visitors)
"""

from dataclasses import dataclass
from datetime import date as date_type, datetime, timedelta, timezone
from typing import List, Optional, Sequence

from sqlmodel import Session, select

from trafficlens.core.event_registry import EventType
from trafficlens.models.analytics_models import DailyMetric
from trafficlens.models.insight_models import DetectedEvent, InsightEvent
from trafficlens.core.logging import get_logger

logger = get_logger("analyzer.daily")

# Thresholds
LOOKBACK_DAYS = 30
SPIKE_RATIO = 1.5
DROP_RATIO = 0.7
DROP_MIN_BASELINE = 10
MILESTONES = (100, 500, 1000, 5000, 10000)
MIN_STREAK_DAYS = 5


@dataclass
class StreakState:
    """Run of consecutive rising days; a run counts both ends of each rise."""

    length: int = 0
    active: bool = False
    start_date: str = ""

    def extend(self, yesterday: DailyMetric) -> None:
        if self.active:
            self.length += 1
        else:
            self.active = True
            self.length = 2
            self.start_date = yesterday.date

    def finalize(self, last_day: DailyMetric) -> Optional[DetectedEvent]:
        """Close the current run; return a streak event if it was long enough."""
        event = None
        if self.active and self.length >= MIN_STREAK_DAYS:
            event = DetectedEvent(
                date=last_day.date,
                event_type=EventType.STREAK.value,
                title=f"🔥 {self.length}-day growth streak",
                description=(
                    f"Visitors rose {self.length} days in a row, from {self.start_date} "
                    f"to {last_day.date}, ending at {last_day.visitors:,} visitors."
                ),
                value=self.length,
                metadata={
                    "streak_days": self.length,
                    "start_date": self.start_date,
                    "end_date": last_day.date,
                    "final_visitors": last_day.visitors,
                },
            )
        self.length = 0
        self.active = False
        self.start_date = ""
        return event


def _spike(yesterday: DailyMetric, today: DailyMetric) -> Optional[DetectedEvent]:
    if yesterday.visitors <= 0 or today.visitors <= yesterday.visitors * SPIKE_RATIO:
        return None
    pct = round((today.visitors - yesterday.visitors) / yesterday.visitors * 100)
    return DetectedEvent(
        date=today.date,
        event_type=EventType.SPIKE.value,
        title=f"📈 Traffic spike: +{pct}%",
        description=(
            f"Traffic jumped {pct}% to {today.visitors:,} visitors "
            f"(from {yesterday.visitors:,} the day before)."
        ),
        value=today.visitors,
        metadata={
            "percentage_change": pct,
            "previous_visitors": yesterday.visitors,
            "visitors": today.visitors,
        },
    )


def _drop(yesterday: DailyMetric, today: DailyMetric) -> Optional[DetectedEvent]:
    if yesterday.visitors <= DROP_MIN_BASELINE or today.visitors >= yesterday.visitors * DROP_RATIO:
        return None
    pct = round((yesterday.visitors - today.visitors) / yesterday.visitors * 100)
    return DetectedEvent(
        date=today.date,
        event_type=EventType.DROP.value,
        title=f"📉 Traffic drop: -{pct}%",
        description=(
            f"Traffic fell {pct}% to {today.visitors:,} visitors "
            f"(from {yesterday.visitors:,} the day before)."
        ),
        value=today.visitors,
        metadata={
            "percentage_change": -pct,
            "previous_visitors": yesterday.visitors,
            "visitors": today.visitors,
        },
    )


def _milestones(yesterday: DailyMetric, today: DailyMetric) -> List[DetectedEvent]:
    return [
        DetectedEvent(
            date=today.date,
            event_type=EventType.MILESTONE.value,
            event_key=str(threshold),
            title=f"🎯 Crossed {threshold:,} daily visitors",
            description=(
                f"{today.visitors:,} visitors today, up from {yesterday.visitors:,}. "
                f"First day past the {threshold:,} mark."
            ),
            value=threshold,
            metadata={
                "threshold": threshold,
                "visitors": today.visitors,
                "previous_visitors": yesterday.visitors,
            },
        )
        for threshold in MILESTONES
        if yesterday.visitors < threshold <= today.visitors
    ]


def detect_daily_events(days: Sequence[DailyMetric]) -> List[DetectedEvent]:
    """Run every daily rule over consecutive day pairs, oldest first."""
    ordered = sorted(days, key=lambda d: d.date)
    events: List[DetectedEvent] = []
    streak = StreakState()

    for yesterday, today in zip(ordered, ordered[1:]):
        for rule in (_spike, _drop):
            event = rule(yesterday, today)
            if event:
                events.append(event)
        events.extend(_milestones(yesterday, today))

        if today.visitors > yesterday.visitors:
            streak.extend(yesterday)
        else:
            event = streak.finalize(yesterday)
            if event:
                events.append(event)

    if ordered:
        event = streak.finalize(ordered[-1])
        if event:
            events.append(event)

    return events


def _upsert_event(session: Session, user_id: str, detected: DetectedEvent) -> InsightEvent:
    existing = session.exec(
        select(InsightEvent).where(
            InsightEvent.user_id == user_id,
            InsightEvent.date == detected.date,
            InsightEvent.event_type == detected.event_type,
            InsightEvent.event_key == detected.event_key,
        )
    ).first()

    if existing:
        existing.title = detected.title
        existing.description = detected.description
        existing.value = detected.value
        existing.event_metadata = dict(detected.metadata)
        session.add(existing)
        return existing

    row = detected.to_row(user_id)
    session.add(row)
    return row


def detect_and_store_daily_events(
    session: Session,
    user_id: str,
    today: Optional[date_type] = None,
) -> List[InsightEvent]:
    """Detect daily events over the last 30 days and upsert them."""
    today = today or datetime.now(timezone.utc).date()
    start = (today - timedelta(days=LOOKBACK_DAYS - 1)).isoformat()

    days = session.exec(
        select(DailyMetric)
        .where(
            DailyMetric.user_id == user_id,
            DailyMetric.date >= start,
            DailyMetric.date <= today.isoformat(),
        )
        .order_by(DailyMetric.date)
    ).all()

    if len(days) < 2:
        logger.info("Not enough daily data for event detection", extra={"user_id": user_id})
        return []

    detected = detect_daily_events(days)
    stored = [_upsert_event(session, user_id, e) for e in detected]
    session.commit()

    logger.info(
        f"Stored {len(stored)} daily events across {len(days)} days",
        extra={"user_id": user_id},
    )
    return stored
