"""
Tests for the weekly insight detector.
"""

from datetime import date

from sqlmodel import select

from trafficlens.analyzer.weekly_insights import (
    build_weeks,
    detect_and_store_weekly_insights,
    detect_weekly_insights,
)
from trafficlens.models.insight_models import InsightEvent

from conftest import daily, referrer

# ISO weeks starting Monday 2024-03-04, 03-11, 03-18, 03-25
MONDAYS = ["2024-03-04", "2024-03-11", "2024-03-18", "2024-03-25"]


def weekly(totals, **kwargs):
    """One day per week carrying that week's total."""
    return [daily(MONDAYS[i], v, **kwargs) for i, v in enumerate(totals)]


def of_type(events, event_type):
    return [e for e in events if e.event_type == event_type]


def test_build_weeks_uses_iso_weeks():
    days = [daily("2024-03-10", 5), daily("2024-03-11", 7), daily("2024-03-17", 3)]
    weeks = build_weeks(days)
    assert [w.key for w in weeks] == ["2024-W10", "2024-W11"]
    assert weeks[0].start == date(2024, 3, 4)
    assert weeks[0].end == date(2024, 3, 10)
    assert weeks[1].total_visitors == 10


def test_momentum_up():
    events = of_type(detect_weekly_insights(weekly([1000, 1200]), []), "weekly_momentum")
    assert len(events) == 1
    assert events[0].metadata["direction"] == "up"
    assert round(events[0].value) == 20
    assert events[0].date == "2024-03-17"


def test_momentum_down():
    events = of_type(detect_weekly_insights(weekly([1200, 1000]), []), "weekly_momentum")
    assert len(events) == 1
    assert events[0].metadata["direction"] == "down"
    assert events[0].value < 0


def test_small_change_is_not_momentum():
    events = detect_weekly_insights(weekly([1000, 1100]), [])
    assert of_type(events, "weekly_momentum") == []


def test_growth_acceleration():
    events = detect_weekly_insights(weekly([1000, 1100, 1300]), [])
    accel = of_type(events, "growth_acceleration")
    assert len(accel) == 1
    assert round(accel[0].value) == 100
    assert accel[0].metadata["last_week_growth"] == 100
    assert accel[0].metadata["this_week_growth"] == 200


def test_steady_growth_is_not_acceleration():
    events = detect_weekly_insights(weekly([1000, 1100, 1200]), [])
    assert of_type(events, "growth_acceleration") == []


def test_quality_traffic_week():
    days = [
        daily(f"2024-03-{d:02d}", 50, bounce_rate=0.1, avg_session_duration=1200)
        for d in (4, 5, 6)
    ]
    events = of_type(detect_weekly_insights(days, []), "quality_traffic")
    assert len(events) == 1
    assert events[0].value == 8.75
    assert events[0].metadata["quality_days"] == 3


def test_quality_needs_three_quality_days():
    days = [
        daily(f"2024-03-{d:02d}", 50, bounce_rate=0.1, avg_session_duration=1200)
        for d in (4, 5)
    ]
    assert of_type(detect_weekly_insights(days, []), "quality_traffic") == []


def test_referrer_milestones_and_critical_risk():
    refs = [referrer("2024-03-25", "twitter", 25), referrer("2024-03-25", "google", 75)]
    events = detect_weekly_insights(weekly([100, 100, 100, 100]), refs)

    milestones = of_type(events, "referrer_milestone")
    assert {e.event_key for e in milestones} == {"twitter", "google"}
    risks = of_type(events, "referrer_risk")
    assert [e.event_key for e in risks] == ["google"]
    assert risks[0].metadata["dependency_risk"] == "critical"


def test_quarter_share_is_a_milestone():
    refs = [referrer("2024-03-25", "twitter.com", 25), referrer("2024-03-25", "google", 75)]
    milestones = of_type(
        detect_weekly_insights(weekly([100, 100, 100, 100]), refs), "referrer_milestone"
    )
    twitter = [e for e in milestones if e.event_key == "twitter.com"]
    assert len(twitter) == 1
    assert twitter[0].metadata["percentage"] == 25
    assert twitter[0].metadata["total_referred_visitors"] == 100
    assert twitter[0].date == "2024-03-31"


def test_referrer_risk_warning():
    refs = [referrer("2024-03-25", "twitter", 55), referrer("2024-03-25", "google", 45)]
    risks = of_type(detect_weekly_insights(weekly([100, 100, 100, 100]), refs), "referrer_risk")
    assert len(risks) == 1
    assert risks[0].event_key == "twitter"
    assert risks[0].metadata["dependency_risk"] == "warning"


def test_referrer_risk_only_checks_latest_week():
    refs = [referrer("2024-03-04", "twitter", 90), referrer("2024-03-04", "google", 10)]
    events = detect_weekly_insights(weekly([100, 100, 100, 100]), refs)
    assert of_type(events, "referrer_risk") == []
    assert of_type(events, "referrer_milestone")[0].date == "2024-03-10"


def test_no_days_no_insights():
    assert detect_weekly_insights([], []) == []


# ── Persistence ─────────────────────────────────────────


def _seed(session):
    for metric in weekly([1000, 1200, 1500, 1000]):
        session.add(metric)
    session.add(referrer("2024-03-25", "twitter", 80))
    session.add(referrer("2024-03-25", "google", 20))
    session.add(
        InsightEvent(
            user_id="user-1", date="2024-03-12", event_type="spike", title="📈 Traffic spike"
        )
    )
    session.commit()


def test_rerun_regenerates_without_duplicates(session):
    _seed(session)
    # Wednesday: the latest week ends after "today"
    today = date(2024, 3, 27)

    first = detect_and_store_weekly_insights(session, "user-1", today=today)
    detect_and_store_weekly_insights(session, "user-1", today=today)

    weekly_rows = session.exec(
        select(InsightEvent).where(InsightEvent.event_type != "spike")
    ).all()
    assert len(first) > 0
    assert len(weekly_rows) == len(first)
    assert any(e.date == "2024-03-31" for e in weekly_rows)


def test_weekly_run_keeps_daily_events(session):
    _seed(session)
    detect_and_store_weekly_insights(session, "user-1", today=date(2024, 3, 27))

    spikes = session.exec(select(InsightEvent).where(InsightEvent.event_type == "spike")).all()
    assert len(spikes) == 1
