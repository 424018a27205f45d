"""Trafficlens — Stored Traffic Breakdowns.

Read-only aggregations over stored rows for the presentation layer: top
referrers, top pages, countries, devices, and the per-day detail shown when
a spike or drop is opened.
"""

from collections import defaultdict
from typing import Any, Dict, List

from sqlmodel import Session, select

from trafficlens.models.analytics_models import (
    DailyMetric,
    DeviceRecord,
    GeographyRecord,
    ReferrerRecord,
    TopPageRecord,
)
from trafficlens.core.logging import get_logger

logger = get_logger("analyzer.breakdown")

TOP_REFERRERS = 10
TOP_PAGES = 50
TOP_BROWSERS = 10
TOP_OPERATING_SYSTEMS = 10
DAY_DETAIL_LIMIT = 3


def _ranked(totals: Dict[str, int], label: str, limit: int | None = None) -> List[dict]:
    ranked = sorted(totals.items(), key=lambda x: x[1], reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return [{label: name, "visitors": visitors} for name, visitors in ranked]


def daily_series(
    session: Session, user_id: str, start_date: str, end_date: str
) -> List[DailyMetric]:
    return list(
        session.exec(
            select(DailyMetric)
            .where(
                DailyMetric.user_id == user_id,
                DailyMetric.date >= start_date,
                DailyMetric.date <= end_date,
            )
            .order_by(DailyMetric.date)
        ).all()
    )


def top_referrers(
    session: Session, user_id: str, start_date: str, end_date: str
) -> List[dict]:
    rows = session.exec(
        select(ReferrerRecord).where(
            ReferrerRecord.user_id == user_id,
            ReferrerRecord.date >= start_date,
            ReferrerRecord.date <= end_date,
        )
    ).all()

    totals: Dict[str, int] = defaultdict(int)
    for r in rows:
        if r.source and r.visitors:
            totals[r.source] += r.visitors
    return _ranked(totals, "source", TOP_REFERRERS)


def top_pages(
    session: Session, user_id: str, start_date: str, end_date: str
) -> List[dict]:
    """Page views summed per path; engagement averaged over days that report it."""
    rows = session.exec(
        select(TopPageRecord).where(
            TopPageRecord.user_id == user_id,
            TopPageRecord.date >= start_date,
            TopPageRecord.date <= end_date,
        )
    ).all()

    views: Dict[str, int] = defaultdict(int)
    engagement: Dict[str, List[float]] = defaultdict(list)
    for p in rows:
        if not p.page_path or not p.page_views:
            continue
        views[p.page_path] += p.page_views
        if p.avg_engagement_time:
            engagement[p.page_path].append(p.avg_engagement_time)

    ranked = sorted(views.items(), key=lambda x: x[1], reverse=True)[:TOP_PAGES]
    return [
        {
            "page_path": path,
            "page_views": total,
            "avg_engagement_time": (
                sum(engagement[path]) / len(engagement[path]) if engagement[path] else 0.0
            ),
        }
        for path, total in ranked
    ]


def countries(
    session: Session, user_id: str, start_date: str, end_date: str
) -> List[dict]:
    rows = session.exec(
        select(GeographyRecord).where(
            GeographyRecord.user_id == user_id,
            GeographyRecord.date >= start_date,
            GeographyRecord.date <= end_date,
        )
    ).all()

    stats: Dict[str, Dict[str, Any]] = {}
    for g in rows:
        entry = stats.setdefault(
            g.country,
            {"country_code": g.country_code, "visitors": 0, "page_views": 0, "cities": set()},
        )
        entry["visitors"] += g.visitors
        entry["page_views"] += g.page_views
        if g.city:
            entry["cities"].add(g.city)

    result = [
        {
            "country": country,
            "country_code": s["country_code"],
            "visitors": s["visitors"],
            "page_views": s["page_views"],
            "cities": sorted(s["cities"]),
            "city_count": len(s["cities"]),
        }
        for country, s in stats.items()
    ]
    return sorted(result, key=lambda c: c["visitors"], reverse=True)


def devices(
    session: Session, user_id: str, start_date: str, end_date: str
) -> Dict[str, List[dict]]:
    rows = session.exec(
        select(DeviceRecord).where(
            DeviceRecord.user_id == user_id,
            DeviceRecord.date >= start_date,
            DeviceRecord.date <= end_date,
        )
    ).all()

    categories: Dict[str, int] = defaultdict(int)
    browsers: Dict[str, int] = defaultdict(int)
    systems: Dict[str, int] = defaultdict(int)
    for d in rows:
        if d.device_category:
            categories[d.device_category] += d.visitors
        if d.browser:
            browsers[d.browser] += d.visitors
        if d.operating_system:
            systems[d.operating_system] += d.visitors

    return {
        "devices": _ranked(categories, "category"),
        "browsers": _ranked(browsers, "browser", TOP_BROWSERS),
        "operating_systems": _ranked(systems, "os", TOP_OPERATING_SYSTEMS),
    }


def build_breakdown(
    session: Session, user_id: str, start_date: str, end_date: str
) -> Dict[str, Any]:
    """Everything the dashboard renders for a date range."""
    series = daily_series(session, user_id, start_date, end_date)
    logger.info(
        f"Breakdown {start_date} → {end_date}: {len(series)} days",
        extra={"user_id": user_id},
    )
    return {
        "daily": [
            {
                "date": d.date,
                "visitors": d.visitors,
                "page_views": d.page_views,
                "avg_session_duration": d.avg_session_duration,
                "bounce_rate": d.bounce_rate,
            }
            for d in series
        ],
        "referrers": top_referrers(session, user_id, start_date, end_date),
        "pages": top_pages(session, user_id, start_date, end_date),
        "countries": countries(session, user_id, start_date, end_date),
        **devices(session, user_id, start_date, end_date),
    }


def day_detail(session: Session, user_id: str, day: str) -> Dict[str, List[dict]]:
    """Top sources and pages for a single date."""
    referrers = session.exec(
        select(ReferrerRecord)
        .where(ReferrerRecord.user_id == user_id, ReferrerRecord.date == day)
        .order_by(ReferrerRecord.visitors.desc())  # type: ignore
        .limit(DAY_DETAIL_LIMIT)
    ).all()
    pages = session.exec(
        select(TopPageRecord)
        .where(TopPageRecord.user_id == user_id, TopPageRecord.date == day)
        .order_by(TopPageRecord.page_views.desc())  # type: ignore
        .limit(DAY_DETAIL_LIMIT)
    ).all()
    return {
        "top_sources": [{"source": r.source, "visitors": r.visitors} for r in referrers],
        "top_pages": [{"page": p.page_path, "visitors": p.page_views} for p in pages],
    }
