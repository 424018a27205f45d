"""Trafficlens — GA Report Rows → Date-Keyed Records.

Parses the five raw report result sets into typed records and groups each
one by canonical date. Every function here is pure; the grouped output is
returned, never accumulated in module state.
"""

from collections import defaultdict
from datetime import date as date_type, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

from trafficlens.models.report_models import (
    DailyTotals,
    DeviceEntry,
    GeographyEntry,
    GroupedReports,
    PageEntry,
    ReferrerEntry,
    ReportBundle,
    ReportRow,
)
from trafficlens.connectors.google.endpoints import (
    DAILY_REPORT,
    DEVICE_REPORT,
    GEOGRAPHY_REPORT,
    PAGES_REPORT,
    REFERRER_REPORT,
    ReportDefinition,
)
from trafficlens.core.logging import get_logger

logger = get_logger("google.transformer")

T = TypeVar("T")

POLICY_REJECT = "reject"
POLICY_TODAY = "today"


class UnrecognizedDateError(ValueError):
    """Raised when a date token matches none of the known encodings."""


def normalize_date(
    token: str,
    on_unrecognized: str = POLICY_REJECT,
    today: Optional[date_type] = None,
) -> str:
    """Convert a GA date token into ``YYYY-MM-DD``.

    ``20240315`` → ``2024-03-15``; ``2024-03`` → ``2024-03-01``; any other
    token containing ``-`` is assumed canonical and returned unchanged.
    Unrecognized tokens raise ``UnrecognizedDateError`` unless the policy is
    ``"today"``, in which case the processing date is substituted.
    """
    token = (token or "").strip()

    if len(token) == 8 and token.isdigit():
        return f"{token[0:4]}-{token[4:6]}-{token[6:8]}"
    if "-" in token:
        if len(token) == 7:
            return f"{token}-01"
        return token

    if on_unrecognized == POLICY_TODAY:
        fallback = (today or datetime.now(timezone.utc).date()).isoformat()
        logger.warning(
            f"Unrecognized GA date {token!r}, filing under processing date {fallback}"
        )
        return fallback

    raise UnrecognizedDateError(f"Unrecognized GA date format: {token!r}")


def _safe_int(value: Any) -> int:
    """Safely convert a metric value to int."""
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _safe_float(value: Any) -> float:
    """Safely convert a metric value to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_rows(
    rows: List[ReportRow],
    report: ReportDefinition,
    build: Callable[[str, List[str], List[str]], T],
    on_unrecognized: str,
    today: Optional[date_type],
) -> List[T]:
    """Validate arity, normalize the date and build one typed record per row."""
    records: List[T] = []
    skipped = 0

    for row in rows:
        if len(row.dimensions) < len(report.dimensions):
            logger.warning(
                f"Skipping {report.name} row with missing dimensions: {row.dimensions}"
            )
            skipped += 1
            continue
        if len(row.metrics) < len(report.metrics):
            logger.warning(
                f"Skipping {report.name} row with missing metrics: {row.metrics}"
            )
            skipped += 1
            continue
        try:
            day = normalize_date(row.dimensions[0], on_unrecognized, today)
        except UnrecognizedDateError as e:
            logger.warning(f"Skipping {report.name} row: {e}")
            skipped += 1
            continue
        records.append(build(day, row.dimensions, row.metrics))

    if skipped:
        logger.info(f"{report.name}: parsed {len(records)} rows, skipped {skipped}")
    return records


def _by_date(records: List[Any]) -> Dict[str, List[Any]]:
    grouped: Dict[str, List[Any]] = defaultdict(list)
    for record in records:
        grouped[record.date].append(record)
    return dict(grouped)


# ── Per-report grouping ──


def group_daily_totals(
    rows: List[ReportRow],
    on_unrecognized: str = POLICY_REJECT,
    today: Optional[date_type] = None,
) -> Dict[str, DailyTotals]:
    """One DailyTotals per date; a repeated date keeps the last row."""
    records = _parse_rows(
        rows,
        DAILY_REPORT,
        lambda day, dims, mets: DailyTotals(
            date=day,
            visitors=_safe_int(mets[0]),
            page_views=_safe_int(mets[1]),
            avg_session_duration=_safe_float(mets[2]),
            bounce_rate=_safe_float(mets[3]),
        ),
        on_unrecognized,
        today,
    )
    return {r.date: r for r in records}


def group_referrers(
    rows: List[ReportRow],
    on_unrecognized: str = POLICY_REJECT,
    today: Optional[date_type] = None,
) -> Dict[str, List[ReferrerEntry]]:
    records = _parse_rows(
        rows,
        REFERRER_REPORT,
        lambda day, dims, mets: ReferrerEntry(
            date=day, source=dims[1], visitors=_safe_int(mets[0])
        ),
        on_unrecognized,
        today,
    )
    return _by_date(records)


def group_pages(
    rows: List[ReportRow],
    on_unrecognized: str = POLICY_REJECT,
    today: Optional[date_type] = None,
) -> Dict[str, List[PageEntry]]:
    records = _parse_rows(
        rows,
        PAGES_REPORT,
        lambda day, dims, mets: PageEntry(
            date=day,
            page_path=dims[1],
            page_views=_safe_int(mets[0]),
            avg_engagement_time=_safe_float(mets[1]),
        ),
        on_unrecognized,
        today,
    )
    return _by_date(records)


def group_geography(
    rows: List[ReportRow],
    on_unrecognized: str = POLICY_REJECT,
    today: Optional[date_type] = None,
) -> Dict[str, List[GeographyEntry]]:
    records = _parse_rows(
        rows,
        GEOGRAPHY_REPORT,
        lambda day, dims, mets: GeographyEntry(
            date=day,
            country=dims[1],
            country_code=dims[2],
            city=dims[3],
            visitors=_safe_int(mets[0]),
            page_views=_safe_int(mets[1]),
        ),
        on_unrecognized,
        today,
    )
    return _by_date(records)


def group_devices(
    rows: List[ReportRow],
    on_unrecognized: str = POLICY_REJECT,
    today: Optional[date_type] = None,
) -> Dict[str, List[DeviceEntry]]:
    records = _parse_rows(
        rows,
        DEVICE_REPORT,
        lambda day, dims, mets: DeviceEntry(
            date=day,
            device_category=dims[1],
            browser=dims[2],
            operating_system=dims[3],
            visitors=_safe_int(mets[0]),
            page_views=_safe_int(mets[1]),
        ),
        on_unrecognized,
        today,
    )
    return _by_date(records)


def group_reports(
    bundle: ReportBundle,
    on_unrecognized: str = POLICY_REJECT,
    today: Optional[date_type] = None,
) -> GroupedReports:
    """Group all five reports by canonical date."""
    grouped = GroupedReports(
        daily=group_daily_totals(bundle.daily, on_unrecognized, today),
        referrers=group_referrers(bundle.referrers, on_unrecognized, today),
        pages=group_pages(bundle.pages, on_unrecognized, today),
        geography=group_geography(bundle.geography, on_unrecognized, today),
        devices=group_devices(bundle.devices, on_unrecognized, today),
    )
    logger.info(
        f"Grouped reports: {len(grouped.daily)} days, "
        f"{len(grouped.referrers)} referrer days, {len(grouped.pages)} page days, "
        f"{len(grouped.geography)} geography days, {len(grouped.devices)} device days"
    )
    return grouped
