"""Trafficlens — GA Report Definitions.

The five fixed-shape reports pulled on every run. Each definition fixes the
dimension and metric order the transformer relies on.
"""

from dataclasses import dataclass
from typing import Tuple

from trafficlens.connectors.google.client import GoogleAnalyticsClient
from trafficlens.models.report_models import ReportBundle
from trafficlens.core.logging import get_logger

logger = get_logger("google.endpoints")


@dataclass(frozen=True)
class ReportDefinition:
    name: str
    dimensions: Tuple[str, ...]
    metrics: Tuple[str, ...]


DAILY_REPORT = ReportDefinition(
    "daily",
    ("date",),
    ("activeUsers", "screenPageViews", "averageSessionDuration", "bounceRate"),
)
REFERRER_REPORT = ReportDefinition(
    "referrers", ("date", "sessionSource"), ("activeUsers",)
)
PAGES_REPORT = ReportDefinition(
    "pages", ("date", "pagePath"), ("screenPageViews", "averageSessionDuration")
)
GEOGRAPHY_REPORT = ReportDefinition(
    "geography",
    ("date", "country", "countryId", "city"),
    ("activeUsers", "screenPageViews"),
)
DEVICE_REPORT = ReportDefinition(
    "devices",
    ("date", "deviceCategory", "browser", "operatingSystem"),
    ("activeUsers", "screenPageViews"),
)

ALL_REPORTS = (DAILY_REPORT, REFERRER_REPORT, PAGES_REPORT, GEOGRAPHY_REPORT, DEVICE_REPORT)


class GoogleAnalyticsEndpoints:
    """Fetch the raw report result sets for one property."""

    def __init__(self, client: GoogleAnalyticsClient):
        self.client = client

    async def fetch_report(
        self, report: ReportDefinition, start_date: str, end_date: str
    ):
        logger.info(f"Fetching {report.name} report...")
        rows = await self.client.run_report(
            list(report.dimensions), list(report.metrics), start_date, end_date
        )
        logger.info(f"{report.name} report fetched with {len(rows)} rows")
        return rows

    async def fetch_all(self, start_date: str, end_date: str) -> ReportBundle:
        """Fetch the five reports sequentially."""
        return ReportBundle(
            daily=await self.fetch_report(DAILY_REPORT, start_date, end_date),
            referrers=await self.fetch_report(REFERRER_REPORT, start_date, end_date),
            pages=await self.fetch_report(PAGES_REPORT, start_date, end_date),
            geography=await self.fetch_report(GEOGRAPHY_REPORT, start_date, end_date),
            devices=await self.fetch_report(DEVICE_REPORT, start_date, end_date),
        )
