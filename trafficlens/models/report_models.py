"""Trafficlens — Report Row & Pipeline Result Schemas.

Provider rows arrive as positional value lists. They are parsed exactly once
into one typed record per report shape, so nothing downstream indexes into
a raw row.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ReportRow(BaseModel):
    """One provider row: dimension values followed by metric values."""

    dimensions: List[str] = []
    metrics: List[str] = []


class ReportBundle(BaseModel):
    """The five raw report result sets fetched in one run."""

    daily: List[ReportRow] = []
    referrers: List[ReportRow] = []
    pages: List[ReportRow] = []
    geography: List[ReportRow] = []
    devices: List[ReportRow] = []


# ─────────────────────────────────────────────
# TYPED RECORDS: one per report shape
# ─────────────────────────────────────────────


class DailyTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    visitors: int
    page_views: int
    avg_session_duration: float
    bounce_rate: float


class ReferrerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    source: str
    visitors: int


class PageEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    page_path: str
    page_views: int
    avg_engagement_time: float


class GeographyEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    country: str
    country_code: str
    city: str
    visitors: int
    page_views: int


class DeviceEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    device_category: str
    browser: str
    operating_system: str
    visitors: int
    page_views: int


class GroupedReports(BaseModel):
    """Date-keyed output of the grouper, threaded into the upserter."""

    model_config = ConfigDict(frozen=True)

    daily: Dict[str, DailyTotals] = {}
    referrers: Dict[str, List[ReferrerEntry]] = {}
    pages: Dict[str, List[PageEntry]] = {}
    geography: Dict[str, List[GeographyEntry]] = {}
    devices: Dict[str, List[DeviceEntry]] = {}

    def dates(self) -> List[str]:
        """Dates present in the daily-totals report, ascending."""
        return sorted(self.daily)


# ─────────────────────────────────────────────
# PIPELINE RESULTS
# ─────────────────────────────────────────────


class UpsertSummary(BaseModel):
    processed_dates: List[str] = []
    failed_dates: List[str] = []

    @property
    def days_processed(self) -> int:
        return len(self.processed_dates)


class IngestionResult(BaseModel):
    """Outcome of one fetch → normalize → persist → detect run."""

    success: bool
    days_processed: int = 0
    days_failed: int = 0
    error: Optional[str] = None
    details: Optional[str] = None
    skipped_fetch: bool = False
    # HTTP status for a rejected run; never serialized
    status_code: Optional[int] = Field(default=None, exclude=True)
