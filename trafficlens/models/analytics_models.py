"""Trafficlens — Stored Analytics Models.

One DailyMetric per (user, date) owns the day's child breakdowns. Children are
replaced wholesale whenever the day is re-ingested.
"""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field, UniqueConstraint


class DailyMetric(SQLModel, table=True):
    """Aggregate traffic for one user on one date."""

    __tablename__ = "daily_metrics"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_daily_metric_user_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    property_id: str = Field(default="")
    date: str = Field(index=True, description="YYYY-MM-DD")
    visitors: int = Field(default=0)
    page_views: int = Field(default=0)
    avg_session_duration: float = Field(default=0.0, description="Seconds")
    bounce_rate: float = Field(default=0.0, description="0-1 fraction")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ReferrerRecord(SQLModel, table=True):
    __tablename__ = "referrers"

    id: Optional[int] = Field(default=None, primary_key=True)
    daily_metric_id: int = Field(foreign_key="daily_metrics.id", index=True)
    user_id: str = Field(index=True)
    date: str = Field(index=True)
    source: str
    visitors: int = Field(default=0)


class TopPageRecord(SQLModel, table=True):
    __tablename__ = "top_pages"

    id: Optional[int] = Field(default=None, primary_key=True)
    daily_metric_id: int = Field(foreign_key="daily_metrics.id", index=True)
    user_id: str = Field(index=True)
    date: str = Field(index=True)
    page_path: str
    page_views: int = Field(default=0)
    avg_engagement_time: float = Field(default=0.0)


class GeographyRecord(SQLModel, table=True):
    __tablename__ = "geographic_analytics"

    id: Optional[int] = Field(default=None, primary_key=True)
    daily_metric_id: int = Field(foreign_key="daily_metrics.id", index=True)
    user_id: str = Field(index=True)
    date: str = Field(index=True)
    country: str = Field(default="")
    country_code: str = Field(default="")
    city: str = Field(default="")
    visitors: int = Field(default=0)
    page_views: int = Field(default=0)


class DeviceRecord(SQLModel, table=True):
    __tablename__ = "device_analytics"

    id: Optional[int] = Field(default=None, primary_key=True)
    daily_metric_id: int = Field(foreign_key="daily_metrics.id", index=True)
    user_id: str = Field(index=True)
    date: str = Field(index=True)
    device_category: str = Field(default="")
    browser: str = Field(default="")
    operating_system: str = Field(default="")
    visitors: int = Field(default=0)
    page_views: int = Field(default=0)


CHILD_MODELS = (ReferrerRecord, TopPageRecord, GeographyRecord, DeviceRecord)
