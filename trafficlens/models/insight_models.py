"""Trafficlens — Insight Event Models."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pydantic import BaseModel
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field, UniqueConstraint


# ─────────────────────────────────────────────
# DATABASE MODEL: detector output
# ─────────────────────────────────────────────


class InsightEvent(SQLModel, table=True):
    """A human-readable event produced by the daily or weekly detector.

    ``event_key`` separates several events of one type on the same date
    (one milestone per threshold, one referrer milestone per source).
    """

    __tablename__ = "insight_events"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "date", "event_type", "event_key", name="uq_insight_event"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    date: str = Field(index=True, description="YYYY-MM-DD")
    event_type: str = Field(index=True)
    event_key: str = Field(default="")
    title: str
    description: str = Field(default="")
    value: float = Field(default=0.0)
    # "metadata" is reserved on declarative classes, so map it by column name
    event_metadata: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON)
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS
# ─────────────────────────────────────────────


class DetectedEvent(BaseModel):
    """An event computed by a detector, before it is persisted."""

    date: str
    event_type: str
    event_key: str = ""
    title: str
    description: str
    value: float
    metadata: Dict[str, Any] = {}

    def to_row(self, user_id: str) -> InsightEvent:
        return InsightEvent(
            user_id=user_id,
            date=self.date,
            event_type=self.event_type,
            event_key=self.event_key,
            title=self.title,
            description=self.description,
            value=self.value,
            event_metadata=dict(self.metadata),
        )


class InsightEventOut(BaseModel):
    """Insight event as served to the presentation layer."""

    id: int
    date: str
    event_type: str
    title: str
    description: str
    value: float
    metadata: Dict[str, Any] = {}
    created_at: datetime

    @classmethod
    def from_row(cls, row: InsightEvent) -> "InsightEventOut":
        return cls(
            id=row.id,
            date=row.date,
            event_type=row.event_type,
            title=row.title,
            description=row.description,
            value=row.value,
            metadata=row.event_metadata or {},
            created_at=row.created_at,
        )
