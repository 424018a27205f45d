"""Trafficlens — Connected Account & Fetch Status Models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field

PLACEHOLDER_PROPERTY_IDS = {"pending", "pending_selection"}


class TokenStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"


class FetchState(str, Enum):
    """Processing lifecycle reported to the polling UI."""

    PENDING = "pending"
    FETCHING = "fetching"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class GAAccount(SQLModel, table=True):
    """A user's Google Analytics connection.

    Written by the OAuth connect flow; the ingestion pipeline only refreshes
    the access token and flips ``token_status`` when a refresh is rejected.
    """

    __tablename__ = "ga_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    property_id: str = Field(default="pending_selection", index=True)
    access_token: str = Field(default="")
    refresh_token: str = Field(default="")
    token_expiry: Optional[datetime] = Field(default=None)
    token_status: str = Field(default=TokenStatus.VALID.value)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_selected_property(self) -> bool:
        return bool(self.property_id) and self.property_id not in PLACEHOLDER_PROPERTY_IDS


class FetchStatus(SQLModel, table=True):
    """Progress record polled by the UI while ingestion runs."""

    __tablename__ = "data_fetch_status"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    status: str = Field(default=FetchState.PENDING.value)
    message: str = Field(default="")
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
