"""
Shared test fixtures — in-memory DB, GA payload builders, FastAPI test client.
"""

import json
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from trafficlens.database import get_session
from trafficlens.main import app
from trafficlens.models.account_models import GAAccount
from trafficlens.models.analytics_models import DailyMetric, ReferrerRecord

TODAY = date(2024, 3, 31)


# ── Test Database (SQLite in-memory) ────────────────────


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session


@pytest_asyncio.fixture()
async def client(engine):
    """FastAPI test client with the test DB injected."""

    def _override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Sample Accounts & Rows ──────────────────────────────


@pytest.fixture()
def account(session) -> GAAccount:
    acct = GAAccount(
        user_id="user-1",
        property_id="123456",
        access_token="access-abc",
        refresh_token="refresh-xyz",
        token_expiry=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    session.add(acct)
    session.commit()
    session.refresh(acct)
    return acct


def daily(day: str, visitors: int, **kwargs) -> DailyMetric:
    """Unsaved DailyMetric for pure detector tests."""
    return DailyMetric(
        user_id=kwargs.pop("user_id", "user-1"),
        date=day,
        visitors=visitors,
        page_views=kwargs.pop("page_views", visitors * 2),
        avg_session_duration=kwargs.pop("avg_session_duration", 60.0),
        bounce_rate=kwargs.pop("bounce_rate", 0.5),
    )


def series(start: date, visitors: List[int], **kwargs) -> List[DailyMetric]:
    return [
        daily((start + timedelta(days=i)).isoformat(), v, **kwargs)
        for i, v in enumerate(visitors)
    ]


def referrer(day: str, source: str, visitors: int) -> ReferrerRecord:
    return ReferrerRecord(
        daily_metric_id=0, user_id="user-1", date=day, source=source, visitors=visitors
    )


# ── GA Data API Payloads ────────────────────────────────


def ga_rows(*rows) -> List[Dict]:
    """``(dims, mets)`` tuples → raw runReport rows."""
    return [
        {
            "dimensionValues": [{"value": d} for d in dims],
            "metricValues": [{"value": m} for m in mets],
        }
        for dims, mets in rows
    ]


def ga_response(rows: List[Dict], row_count: int | None = None) -> Dict:
    return {"rows": rows, "rowCount": len(rows) if row_count is None else row_count}


SAMPLE_REPORTS = {
    ("date",): ga_rows(
        (["20240329"], ["100", "250", "120.5", "0.45"]),
        (["20240330"], ["180", "400", "95.0", "0.38"]),
    ),
    ("date", "sessionSource"): ga_rows(
        (["20240329", "google"], ["60"]),
        (["20240329", "twitter"], ["40"]),
        (["20240330", "google"], ["120"]),
    ),
    ("date", "pagePath"): ga_rows(
        (["20240329", "/"], ["150", "40.0"]),
        (["20240330", "/blog"], ["300", "75.5"]),
    ),
    ("date", "country", "countryId", "city"): ga_rows(
        (["20240329", "India", "IN", "Pune"], ["70", "150"]),
        (["20240330", "Germany", "DE", "Berlin"], ["90", "200"]),
    ),
    ("date", "deviceCategory", "browser", "operatingSystem"): ga_rows(
        (["20240329", "desktop", "Chrome", "Windows"], ["80", "200"]),
        (["20240330", "mobile", "Safari", "iOS"], ["110", "260"]),
    ),
}


def ga_handler(reports: Dict = SAMPLE_REPORTS, calls: List | None = None) -> Callable:
    """MockTransport handler answering runReport and the OAuth token endpoint."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if request.url.path.endswith("/token"):
            return httpx.Response(
                200, json={"access_token": "fresh-token", "expires_in": 3600}
            )
        body = json.loads(request.content)
        dims = tuple(d["name"] for d in body["dimensions"])
        return httpx.Response(200, json=ga_response(reports.get(dims, [])))

    return handler
