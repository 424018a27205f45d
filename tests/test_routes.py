"""
API route tests through the ASGI app with the test DB injected.
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlmodel import Session

from trafficlens.models.account_models import FetchState, GAAccount
from trafficlens.models.analytics_models import (
    DailyMetric,
    DeviceRecord,
    GeographyRecord,
    ReferrerRecord,
    TopPageRecord,
)
from trafficlens.models.insight_models import InsightEvent
from trafficlens.models.report_models import IngestionResult
from trafficlens.ingestion.status import update_fetch_status


@pytest.fixture()
def seeded(engine):
    """Two days of stored traffic with children and one spike event."""
    with Session(engine) as session:
        for day, visitors in (("2024-03-29", 100), ("2024-03-30", 180)):
            metric = DailyMetric(user_id="user-1", date=day, visitors=visitors, page_views=visitors * 2)
            session.add(metric)
            session.flush()
            owner = {"daily_metric_id": metric.id, "user_id": "user-1", "date": day}
            session.add(ReferrerRecord(**owner, source="google", visitors=visitors - 20))
            session.add(ReferrerRecord(**owner, source="twitter", visitors=20))
            session.add(TopPageRecord(**owner, page_path="/", page_views=visitors, avg_engagement_time=30.0))
            session.add(GeographyRecord(**owner, country="India", country_code="IN", city="Pune", visitors=visitors))
            session.add(DeviceRecord(**owner, device_category="mobile", browser="Chrome", operating_system="Android", visitors=visitors))
        session.add(
            InsightEvent(
                user_id="user-1",
                date="2024-03-30",
                event_type="spike",
                title="📈 Traffic spike: +80%",
                value=180,
                event_metadata={"percentage_change": 80},
            )
        )
        session.commit()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_fetch_status_pending_without_record(client):
    resp = await client.get("/analytics/fetch-status", params={"user_id": "user-1"})
    assert resp.json() == {
        "status": "pending",
        "message": "Preparing to fetch data",
        "progress": 0,
    }


@pytest.mark.asyncio
async def test_fetch_status_complete(client, engine):
    with Session(engine) as session:
        update_fetch_status(session, "user-1", FetchState.COMPLETE, "Successfully processed 2 days of data")

    body = (await client.get("/analytics/fetch-status", params={"user_id": "user-1"})).json()
    assert body["status"] == "complete"
    assert body["progress"] == 100


@pytest.mark.asyncio
async def test_initial_fetch_requires_property(client):
    resp = await client.post("/analytics/initial-fetch", json={"user_id": "user-1"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Property ID is required"


@pytest.mark.asyncio
async def test_initial_fetch_runs_ingestion(client):
    result = IngestionResult(success=True, days_processed=30)
    with patch("trafficlens.api.ingest_routes.run_ingestion", AsyncMock(return_value=result)) as run:
        resp = await client.post(
            "/analytics/initial-fetch",
            json={"user_id": "user-1", "property_id": "123456", "days": 30},
        )

    assert resp.status_code == 200
    assert resp.json()["days_processed"] == 30
    assert run.await_args.args[1:] == ("user-1", "123456")


@pytest.mark.asyncio
async def test_initial_fetch_failure_is_500(client):
    result = IngestionResult(
        success=False, error="Failed to fetch analytics data", details="Invalid property ID"
    )
    with patch("trafficlens.api.ingest_routes.run_ingestion", AsyncMock(return_value=result)):
        resp = await client.post(
            "/analytics/initial-fetch", json={"user_id": "user-1", "property_id": "pending"}
        )

    assert resp.status_code == 500
    assert resp.json()["detail"]["details"] == "Invalid property ID"


@pytest.mark.asyncio
async def test_initial_fetch_unknown_property_is_400(client):
    resp = await client.post(
        "/analytics/initial-fetch", json={"user_id": "user-1", "property_id": "999"}
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No GA account found for this property"


@pytest.mark.asyncio
async def test_fetch_without_account_is_404(client):
    resp = await client.post("/analytics/fetch", json={"user_id": "nobody"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_fetch_without_selected_property_is_400(client, engine):
    with Session(engine) as session:
        session.add(GAAccount(user_id="user-1", access_token="a", refresh_token="r"))
        session.commit()

    resp = await client.post("/analytics/fetch", json={"user_id": "user-1"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Google Analytics property not selected"


@pytest.mark.asyncio
async def test_fetch_passes_force_refresh(client):
    result = IngestionResult(success=True, skipped_fetch=False, days_processed=3)
    with patch("trafficlens.api.ingest_routes.refresh_user_data", AsyncMock(return_value=result)) as refresh:
        resp = await client.post(
            "/analytics/fetch", json={"user_id": "user-1", "days": 7, "force_refresh": True}
        )

    assert resp.status_code == 200
    assert refresh.await_args.kwargs == {"days": 7, "force": True}


@pytest.mark.asyncio
async def test_list_insights(client, seeded):
    resp = await client.get(
        "/insights",
        params={"user_id": "user-1", "start_date": "2024-03-01", "end_date": "2024-03-31"},
    )
    body = resp.json()
    assert body["count"] == 1
    event = body["events"][0]
    assert event["event_type"] == "spike"
    assert event["metadata"] == {"percentage_change": 80}


@pytest.mark.asyncio
async def test_insights_are_scoped_to_user(client, seeded):
    resp = await client.get(
        "/insights",
        params={"user_id": "user-2", "start_date": "2024-03-01", "end_date": "2024-03-31"},
    )
    assert resp.json()["count"] == 0


@pytest.mark.asyncio
async def test_day_insight(client, seeded):
    resp = await client.get(
        "/insights/2024-03-30", params={"user_id": "user-1", "type": "drop", "change": "-35"}
    )
    body = resp.json()
    assert body["spike_type"] == "Traffic Drop"
    assert body["percentage_change"] == 35
    assert body["top_sources"][0] == {"source": "google", "visitors": 160}
    assert body["top_pages"] == [{"page": "/", "visitors": 180}]


@pytest.mark.asyncio
async def test_day_insight_rejects_bad_date(client):
    resp = await client.get("/insights/not-a-date", params={"user_id": "user-1"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_breakdown(client, seeded):
    resp = await client.get(
        "/analytics/breakdown",
        params={"user_id": "user-1", "start_date": "2024-03-29", "end_date": "2024-03-30"},
    )
    body = resp.json()
    assert [d["visitors"] for d in body["daily"]] == [100, 180]
    assert body["referrers"][0] == {"source": "google", "visitors": 240}
    assert body["pages"][0]["page_views"] == 280
    assert body["pages"][0]["avg_engagement_time"] == 30.0
    assert body["countries"][0]["cities"] == ["Pune"]
    assert body["devices"] == [{"category": "mobile", "visitors": 280}]
    assert body["browsers"][0]["browser"] == "Chrome"
    assert body["operating_systems"][0]["os"] == "Android"


@pytest.mark.asyncio
async def test_insights_filter_by_event_type(client, seeded):
    params = {"user_id": "user-1", "start_date": "2024-03-01", "end_date": "2024-03-31"}
    drops = await client.get("/insights", params={**params, "event_type": "drop"})
    assert drops.json()["count"] == 0

    unknown = await client.get("/insights", params={**params, "event_type": "bogus"})
    assert unknown.status_code == 400
