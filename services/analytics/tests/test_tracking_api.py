"""HTTP tests for POST /track-click."""

from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import ClickTrackingError
from app.models import ClickEvent, RetryQueueItem
from app.services.ingestion import ClickIngestionService, get_ingestion_service
from tests.helpers import all_clicks, count_rows


@pytest.mark.asyncio
async def test_track_click_stores_event(client, session_factory):
    resp = await client.post("/track-click", json={
        "linkId": 42,
        "productId": 7,
        "contentId": "best-running-shoes",
        "utmSource": "  newsletter  ",
        "utmMedium": "",
        "referrer": "https://www.google.com/",
        "redirectMs": 120,
    })

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["eventId"]

    [click] = await all_clicks(session_factory)
    assert click.id == body["eventId"]
    assert click.link_id == 42
    assert click.product_id == 7
    assert click.utm_source == "newsletter"
    assert click.utm_medium is None
    assert click.redirect_ms == 120


@pytest.mark.asyncio
async def test_null_success_recorded_as_success(client, session_factory):
    resp = await client.post("/track-click", json={"linkId": 1, "productId": 1, "success": None})

    assert resp.status_code == 200
    [click] = await all_clicks(session_factory)
    assert click.success is True


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"linkId": 0, "productId": 1},
    {"linkId": 1, "productId": -3},
    {"productId": 1},
    {"linkId": 1, "productId": 1, "pagePath": "no-leading-slash"},
    {"linkId": 1, "productId": 1, "referrer": "not a url"},
    {"linkId": 1, "productId": 1, "referrer": "http://exa mple.com/"},
    {"linkId": 1, "productId": 1, "redirectMs": -1},
])
async def test_invalid_click_rejected_without_writes(client, session_factory, payload):
    resp = await client.post("/track-click", json=payload)

    assert resp.status_code == 422
    assert resp.json()["detail"]
    assert await count_rows(session_factory, ClickEvent) == 0
    assert await count_rows(session_factory, RetryQueueItem) == 0


@pytest.mark.asyncio
async def test_unavailable_stores_return_500(client):
    from app.main import app

    service = AsyncMock(spec=ClickIngestionService)
    service.track_click.side_effect = ClickTrackingError("event-1")
    app.dependency_overrides[get_ingestion_service] = lambda: service

    resp = await client.post("/track-click", json={"linkId": 1, "productId": 1})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to track click event"


@pytest.mark.asyncio
async def test_response_carries_request_id(client):
    resp = await client.post(
        "/track-click",
        json={"linkId": 1, "productId": 1},
        headers={"X-Request-ID": "req-123"},
    )

    assert resp.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_health_and_root(client):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["service"] == "analytics"
    assert health.json()["status"] == "healthy"

    root = await client.get("/")
    assert root.status_code == 200
    assert "version" in root.json()


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    await client.post("/track-click", json={"linkId": 1, "productId": 1})

    resp = await client.get("/metrics")

    assert resp.status_code == 200
    assert "analytics_clicks_ingested_total" in resp.text
