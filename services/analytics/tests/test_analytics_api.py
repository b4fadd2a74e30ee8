"""HTTP tests for click stats, CSV export and product rollup endpoints."""

import csv
import io
from datetime import datetime

import pytest

from app.aggregators import StatsAggregator
from app.api.analytics import EXPORT_HEADERS, pick_granularity
from tests.helpers import click_values


async def seed(event_store):
    clicks = [
        click_values("a1", datetime(2026, 3, 10, 11, 0), product_id=1, content_id="guide-a",
                     page_path="/guides/a", device="mobile", utm_source="newsletter",
                     redirect_ms=100),
        click_values("a2", datetime(2026, 3, 10, 9, 30), product_id=1, content_id="guide-a",
                     page_path="/guides/a", device="desktop", redirect_ms=300),
        click_values("a3", datetime(2026, 3, 8, 15, 0), product_id=2, link_id=7,
                     page_path="/deals", device="mobile", utm_source="newsletter"),
        click_values("a4", datetime(2026, 3, 9, 8, 0), product_id=1, link_id=3,
                     referrer="https://example.com/a,b"),
        click_values("a5", datetime(2026, 3, 9, 8, 5), product_id=2, success=False),
        # Outside every default window
        click_values("a6", datetime(2026, 1, 20, 10, 0), product_id=3),
    ]
    for values in clicks:
        await event_store.insert(values)


@pytest.mark.parametrize("start, end, expected", [
    (datetime(2026, 3, 9), datetime(2026, 3, 10), "hour"),
    (datetime(2026, 3, 8), datetime(2026, 3, 10), "hour"),
    (datetime(2026, 3, 1), datetime(2026, 3, 10), "day"),
    (datetime(2026, 1, 1), datetime(2026, 3, 10), "week"),
])
def test_pick_granularity(start, end, expected):
    assert pick_granularity(start, end) == expected


class TestClickStats:

    @pytest.mark.asyncio
    async def test_default_range(self, client, event_store):
        await seed(event_store)

        resp = await client.get("/click-stats")

        assert resp.status_code == 200
        body = resp.json()
        assert body["startDate"] == "2026-03-03T12:00:00"
        assert body["endDate"] == "2026-03-10T12:00:00"
        assert body["totalClicks"] == 4
        # guide-a, link 7 and link 3
        assert body["uniqueClicks"] == 3
        assert body["avgRedirectTime"] == 200
        assert body["granularity"] == "day"

        assert [p["productId"] for p in body["topProducts"]] == [1, 2]
        assert body["topProducts"][0]["clicks"] == 3
        assert body["topPages"][0] == {"pagePath": "/guides/a", "clicks": 2, "uniqueClicks": 1}

        devices = {item["value"]: item for item in body["deviceBreakdown"]}
        assert devices["mobile"]["clicks"] == 2
        assert devices["mobile"]["percentage"] == 50.0
        assert devices["unknown"]["clicks"] == 1

        series = {point["timestamp"]: point["clicks"] for point in body["timeSeries"]}
        assert series == {
            "2026-03-08T00:00:00": 1,
            "2026-03-09T00:00:00": 1,
            "2026-03-10T00:00:00": 2,
        }

    @pytest.mark.asyncio
    async def test_filters_and_hourly_series(self, client, event_store):
        await seed(event_store)

        resp = await client.get("/click-stats", params={
            "startDate": "2026-03-10T00:00:00",
            "endDate": "2026-03-10T12:00:00",
            "productId": 1,
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["totalClicks"] == 2
        assert body["granularity"] == "hour"
        assert [point["timestamp"] for point in body["timeSeries"]] == [
            "2026-03-10T09:00:00",
            "2026-03-10T11:00:00",
        ]

    @pytest.mark.asyncio
    async def test_utm_filter(self, client, event_store):
        await seed(event_store)

        resp = await client.get("/click-stats", params={"utmSource": "newsletter"})

        assert resp.json()["totalClicks"] == 2

    @pytest.mark.asyncio
    async def test_start_must_precede_end(self, client):
        resp = await client.get("/click-stats", params={
            "startDate": "2026-03-10T00:00:00",
            "endDate": "2026-03-10T00:00:00",
        })

        assert resp.status_code == 400
        assert resp.json()["detail"] == "startDate must be before endDate"

    @pytest.mark.asyncio
    async def test_range_limited_to_90_days(self, client):
        resp = await client.get("/click-stats", params={
            "startDate": "2025-11-01T00:00:00",
            "endDate": "2026-03-10T00:00:00",
        })

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_range(self, client):
        resp = await client.get("/click-stats")

        body = resp.json()
        assert body["totalClicks"] == 0
        assert body["avgRedirectTime"] == 0
        assert body["timeSeries"] == []


class TestExportClicks:

    @pytest.mark.asyncio
    async def test_csv_newest_first(self, client, event_store):
        await seed(event_store)

        resp = await client.get("/export-clicks")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert 'filename="affiliate-clicks-2026-03-10.csv"' in resp.headers["content-disposition"]

        rows = list(csv.reader(io.StringIO(resp.text)))
        assert rows[0] == EXPORT_HEADERS
        # a6 is older than the 30-day default window
        assert [row[0] for row in rows[1:]] == ["a1", "a2", "a5", "a4", "a3"]
        by_id = {row[0]: dict(zip(EXPORT_HEADERS, row)) for row in rows[1:]}
        assert by_id["a4"]["Referrer"] == "https://example.com/a,b"
        assert by_id["a5"]["Success"] == "false"
        assert by_id["a1"]["Redirect Time (ms)"] == "100"
        assert by_id["a1"]["Timestamp"] == "2026-03-10T11:00:00"

    @pytest.mark.asyncio
    async def test_limit_and_filter(self, client, event_store):
        await seed(event_store)

        resp = await client.get("/export-clicks", params={"productId": 1, "limit": 2})

        rows = list(csv.reader(io.StringIO(resp.text)))
        assert [row[0] for row in rows[1:]] == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_empty_export_has_header_only(self, client):
        resp = await client.get("/export-clicks")

        assert resp.status_code == 200
        rows = list(csv.reader(io.StringIO(resp.text)))
        assert rows == [EXPORT_HEADERS]

    @pytest.mark.asyncio
    async def test_range_limited_to_365_days(self, client):
        resp = await client.get("/export-clicks", params={
            "startDate": "2025-01-01T00:00:00",
            "endDate": "2026-03-10T00:00:00",
        })

        assert resp.status_code == 400


class TestProductRollups:

    @pytest.mark.asyncio
    async def test_summary_falls_back_to_raw_clicks(self, client, event_store):
        await seed(event_store)

        resp = await client.get("/analytics/products/1/summary")

        assert resp.status_code == 200
        assert resp.json() == {
            "productId": 1,
            "totalClicks": 3,
            "uniqueClicks": 2,
            "clicksToday": 2,
            "clicksThisWeek": 3,
            "clicksThisMonth": 3,
        }

    @pytest.mark.asyncio
    async def test_summary_reads_daily_rollups(self, client, event_store, session_factory, clock):
        await seed(event_store)
        await StatsAggregator(session_factory, clock=clock).aggregate_daily()

        resp = await client.get("/analytics/products/1/summary")

        body = resp.json()
        assert body["totalClicks"] == 3
        assert body["clicksToday"] == 2

    @pytest.mark.asyncio
    async def test_daily_timeseries(self, client, event_store, session_factory, clock):
        await seed(event_store)
        await StatsAggregator(session_factory, clock=clock).aggregate_daily()

        resp = await client.get(
            "/analytics/products/1/timeseries",
            params={"startDate": "2026-03-01", "endDate": "2026-03-10"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["granularity"] == "daily"
        assert [(p["timestamp"], p["clicks"]) for p in body["data"]] == [
            ("2026-03-09", 1),
            ("2026-03-10", 2),
        ]

    @pytest.mark.asyncio
    async def test_hourly_timeseries_from_raw_clicks(self, client, event_store):
        await seed(event_store)

        resp = await client.get(
            "/analytics/products/1/timeseries",
            params={"startDate": "2026-03-10", "endDate": "2026-03-10", "granularity": "hourly"},
        )

        body = resp.json()
        assert [(p["timestamp"], p["clicks"]) for p in body["data"]] == [
            ("2026-03-10T09:00:00", 1),
            ("2026-03-10T11:00:00", 1),
        ]

    @pytest.mark.asyncio
    async def test_timeseries_rejects_inverted_range(self, client):
        resp = await client.get(
            "/analytics/products/1/timeseries",
            params={"startDate": "2026-03-10", "endDate": "2026-03-01"},
        )

        assert resp.status_code == 400
