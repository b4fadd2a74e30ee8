"""Tests for page view and site search tracking."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from app.core.exceptions import EventTrackingError
from app.models import EVENT_TYPE_PAGE_VIEW, EVENT_TYPE_SEARCH, PageView, RetryQueueItem, SearchQuery
from app.schemas import RequestContext, TrackPageViewRequest, TrackSearchRequest
from app.services.engagement import EngagementTracker, get_engagement_tracker
from app.services.event_store import PageViewStore, SearchQueryStore
from app.services.retry_queue import RetryQueue
from tests.helpers import count_rows

CONTEXT = RequestContext(user_agent="Mozilla/5.0", ip_address="203.0.113.7")


async def all_rows(session_factory, model) -> list:
    async with session_factory() as session:
        result = await session.execute(select(model).order_by(model.created_at))
        return list(result.scalars().all())


async def queued_items(session_factory) -> list[RetryQueueItem]:
    async with session_factory() as session:
        result = await session.execute(select(RetryQueueItem).order_by(RetryQueueItem.id))
        return list(result.scalars().all())


@pytest.fixture
def failing_page_view_store():
    store = AsyncMock(spec=PageViewStore)
    store.insert.side_effect = ConnectionError("event store unavailable")
    return store


@pytest.fixture
def failing_search_store():
    store = AsyncMock(spec=SearchQueryStore)
    store.insert.side_effect = ConnectionError("event store unavailable")
    return store


class TestValidation:

    @pytest.mark.parametrize("payload", [
        {},
        {"pagePath": "reviews/shoes"},
        {"pagePath": "/" + "a" * 500},
        {"pagePath": "/deals", "articleId": 0},
        {"pagePath": "/deals", "referrer": "http://exa mple.com/"},
    ])
    def test_invalid_page_view_rejected(self, payload):
        with pytest.raises(ValidationError):
            TrackPageViewRequest.model_validate(payload)

    def test_page_view_optional_fields_emptied(self):
        request = TrackPageViewRequest.model_validate(
            {"pagePath": "/deals", "referrer": "", "sessionId": "  "}
        )
        assert request.referrer is None
        assert request.session_id is None

    @pytest.mark.parametrize("payload", [
        {"query": "", "resultsCount": 3},
        {"query": "   ", "resultsCount": 3},
        {"query": "shoes", "resultsCount": -1},
        {"query": "shoes"},
    ])
    def test_invalid_search_rejected(self, payload):
        with pytest.raises(ValidationError):
            TrackSearchRequest.model_validate(payload)

    def test_search_query_trimmed(self):
        request = TrackSearchRequest.model_validate({"query": "  running shoes ", "resultsCount": 0})
        assert request.query == "running shoes"
        assert request.results_count == 0


class TestEngagementTracker:

    @pytest.mark.asyncio
    async def test_page_view_stored(self, engagement_tracker, session_factory, clock):
        event_id = await engagement_tracker.track_page_view(
            TrackPageViewRequest(article_id=12, page_path="/reviews/shoes", session_id="s-1"),
            CONTEXT,
        )

        [view] = await all_rows(session_factory, PageView)
        assert view.id == event_id
        assert view.article_id == 12
        assert view.page_path == "/reviews/shoes"
        assert view.session_id == "s-1"
        assert view.user_agent == "Mozilla/5.0"
        assert view.ip_address == "203.0.113.7"
        assert view.created_at == clock.now()
        assert await count_rows(session_factory, RetryQueueItem) == 0

    @pytest.mark.asyncio
    async def test_search_stored(self, engagement_tracker, session_factory):
        await engagement_tracker.track_search(
            TrackSearchRequest(query="trail shoes", results_count=4),
            CONTEXT,
        )

        [search] = await all_rows(session_factory, SearchQuery)
        assert search.query == "trail shoes"
        assert search.results_count == 4
        assert search.ip_address == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_page_view_queued_and_replayed(
        self, failing_page_view_store, search_store, retry_queue, retry_processor,
        session_factory, clock, settings,
    ):
        tracker = EngagementTracker(
            failing_page_view_store, search_store, retry_queue, clock=clock, settings=settings
        )

        event_id = await tracker.track_page_view(
            TrackPageViewRequest(page_path="/deals", referrer="https://news.example.com/a"),
            CONTEXT,
        )

        [item] = await queued_items(session_factory)
        assert item.event_type == EVENT_TYPE_PAGE_VIEW
        assert item.event_data["eventId"] == event_id
        assert item.event_data["pagePath"] == "/deals"
        assert item.event_data["ipAddress"] == "203.0.113.7"
        assert await count_rows(session_factory, PageView) == 0

        ingested_at = clock.now()
        clock.advance(timedelta(minutes=1))
        result = await retry_processor.process()
        assert result.processed == 1

        # A second delivery of the same event must not add a row
        await retry_queue.enqueue(EVENT_TYPE_PAGE_VIEW, item.event_data, delay=timedelta(0))
        assert (await retry_processor.process()).processed == 1

        [view] = await all_rows(session_factory, PageView)
        assert view.id == event_id
        assert view.referrer == "https://news.example.com/a"
        assert view.user_agent == "Mozilla/5.0"
        assert view.created_at == ingested_at

    @pytest.mark.asyncio
    async def test_search_queued_and_replayed(
        self, page_view_store, failing_search_store, retry_queue, retry_processor,
        session_factory, clock, settings,
    ):
        tracker = EngagementTracker(
            page_view_store, failing_search_store, retry_queue, clock=clock, settings=settings
        )

        event_id = await tracker.track_search(TrackSearchRequest(query="shoes", results_count=0), CONTEXT)

        [item] = await queued_items(session_factory)
        assert item.event_type == EVENT_TYPE_SEARCH
        assert item.event_data["resultsCount"] == 0

        clock.advance(timedelta(minutes=1))
        result = await retry_processor.process()

        assert result.processed == 1
        [search] = await all_rows(session_factory, SearchQuery)
        assert search.id == event_id
        assert search.results_count == 0

    @pytest.mark.asyncio
    async def test_enqueue_failure_raises(
        self, failing_page_view_store, search_store, session_factory, clock, settings
    ):
        failing_queue = AsyncMock(spec=RetryQueue)
        failing_queue.enqueue.side_effect = ConnectionError("retry queue unavailable")
        tracker = EngagementTracker(
            failing_page_view_store, search_store, failing_queue, clock=clock, settings=settings
        )

        with pytest.raises(EventTrackingError) as exc_info:
            await tracker.track_page_view(TrackPageViewRequest(page_path="/deals"), CONTEXT)

        assert exc_info.value.event_id
        assert str(exc_info.value) == "Failed to track event"


class TestEndpoints:

    @pytest.mark.asyncio
    async def test_page_view_uses_first_forwarded_ip(self, client, session_factory):
        resp = await client.post(
            "/analytics/page-view",
            json={"articleId": 3, "pagePath": "/guides/a", "sessionId": "s-9"},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "TestAgent/1.0"},
        )

        assert resp.status_code == 204
        assert resp.content == b""
        [view] = await all_rows(session_factory, PageView)
        assert view.article_id == 3
        assert view.ip_address == "203.0.113.7"
        assert view.user_agent == "TestAgent/1.0"

    @pytest.mark.asyncio
    async def test_page_view_without_forwarded_header(self, client, session_factory):
        resp = await client.post("/analytics/page-view", json={"pagePath": "/"})

        assert resp.status_code == 204
        [view] = await all_rows(session_factory, PageView)
        assert view.ip_address == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_unparseable_forwarded_ip_stored_as_null(self, client, session_factory):
        resp = await client.post(
            "/analytics/page-view",
            json={"pagePath": "/"},
            headers={"X-Forwarded-For": "unknown"},
        )

        assert resp.status_code == 204
        [view] = await all_rows(session_factory, PageView)
        assert view.ip_address is None

    @pytest.mark.asyncio
    async def test_search(self, client, session_factory):
        resp = await client.post(
            "/analytics/search",
            json={"query": "running shoes", "resultsCount": 12},
            headers={"X-Forwarded-For": "2001:db8::1"},
        )

        assert resp.status_code == 204
        [search] = await all_rows(session_factory, SearchQuery)
        assert search.query == "running shoes"
        assert search.results_count == 12
        assert search.ip_address == "2001:db8::1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path, payload", [
        ("/analytics/page-view", {"pagePath": "no-slash"}),
        ("/analytics/page-view", {"pagePath": "/", "referrer": "http://<script>/"}),
        ("/analytics/search", {"query": "", "resultsCount": 1}),
        ("/analytics/search", {"query": "shoes", "resultsCount": -5}),
    ])
    async def test_invalid_payload_rejected_without_writes(self, client, session_factory, path, payload):
        resp = await client.post(path, json=payload)

        assert resp.status_code == 422
        assert await count_rows(session_factory, PageView) == 0
        assert await count_rows(session_factory, SearchQuery) == 0
        assert await count_rows(session_factory, RetryQueueItem) == 0

    @pytest.mark.asyncio
    async def test_unavailable_stores_return_500(self, client):
        from app.main import app

        tracker = AsyncMock(spec=EngagementTracker)
        tracker.track_search.side_effect = EventTrackingError("event-1")
        app.dependency_overrides[get_engagement_tracker] = lambda: tracker

        resp = await client.post("/analytics/search", json={"query": "shoes", "resultsCount": 1})

        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to track event"
