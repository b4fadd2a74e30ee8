"""Page view and site search tracking with the same retry fallback as clicks."""

import asyncio
import uuid
from datetime import datetime
from typing import Any

import structlog

from app.core.clock import Clock, get_clock
from app.core.config import Settings, get_settings
from app.core.exceptions import EventTrackingError
from app.core.observability import record_engagement_event
from app.models.retry_queue import EVENT_TYPE_PAGE_VIEW, EVENT_TYPE_SEARCH
from app.schemas.engagement import (
    QueuedPageView,
    QueuedSearch,
    RequestContext,
    TrackPageViewRequest,
    TrackSearchRequest,
)
from app.services.event_store import EventStore, PageViewStore, SearchQueryStore
from app.services.retry_queue import RetryQueue, get_retry_queue

logger = structlog.get_logger()


def build_page_view_values(
    event: TrackPageViewRequest,
    context: RequestContext,
    event_id: str,
    created_at: datetime,
) -> dict[str, Any]:
    return {
        "id": event_id,
        "article_id": event.article_id,
        "page_path": event.page_path,
        "referrer": event.referrer,
        "session_id": event.session_id,
        "user_agent": context.user_agent,
        "ip_address": context.ip_address,
        "created_at": created_at,
    }


def build_search_values(
    event: TrackSearchRequest,
    context: RequestContext,
    event_id: str,
    created_at: datetime,
) -> dict[str, Any]:
    return {
        "id": event_id,
        "query": event.query,
        "results_count": event.results_count,
        "session_id": event.session_id,
        "user_agent": context.user_agent,
        "ip_address": context.ip_address,
        "created_at": created_at,
    }


class EngagementTracker:
    """Records page views and searches.

    A failed or timed-out write goes to the retry queue under its own event
    type and the call still succeeds. EventTrackingError is raised only when
    the queue write fails too.
    """

    def __init__(
        self,
        page_view_store: PageViewStore | None = None,
        search_store: SearchQueryStore | None = None,
        retry_queue: RetryQueue | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        self._page_view_store = page_view_store or PageViewStore()
        self._search_store = search_store or SearchQueryStore()
        self._retry_queue = retry_queue or get_retry_queue()
        self._clock = clock or get_clock()
        self._settings = settings or get_settings()

    async def track_page_view(self, request: TrackPageViewRequest, context: RequestContext) -> str:
        """Store a page view and return its event id."""
        event_id = str(uuid.uuid4())
        now = self._clock.now()
        await self._record(
            self._page_view_store,
            EVENT_TYPE_PAGE_VIEW,
            build_page_view_values(request, context, event_id, now),
            QueuedPageView(
                **request.model_dump(),
                **context.model_dump(),
                event_id=event_id,
                timestamp=now,
            ),
        )
        return event_id

    async def track_search(self, request: TrackSearchRequest, context: RequestContext) -> str:
        """Store a site search and return its event id."""
        event_id = str(uuid.uuid4())
        now = self._clock.now()
        await self._record(
            self._search_store,
            EVENT_TYPE_SEARCH,
            build_search_values(request, context, event_id, now),
            QueuedSearch(
                **request.model_dump(),
                **context.model_dump(),
                event_id=event_id,
                timestamp=now,
            ),
        )
        return event_id

    async def _record(
        self,
        store: EventStore,
        event_type: str,
        values: dict[str, Any],
        queued: QueuedPageView | QueuedSearch,
    ) -> None:
        event_id = values["id"]
        try:
            await asyncio.wait_for(store.insert(values), timeout=self._settings.db_operation_timeout)
        except Exception as e:
            logger.warning(
                "Event write failed, queueing for retry",
                event_type=event_type,
                event_id=event_id,
                error=repr(e),
            )
        else:
            record_engagement_event(event_type, "stored")
            return

        try:
            await asyncio.wait_for(
                self._retry_queue.enqueue(event_type, queued.model_dump(mode="json", by_alias=True)),
                timeout=self._settings.db_operation_timeout,
            )
        except Exception as e:
            logger.error(
                "Failed to queue event for retry",
                event_type=event_type,
                event_id=event_id,
                error=repr(e),
            )
            raise EventTrackingError(event_id) from e

        record_engagement_event(event_type, "queued")


# Global tracker instance
_engagement_tracker: EngagementTracker | None = None


def get_engagement_tracker() -> EngagementTracker:
    """Get the global engagement tracker instance."""
    global _engagement_tracker
    if _engagement_tracker is None:
        _engagement_tracker = EngagementTracker()
    return _engagement_tracker
