"""Click ingestion: validate, store, or fall back to the retry queue."""

import asyncio
import time
import uuid
from datetime import datetime
from typing import Any

import structlog

from app.core.clock import Clock, get_clock
from app.core.config import Settings, get_settings
from app.core.exceptions import ClickTrackingError
from app.core.observability import record_click_ingested
from app.models.retry_queue import EVENT_TYPE_CLICK
from app.schemas.tracking import TrackClickRequest, TrackClickResponse
from app.services.event_store import ClickEventStore
from app.services.retry_queue import RetryQueue, get_retry_queue

logger = structlog.get_logger()


def build_click_values(
    event: TrackClickRequest,
    event_id: str,
    timestamp: datetime,
) -> dict[str, Any]:
    """Column values for a click_events row from a validated request."""
    return {
        "id": event_id,
        "timestamp": timestamp,
        "link_id": event.link_id,
        "product_id": event.product_id,
        "content_id": event.content_id,
        "pick_id": event.pick_id,
        "variant_id": event.variant_id,
        "page_path": event.page_path,
        "referrer": event.referrer,
        "utm_source": event.utm_source,
        "utm_medium": event.utm_medium,
        "utm_campaign": event.utm_campaign,
        "utm_term": event.utm_term,
        "utm_content": event.utm_content,
        "device": event.device,
        "country": event.country,
        "browser": event.browser,
        "redirect_ms": event.redirect_ms,
        "success": event.success,
    }


class ClickIngestionService:
    """Records click events without ever blocking the redirect flow.

    A failed or timed-out write to the event store is not reported to the
    caller: the click goes to the retry queue instead and the call still
    succeeds. Only when the queue write fails too is there nothing left to
    fall back on, and ClickTrackingError is raised.
    """

    def __init__(
        self,
        event_store: ClickEventStore | None = None,
        retry_queue: RetryQueue | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        self._event_store = event_store or ClickEventStore()
        self._retry_queue = retry_queue or get_retry_queue()
        self._clock = clock or get_clock()
        self._settings = settings or get_settings()

    async def track_click(self, request: TrackClickRequest) -> TrackClickResponse:
        """Store a validated click, queueing it for retry if the store fails."""
        event_id = str(uuid.uuid4())
        timestamp = self._clock.now()
        values = build_click_values(request, event_id, timestamp)

        start_time = time.perf_counter()
        try:
            await asyncio.wait_for(
                self._event_store.insert(values),
                timeout=self._settings.db_operation_timeout,
            )
        except Exception as e:
            logger.warning(
                "Click write failed, queueing for retry",
                event_id=event_id,
                link_id=request.link_id,
                product_id=request.product_id,
                error=repr(e),
            )
            await self._queue_for_retry(request, event_id, timestamp)
            record_click_ingested("queued")
            return TrackClickResponse(event_id=event_id, success=True)

        record_click_ingested("stored", time.perf_counter() - start_time)
        logger.debug(
            "Click stored",
            event_id=event_id,
            link_id=request.link_id,
            product_id=request.product_id,
        )
        return TrackClickResponse(event_id=event_id, success=True)

    async def _queue_for_retry(
        self,
        request: TrackClickRequest,
        event_id: str,
        timestamp: datetime,
    ) -> None:
        payload = request.model_dump(mode="json", by_alias=True)
        payload["eventId"] = event_id
        payload["timestamp"] = timestamp.isoformat()

        try:
            await asyncio.wait_for(
                self._retry_queue.enqueue(EVENT_TYPE_CLICK, payload),
                timeout=self._settings.db_operation_timeout,
            )
        except Exception as e:
            logger.error(
                "Failed to queue click event for retry",
                event_id=event_id,
                error=repr(e),
            )
            raise ClickTrackingError(event_id) from e


# Global service instance
_ingestion_service: ClickIngestionService | None = None


def get_ingestion_service() -> ClickIngestionService:
    """Get the global ingestion service instance."""
    global _ingestion_service
    if _ingestion_service is None:
        _ingestion_service = ClickIngestionService()
    return _ingestion_service
