"""Retry processor: replays queued events with bounded exponential backoff."""

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Coroutine, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from app.core.config import Settings, get_settings
from app.core.exceptions import RetryReplayError
from app.core.observability import (
    record_retry_failed,
    record_retry_replayed,
    record_retry_run,
)
from app.models.retry_queue import (
    EVENT_TYPE_CLICK,
    EVENT_TYPE_PAGE_VIEW,
    EVENT_TYPE_SEARCH,
    RetryQueueItem,
)
from app.schemas.engagement import QueuedPageView, QueuedSearch
from app.schemas.tracking import QueuedClickEvent
from app.services.engagement import build_page_view_values, build_search_values
from app.services.event_store import ClickEventStore, PageViewStore, SearchQueryStore
from app.services.ingestion import build_click_values
from app.services.retry_queue import RetryQueue, get_retry_queue

logger = structlog.get_logger()

# Type alias for replay handlers, one per event type
ReplayHandler = Callable[[RetryQueueItem], Coroutine[None, None, None]]

QueuedModel = TypeVar("QueuedModel", bound=BaseModel)


def _parse_payload(model: type[QueuedModel], item: RetryQueueItem) -> QueuedModel:
    try:
        return model.model_validate(item.event_data)
    except ValidationError as e:
        raise RetryReplayError(
            item.id,
            f"Malformed {item.event_type} payload ({e.error_count()} errors)",
        ) from e


def _naive_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is not None:
        return timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    return timestamp


@dataclass
class RetryRunResult:
    """Outcome of one pass over the retry queue."""

    processed: int = 0
    failed: int = 0
    purged: int = 0


class RetryProcessor:
    """Replays due retry queue items into the event store.

    Each pass claims up to ``retry_batch_size`` due items (oldest first),
    replays each through the handler registered for its event type, marks
    successes processed and pushes failures out with exponential backoff.
    A failure on one item never stops the rest of the batch. After the
    batch, processed items past the retention window are deleted.

    Usage:
        processor = RetryProcessor()
        result = await processor.process()
    """

    def __init__(
        self,
        retry_queue: RetryQueue | None = None,
        event_store: ClickEventStore | None = None,
        settings: Settings | None = None,
        page_view_store: PageViewStore | None = None,
        search_store: SearchQueryStore | None = None,
    ):
        self._retry_queue = retry_queue or get_retry_queue()
        self._event_store = event_store or ClickEventStore()
        self._page_view_store = page_view_store or PageViewStore()
        self._search_store = search_store or SearchQueryStore()
        self._settings = settings or get_settings()
        self._handlers: dict[str, ReplayHandler] = {
            EVENT_TYPE_CLICK: self._replay_click_event,
            EVENT_TYPE_PAGE_VIEW: self._replay_page_view,
            EVENT_TYPE_SEARCH: self._replay_search,
        }
        self._runs = 0
        self._items_processed = 0
        self._items_failed = 0

    def register_handler(self, event_type: str, handler: ReplayHandler) -> None:
        """Register the replay handler for an event type."""
        self._handlers[event_type] = handler
        logger.debug("Replay handler registered", event_type=event_type)

    async def process(self) -> RetryRunResult:
        """Run one pass over the queue. Never raises."""
        start_time = time.perf_counter()
        result = RetryRunResult()

        try:
            items = await self._retry_queue.claim_due(self._settings.retry_batch_size)
        except Exception as e:
            logger.error("Failed to load retry queue items", error=repr(e))
            return result

        if items:
            logger.info("Processing retry items", count=len(items))
        else:
            logger.debug("No items in retry queue")

        for item in items:
            try:
                await self._replay(item)
                await self._retry_queue.mark_processed(item.id)
            except Exception as e:
                result.failed += 1
                record_retry_failed(item.event_type)
                logger.error(
                    "Failed to process retry item",
                    item_id=item.id,
                    event_type=item.event_type,
                    retry_count=item.retry_count,
                    error=repr(e),
                )
                await self._reschedule(item)
            else:
                result.processed += 1
                record_retry_replayed(item.event_type)

        try:
            result.purged = await self._retry_queue.purge_processed()
        except Exception as e:
            logger.error("Retry queue compaction failed", error=repr(e))

        duration = time.perf_counter() - start_time
        record_retry_run(duration)

        self._runs += 1
        self._items_processed += result.processed
        self._items_failed += result.failed

        if items:
            logger.info(
                "Retry queue processing complete",
                processed=result.processed,
                failed=result.failed,
                purged=result.purged,
                duration_ms=round(duration * 1000, 2),
            )
        return result

    async def _replay(self, item: RetryQueueItem) -> None:
        handler = self._handlers.get(item.event_type)
        if handler is None:
            logger.warning("Unknown event type for retry", item_id=item.id, event_type=item.event_type)
            raise RetryReplayError(item.id, f"Unknown event type: {item.event_type}")

        await asyncio.wait_for(handler(item), timeout=self._settings.db_operation_timeout)

    async def _reschedule(self, item: RetryQueueItem) -> None:
        try:
            await self._retry_queue.record_failure(item.id)
        except Exception as e:
            # The claim lease still expires, so the item is retried later
            logger.error("Failed to reschedule retry item", item_id=item.id, error=repr(e))

    async def _replay_click_event(self, item: RetryQueueItem) -> None:
        """Write a queued click, skipping it if its event id is already stored."""
        event = _parse_payload(QueuedClickEvent, item)
        timestamp = _naive_utc(event.timestamp or self._retry_queue.clock.now())

        values = build_click_values(event, event.event_id or str(uuid.uuid4()), timestamp)
        await self._event_store.insert_ignore(values)

    async def _replay_page_view(self, item: RetryQueueItem) -> None:
        event = _parse_payload(QueuedPageView, item)
        values = build_page_view_values(
            event,
            event,
            event.event_id,
            _naive_utc(event.timestamp),
        )
        await self._page_view_store.insert_ignore(values)

    async def _replay_search(self, item: RetryQueueItem) -> None:
        event = _parse_payload(QueuedSearch, item)
        values = build_search_values(
            event,
            event,
            event.event_id,
            _naive_utc(event.timestamp),
        )
        await self._search_store.insert_ignore(values)

    @property
    def stats(self) -> dict:
        """Get processor statistics."""
        return {
            "runs": self._runs,
            "items_processed": self._items_processed,
            "items_failed": self._items_failed,
        }


# Global processor instance
_retry_processor: RetryProcessor | None = None


def get_retry_processor() -> RetryProcessor:
    """Get the global retry processor instance."""
    global _retry_processor
    if _retry_processor is None:
        _retry_processor = RetryProcessor()
    return _retry_processor


async def process_retry_queue() -> RetryRunResult:
    """Run one pass of the global retry processor."""
    return await get_retry_processor().process()
