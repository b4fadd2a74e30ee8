"""Analytics business logic services."""

from app.services.engagement import EngagementTracker, get_engagement_tracker
from app.services.event_store import ClickEventStore, EventStore, PageViewStore, SearchQueryStore
from app.services.ingestion import ClickIngestionService, get_ingestion_service
from app.services.retry_processor import (
    RetryProcessor,
    RetryRunResult,
    get_retry_processor,
    process_retry_queue,
)
from app.services.retry_queue import RetryQueue, get_retry_queue

__all__ = [
    # Event stores
    "EventStore",
    "ClickEventStore",
    "PageViewStore",
    "SearchQueryStore",
    # Page views and searches
    "EngagementTracker",
    "get_engagement_tracker",
    # Ingestion
    "ClickIngestionService",
    "get_ingestion_service",
    # Retry queue
    "RetryQueue",
    "get_retry_queue",
    # Retry processing
    "RetryProcessor",
    "RetryRunResult",
    "get_retry_processor",
    "process_retry_queue",
]
