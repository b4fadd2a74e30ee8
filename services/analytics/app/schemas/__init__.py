"""Pydantic schemas for analytics."""

from app.schemas.analytics import (
    BreakdownItem,
    ClickSeriesPoint,
    ClickStats,
    PageClickStats,
    ProductClickStats,
    ProductSummary,
    TimeseriesPoint,
    TimeseriesResponse,
)
from app.schemas.engagement import (
    QueuedPageView,
    QueuedSearch,
    RequestContext,
    TrackPageViewRequest,
    TrackSearchRequest,
)
from app.schemas.retry_queue import DeadRetryItem, RetryQueueStatus, RetryTriggerResponse
from app.schemas.tracking import QueuedClickEvent, TrackClickRequest, TrackClickResponse

__all__ = [
    # Tracking
    "TrackClickRequest",
    "TrackClickResponse",
    "QueuedClickEvent",
    "TrackPageViewRequest",
    "TrackSearchRequest",
    "RequestContext",
    "QueuedPageView",
    "QueuedSearch",
    # Retry queue
    "RetryQueueStatus",
    "RetryTriggerResponse",
    "DeadRetryItem",
    # Analytics
    "ProductSummary",
    "TimeseriesPoint",
    "TimeseriesResponse",
    "ProductClickStats",
    "PageClickStats",
    "BreakdownItem",
    "ClickSeriesPoint",
    "ClickStats",
]
