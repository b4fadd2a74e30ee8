"""Analytics SQLAlchemy models."""

from app.core.database import Base
from app.models.click import ClickEvent
from app.models.engagement import PageView, SearchQuery
from app.models.retry_queue import (
    EVENT_TYPE_CLICK,
    EVENT_TYPE_PAGE_VIEW,
    EVENT_TYPE_SEARCH,
    RetryQueueItem,
)
from app.models.stats import ProductStatsDaily, ProductStatsHourly

__all__ = [
    "Base",
    "ClickEvent",
    "PageView",
    "SearchQuery",
    "EVENT_TYPE_CLICK",
    "EVENT_TYPE_PAGE_VIEW",
    "EVENT_TYPE_SEARCH",
    "RetryQueueItem",
    "ProductStatsHourly",
    "ProductStatsDaily",
]
