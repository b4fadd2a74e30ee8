"""API routers."""

from app.api.analytics import router as analytics_router
from app.api.retry_queue import router as retry_queue_router
from app.api.tracking import router as tracking_router

__all__ = [
    "analytics_router",
    "retry_queue_router",
    "tracking_router",
]
