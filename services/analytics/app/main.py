"""FastAPI application entry point for the Affiliate Analytics service."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.aggregators import get_aggregator
from app.api import analytics_router, retry_queue_router, tracking_router
from app.core.config import get_settings
from app.core.database import close_db
from app.core.observability import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    record_click_rejected,
    setup_observability,
)
from app.core.rate_limit import limiter
from app.scheduler import get_scheduler, start_scheduler, stop_scheduler
from app.services import get_retry_processor

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting Affiliate Analytics", version=settings.app_version)

    if settings.scheduler_enabled:
        await start_scheduler()
        logger.info("Job scheduler started")
    else:
        logger.info("Job scheduler disabled")

    yield

    # Shutdown
    logger.info("Shutting down Affiliate Analytics")

    await stop_scheduler()
    logger.info("Job scheduler stopped")

    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Click ingestion, retry queue and reporting for affiliate links",
    lifespan=lifespan,
)

# Set up observability (logging, tracing, metrics, error tracking)
setup_observability(app)

# Rate limiter state and exception handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Count rejected clicks, then answer with FastAPI's standard 422 body."""
    if request.url.path == "/track-click":
        record_click_rejected()
        logger.info("Click rejected by validation", errors=len(exc.errors()))
    return await request_validation_exception_handler(request, exc)


# Add request middleware (order matters: RequestID first, then logging)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

# Include routers
app.include_router(tracking_router)
app.include_router(retry_queue_router)
app.include_router(analytics_router)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    scheduler = get_scheduler()
    healthy = scheduler.is_running or not settings.scheduler_enabled
    return {
        "status": "healthy" if healthy else "degraded",
        "service": "analytics",
        "scheduler_running": scheduler.is_running,
    }


@app.get("/stats")
async def service_stats() -> dict:
    """Get service statistics."""
    return {
        "service": "analytics",
        "version": settings.app_version,
        "scheduler": get_scheduler().stats,
        "retry_processor": get_retry_processor().stats,
        "aggregator": get_aggregator().stats,
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Welcome to Affiliate Analytics", "version": settings.app_version}
