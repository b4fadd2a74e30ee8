"""Ingestion endpoints: affiliate clicks, page views and site searches."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.core.exceptions import ClickTrackingError, EventTrackingError
from app.core.rate_limit import (
    RATE_LIMIT_ENGAGEMENT,
    RATE_LIMIT_TRACK_CLICK,
    get_client_ip_address,
    limiter,
)
from app.schemas import (
    RequestContext,
    TrackClickRequest,
    TrackClickResponse,
    TrackPageViewRequest,
    TrackSearchRequest,
)
from app.services.engagement import EngagementTracker, get_engagement_tracker
from app.services.ingestion import ClickIngestionService, get_ingestion_service

logger = structlog.get_logger()

router = APIRouter(tags=["tracking"])


def request_context(request: Request) -> RequestContext:
    """User agent and client IP (first X-Forwarded-For hop) of a request."""
    return RequestContext(
        user_agent=request.headers.get("User-Agent") or None,
        ip_address=get_client_ip_address(request),
    )


@router.post("/track-click", response_model=TrackClickResponse)
@limiter.limit(RATE_LIMIT_TRACK_CLICK)
async def track_click(
    request: Request,
    payload: TrackClickRequest,
    service: Annotated[ClickIngestionService, Depends(get_ingestion_service)],
) -> TrackClickResponse:
    """Record one affiliate link click.

    The click is written to the event store, or queued for a later retry
    if the store is unavailable. Either way the caller gets success; only
    a failure of both stores is reported as an error.
    """
    try:
        return await service.track_click(payload)
    except ClickTrackingError as e:
        logger.error("Click tracking failed", event_id=e.event_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e


@router.post("/analytics/page-view", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(RATE_LIMIT_ENGAGEMENT)
async def track_page_view(
    request: Request,
    payload: TrackPageViewRequest,
    tracker: Annotated[EngagementTracker, Depends(get_engagement_tracker)],
) -> Response:
    """Record a page view."""
    try:
        await tracker.track_page_view(payload, request_context(request))
    except EventTrackingError as e:
        logger.error("Page view tracking failed", event_id=e.event_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/analytics/search", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(RATE_LIMIT_ENGAGEMENT)
async def track_search(
    request: Request,
    payload: TrackSearchRequest,
    tracker: Annotated[EngagementTracker, Depends(get_engagement_tracker)],
) -> Response:
    """Record a site search and how many results it returned."""
    try:
        await tracker.track_search(payload, request_context(request))
    except EventTrackingError as e:
        logger.error("Search tracking failed", event_id=e.event_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
