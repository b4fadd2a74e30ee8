"""Retry queue endpoints: manual processing, status and dead items."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, Response, status

from app.schemas import DeadRetryItem, RetryQueueStatus, RetryTriggerResponse
from app.services.retry_processor import RetryProcessor, get_retry_processor
from app.services.retry_queue import RetryQueue, get_retry_queue

logger = structlog.get_logger()

router = APIRouter(tags=["retry-queue"])


@router.post(
    "/analytics/retry-queue/process",
    status_code=status.HTTP_204_NO_CONTENT,
    include_in_schema=False,
)
async def process_retry_queue(
    processor: Annotated[RetryProcessor, Depends(get_retry_processor)],
) -> Response:
    """Run one retry pass. Internal: called by the job runner."""
    await processor.process()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/trigger-retry-processing", response_model=RetryTriggerResponse)
async def trigger_retry_processing(
    processor: Annotated[RetryProcessor, Depends(get_retry_processor)],
) -> RetryTriggerResponse:
    """Manually run one retry pass and wait for it to finish."""
    result = await processor.process()
    logger.info(
        "Manual retry processing complete",
        processed=result.processed,
        failed=result.failed,
        purged=result.purged,
    )
    return RetryTriggerResponse(message="Retry queue processing triggered")


@router.get("/retry-queue-status", response_model=RetryQueueStatus)
async def get_retry_queue_status(
    queue: Annotated[RetryQueue, Depends(get_retry_queue)],
) -> RetryQueueStatus:
    """Count pending, processed and dead (failed) queue items."""
    return await queue.status()


@router.get("/retry-queue/dead-items", response_model=list[DeadRetryItem])
async def list_dead_retry_items(
    queue: Annotated[RetryQueue, Depends(get_retry_queue)],
    limit: Annotated[int, Query(ge=1, le=500, description="Max items to return")] = 50,
) -> list[DeadRetryItem]:
    """Items that exhausted their retries, oldest first."""
    items = await queue.list_dead(limit)
    return [DeadRetryItem.model_validate(item) for item in items]
