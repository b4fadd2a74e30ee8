"""Pydantic schemas for the retry queue endpoints."""

from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field

from app.schemas.base import CamelModel


class RetryQueueStatus(CamelModel):
    """Row counts per queue state; the three always add up to the table size."""

    pending_items: int = Field(description="Unprocessed items still under their retry cap")
    processed_items: int = Field(description="Items replayed successfully")
    failed_items: int = Field(description="Dead items that exhausted their retries")


class RetryTriggerResponse(CamelModel):
    message: str


class DeadRetryItem(CamelModel):
    """A queue item that exhausted its retries and needs an operator."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    event_data: dict[str, Any]
    retry_count: int
    max_retries: int
    next_retry_at: datetime
    created_at: datetime
