"""Pydantic schemas for page view and site search tracking."""

from datetime import datetime

from pydantic import Field, field_validator

from app.schemas.base import CamelModel
from app.schemas.tracking import MAX_ID, check_page_path, check_referrer

MAX_QUERY_LENGTH = 500


class TrackPageViewRequest(CamelModel):
    """Page view posted by the site frontend."""

    article_id: int | None = Field(default=None, gt=0, le=MAX_ID)
    page_path: str = Field(description="Site path, must start with '/'")
    referrer: str | None = Field(default=None, description="Absolute referrer URL")
    session_id: str | None = Field(default=None, max_length=255)

    @field_validator("referrer", "session_id", mode="before")
    @classmethod
    def empty_to_none(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("page_path")
    @classmethod
    def validate_page_path(cls, value: str) -> str:
        return check_page_path(value)

    @field_validator("referrer")
    @classmethod
    def validate_referrer(cls, value: str | None) -> str | None:
        return check_referrer(value)


class TrackSearchRequest(CamelModel):
    """Site search posted by the frontend after results are shown."""

    query: str = Field(min_length=1, max_length=MAX_QUERY_LENGTH)
    results_count: int = Field(ge=0, le=MAX_ID)
    session_id: str | None = Field(default=None, max_length=255)

    @field_validator("query", "session_id", mode="before")
    @classmethod
    def strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value


class RequestContext(CamelModel):
    """Who sent a tracking request, taken from its headers."""

    user_agent: str | None = None
    ip_address: str | None = None


class QueuedPageView(TrackPageViewRequest, RequestContext):
    """Page view stored in the retry queue, with its ingestion context."""

    event_id: str
    timestamp: datetime


class QueuedSearch(TrackSearchRequest, RequestContext):
    """Search stored in the retry queue, with its ingestion context."""

    event_id: str
    timestamp: datetime
