"""Pydantic schemas for click ingestion and replay."""

from datetime import datetime

from pydantic import AnyUrl, Field, TypeAdapter, ValidationError, field_validator

from app.schemas.base import CamelModel

MAX_PAGE_PATH_LENGTH = 500
# click_events id columns are 32-bit integers
MAX_ID = 2**31 - 1

_URL_ADAPTER = TypeAdapter(AnyUrl)


def check_referrer(value: str | None) -> str | None:
    """Reject anything but an absolute URL with a host.

    The value is returned as sent; the parsed form would normalize case and
    trailing slashes.
    """
    if value is None:
        return value
    try:
        url = _URL_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise ValueError("referrer must be a valid URL") from e
    if not url.host:
        raise ValueError("referrer must be a valid URL")
    return value


def check_page_path(value: str | None) -> str | None:
    if value is None:
        return value
    if not value.startswith("/") or len(value) > MAX_PAGE_PATH_LENGTH:
        raise ValueError(
            f"pagePath must start with '/' and be at most {MAX_PAGE_PATH_LENGTH} characters"
        )
    return value


class TrackClickRequest(CamelModel):
    """Click event posted by the redirect flow.

    Validation happens here, before anything is written. UTM fields,
    device and browser are trimmed; any optional text field that ends up
    empty is stored as NULL, never as an empty string.
    """

    link_id: int = Field(gt=0, le=MAX_ID, description="Affiliate link id")
    product_id: int = Field(gt=0, le=MAX_ID, description="Affiliate product id")
    content_id: str | None = Field(default=None, max_length=255)
    pick_id: str | None = Field(default=None, max_length=255)
    variant_id: str | None = Field(default=None, max_length=255)
    page_path: str | None = Field(default=None, description="Site path, must start with '/'")
    referrer: str | None = Field(default=None, description="Absolute referrer URL")
    utm_source: str | None = Field(default=None, max_length=255)
    utm_medium: str | None = Field(default=None, max_length=255)
    utm_campaign: str | None = Field(default=None, max_length=255)
    utm_term: str | None = Field(default=None, max_length=255)
    utm_content: str | None = Field(default=None, max_length=255)
    device: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    browser: str | None = Field(default=None, max_length=100)
    redirect_ms: int | None = Field(default=None, ge=0, le=MAX_ID)
    success: bool = True

    model_config = {
        "json_schema_extra": {
            "example": {
                "linkId": 42,
                "productId": 7,
                "contentId": "best-running-shoes-2024",
                "pagePath": "/reviews/running-shoes",
                "referrer": "https://www.google.com/",
                "utmSource": "newsletter",
                "utmMedium": "email",
                "device": "mobile",
                "browser": "Safari",
                "country": "US",
                "redirectMs": 120,
            }
        }
    }

    @field_validator(
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "device",
        "browser",
        mode="before",
    )
    @classmethod
    def strip_or_none(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator(
        "content_id",
        "pick_id",
        "variant_id",
        "country",
        "page_path",
        "referrer",
        mode="before",
    )
    @classmethod
    def empty_to_none(cls, value: object) -> object:
        if value == "":
            return None
        return value

    @field_validator("success", mode="before")
    @classmethod
    def null_success_is_true(cls, value: object) -> object:
        # Only an explicit false marks a failed redirect
        return True if value is None else value

    @field_validator("page_path")
    @classmethod
    def validate_page_path(cls, value: str | None) -> str | None:
        return check_page_path(value)

    @field_validator("referrer")
    @classmethod
    def validate_referrer(cls, value: str | None) -> str | None:
        return check_referrer(value)


class TrackClickResponse(CamelModel):
    """Result of a click ingestion: accepted for processing."""

    event_id: str
    success: bool


class QueuedClickEvent(TrackClickRequest):
    """Click payload stored in the retry queue.

    Same fields and rules as the incoming request plus the ingestion
    context needed to replay it onto the same event row.
    """

    event_id: str | None = None
    timestamp: datetime | None = None
