"""Pydantic schemas for analytics API responses."""

from datetime import date, datetime

from pydantic import Field

from app.schemas.base import CamelModel


class ProductSummary(CamelModel):
    """Summary statistics for a product."""

    product_id: int
    total_clicks: int = Field(description="Total number of successful clicks")
    unique_clicks: int = Field(description="Distinct content (or link) sources")
    clicks_today: int = Field(default=0, description="Clicks today")
    clicks_this_week: int = Field(default=0, description="Clicks in the last 7 days")
    clicks_this_month: int = Field(default=0, description="Clicks in the last 30 days")


class TimeseriesPoint(CamelModel):
    """A single point in a timeseries."""

    timestamp: datetime | date
    clicks: int
    unique_clicks: int


class TimeseriesResponse(CamelModel):
    """Timeseries data for clicks over time."""

    product_id: int
    granularity: str = Field(description="Time granularity: 'hourly' or 'daily'")
    start_date: date
    end_date: date
    data: list[TimeseriesPoint]


class ProductClickStats(CamelModel):
    product_id: int
    clicks: int
    unique_clicks: int
    avg_redirect_time: int


class PageClickStats(CamelModel):
    page_path: str
    clicks: int
    unique_clicks: int


class BreakdownItem(CamelModel):
    """Click share of one value of a dimension (device, UTM source)."""

    value: str
    clicks: int
    percentage: float = Field(description="Percentage of total clicks")


class ClickSeriesPoint(CamelModel):
    timestamp: datetime
    clicks: int
    unique_clicks: int


class ClickStats(CamelModel):
    """Dashboard statistics over raw click events for a date range."""

    start_date: datetime
    end_date: datetime
    total_clicks: int
    unique_clicks: int
    avg_redirect_time: int = Field(description="Average redirect time in ms")
    top_products: list[ProductClickStats]
    top_pages: list[PageClickStats]
    device_breakdown: list[BreakdownItem]
    utm_source_breakdown: list[BreakdownItem]
    granularity: str = Field(description="Time series bucket: 'hour', 'day' or 'week'")
    time_series: list[ClickSeriesPoint]
