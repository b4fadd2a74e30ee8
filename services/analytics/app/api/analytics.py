"""Analytics API endpoints: dashboard stats, CSV export and product rollups."""

import csv
import io
from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Literal

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from app.core.clock import Clock, get_clock
from app.core.database import Granularity, as_datetime, get_async_session, time_bucket
from app.models.click import ClickEvent, unique_click_key
from app.models.stats import ProductStatsDaily, ProductStatsHourly
from app.schemas import (
    BreakdownItem,
    ClickSeriesPoint,
    ClickStats,
    PageClickStats,
    ProductClickStats,
    ProductSummary,
    TimeseriesPoint,
    TimeseriesResponse,
)

logger = structlog.get_logger()

router = APIRouter(tags=["analytics"])

STATS_DEFAULT_DAYS = 7
STATS_MAX_DAYS = 90
EXPORT_DEFAULT_DAYS = 30
EXPORT_MAX_DAYS = 365
EXPORT_DEFAULT_LIMIT = 10_000
EXPORT_MAX_LIMIT = 50_000

EXPORT_HEADERS = [
    "Event ID",
    "Timestamp",
    "Link ID",
    "Product ID",
    "Content ID",
    "Pick ID",
    "Variant ID",
    "Page Path",
    "Referrer",
    "UTM Source",
    "UTM Medium",
    "UTM Campaign",
    "UTM Term",
    "UTM Content",
    "Device",
    "Country",
    "Browser",
    "Redirect Time (ms)",
    "Success",
]


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_date_range(
    start_date: datetime | None,
    end_date: datetime | None,
    now: datetime,
    default_days: int,
    max_days: int,
) -> tuple[datetime, datetime]:
    """Apply defaults and validate a report date range.

    Raises:
        HTTPException: 400 if start is not before end or the range is too long.
    """
    end = _naive_utc(end_date) if end_date else now
    start = _naive_utc(start_date) if start_date else end - timedelta(days=default_days)

    if start >= end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="startDate must be before endDate",
        )
    if end - start > timedelta(days=max_days):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Date range cannot exceed {max_days} days",
        )
    return start, end


def pick_granularity(start: datetime, end: datetime) -> Granularity:
    """Time series bucket size: hours up to 2 days, days up to 31, then weeks."""
    span = end - start
    if span <= timedelta(days=2):
        return "hour"
    if span <= timedelta(days=31):
        return "day"
    return "week"


def click_filters(
    start: datetime,
    end: datetime,
    product_id: int | None = None,
    content_id: str | None = None,
    utm_source: str | None = None,
    utm_medium: str | None = None,
    utm_campaign: str | None = None,
    device: str | None = None,
) -> list[ColumnElement[bool]]:
    """WHERE conditions over click_events for the report endpoints."""
    conditions = [ClickEvent.timestamp >= start, ClickEvent.timestamp <= end]
    if product_id is not None:
        conditions.append(ClickEvent.product_id == product_id)
    if content_id:
        conditions.append(ClickEvent.content_id == content_id)
    if utm_source:
        conditions.append(ClickEvent.utm_source == utm_source)
    if utm_medium:
        conditions.append(ClickEvent.utm_medium == utm_medium)
    if utm_campaign:
        conditions.append(ClickEvent.utm_campaign == utm_campaign)
    if device:
        conditions.append(ClickEvent.device == device)
    return conditions


def _percentage(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total > 0 else 0.0


async def _breakdown(
    session: AsyncSession,
    column: ColumnElement[str | None],
    conditions: list[ColumnElement[bool]],
    total_clicks: int,
    limit: int,
) -> list[BreakdownItem]:
    query = (
        select(column.label("value"), func.count().label("clicks"))
        .where(*conditions)
        .group_by(column)
        .order_by(func.count().desc())
        .limit(limit)
    )
    result = await session.execute(query)
    return [
        BreakdownItem(
            value=row.value or "unknown",
            clicks=row.clicks,
            percentage=_percentage(row.clicks, total_clicks),
        )
        for row in result.all()
    ]


@router.get("/click-stats", response_model=ClickStats)
async def get_click_stats(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    clock: Annotated[Clock, Depends(get_clock)],
    start_date: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate")] = None,
    product_id: Annotated[int | None, Query(alias="productId")] = None,
    content_id: Annotated[str | None, Query(alias="contentId")] = None,
    utm_source: Annotated[str | None, Query(alias="utmSource")] = None,
    utm_medium: Annotated[str | None, Query(alias="utmMedium")] = None,
    utm_campaign: Annotated[str | None, Query(alias="utmCampaign")] = None,
    device: Annotated[str | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=100, description="Max items per top list")] = 10,
) -> ClickStats:
    """Dashboard statistics over successful clicks in a date range.

    Defaults to the last 7 days; ranges longer than 90 days are rejected.
    """
    start, end = resolve_date_range(
        start_date, end_date, clock.now(), STATS_DEFAULT_DAYS, STATS_MAX_DAYS
    )
    conditions = click_filters(
        start, end, product_id, content_id, utm_source, utm_medium, utm_campaign, device
    )
    conditions.append(ClickEvent.success.is_(True))

    # Totals
    totals_query = select(
        func.count().label("total_clicks"),
        func.count(func.distinct(unique_click_key())).label("unique_clicks"),
        func.coalesce(func.avg(ClickEvent.redirect_ms), 0).label("avg_redirect_time"),
    ).where(*conditions)
    totals = (await session.execute(totals_query)).one()
    total_clicks = totals.total_clicks or 0

    # Top products
    products_query = (
        select(
            ClickEvent.product_id,
            func.count().label("clicks"),
            func.count(func.distinct(unique_click_key())).label("unique_clicks"),
            func.coalesce(func.avg(ClickEvent.redirect_ms), 0).label("avg_redirect_time"),
        )
        .where(*conditions)
        .group_by(ClickEvent.product_id)
        .order_by(func.count().desc())
        .limit(limit)
    )
    top_products = [
        ProductClickStats(
            product_id=row.product_id,
            clicks=row.clicks,
            unique_clicks=row.unique_clicks,
            avg_redirect_time=round(row.avg_redirect_time),
        )
        for row in (await session.execute(products_query)).all()
    ]

    # Top pages
    pages_query = (
        select(
            ClickEvent.page_path,
            func.count().label("clicks"),
            func.count(func.distinct(unique_click_key())).label("unique_clicks"),
        )
        .where(*conditions)
        .where(ClickEvent.page_path.isnot(None))
        .group_by(ClickEvent.page_path)
        .order_by(func.count().desc())
        .limit(limit)
    )
    top_pages = [
        PageClickStats(page_path=row.page_path, clicks=row.clicks, unique_clicks=row.unique_clicks)
        for row in (await session.execute(pages_query)).all()
    ]

    device_breakdown = await _breakdown(session, ClickEvent.device, conditions, total_clicks, limit)
    utm_source_breakdown = await _breakdown(
        session, ClickEvent.utm_source, conditions, total_clicks, limit
    )

    # Time series
    granularity = pick_granularity(start, end)
    bucket = time_bucket(session, ClickEvent.timestamp, granularity).label("bucket")
    series_query = (
        select(
            bucket,
            func.count().label("clicks"),
            func.count(func.distinct(unique_click_key())).label("unique_clicks"),
        )
        .where(*conditions)
        .group_by(bucket)
        .order_by(bucket)
    )
    time_series = [
        ClickSeriesPoint(
            timestamp=as_datetime(row.bucket),
            clicks=row.clicks,
            unique_clicks=row.unique_clicks,
        )
        for row in (await session.execute(series_query)).all()
    ]

    logger.debug(
        "Click stats fetched",
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        total_clicks=total_clicks,
        granularity=granularity,
    )

    return ClickStats(
        start_date=start,
        end_date=end,
        total_clicks=total_clicks,
        unique_clicks=totals.unique_clicks or 0,
        avg_redirect_time=round(totals.avg_redirect_time or 0),
        top_products=top_products,
        top_pages=top_pages,
        device_breakdown=device_breakdown,
        utm_source_breakdown=utm_source_breakdown,
        granularity=granularity,
        time_series=time_series,
    )


def _csv_value(value: object) -> object:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def render_clicks_csv(clicks: list[ClickEvent]) -> str:
    """CSV document with a header row and one line per click."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for click in clicks:
        writer.writerow(
            _csv_value(value)
            for value in (
                click.id,
                click.timestamp,
                click.link_id,
                click.product_id,
                click.content_id,
                click.pick_id,
                click.variant_id,
                click.page_path,
                click.referrer,
                click.utm_source,
                click.utm_medium,
                click.utm_campaign,
                click.utm_term,
                click.utm_content,
                click.device,
                click.country,
                click.browser,
                click.redirect_ms,
                click.success,
            )
        )
    return buffer.getvalue()


@router.get("/export-clicks", response_class=StreamingResponse)
async def export_clicks(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    clock: Annotated[Clock, Depends(get_clock)],
    start_date: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate")] = None,
    product_id: Annotated[int | None, Query(alias="productId")] = None,
    content_id: Annotated[str | None, Query(alias="contentId")] = None,
    utm_source: Annotated[str | None, Query(alias="utmSource")] = None,
    utm_medium: Annotated[str | None, Query(alias="utmMedium")] = None,
    limit: Annotated[int, Query(ge=1, description="Max rows, capped at 50000")] = EXPORT_DEFAULT_LIMIT,
) -> StreamingResponse:
    """Download raw click events as CSV, newest first.

    Defaults to the last 30 days; ranges longer than 365 days are rejected.
    """
    now = clock.now()
    start, end = resolve_date_range(start_date, end_date, now, EXPORT_DEFAULT_DAYS, EXPORT_MAX_DAYS)
    limit = min(limit, EXPORT_MAX_LIMIT)

    query = (
        select(ClickEvent)
        .where(*click_filters(start, end, product_id, content_id, utm_source, utm_medium))
        .order_by(ClickEvent.timestamp.desc())
        .limit(limit)
    )
    result = await session.execute(query)
    clicks = list(result.scalars().all())

    filename = f"affiliate-clicks-{now.date().isoformat()}.csv"
    logger.info("Click export generated", record_count=len(clicks), filename=filename)

    return StreamingResponse(
        iter([render_clicks_csv(clicks)]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Record-Count": str(len(clicks)),
        },
    )


@router.get("/analytics/products/{product_id}/summary", response_model=ProductSummary)
async def get_product_summary(
    product_id: int,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> ProductSummary:
    """Get summary statistics for a product.

    Reads the daily rollups, falling back to raw clicks when the product
    has not been aggregated yet.
    """
    now = clock.now()
    today = now.date()
    week_ago = today - timedelta(days=7)
    month_ago = today - timedelta(days=30)

    total_query = select(
        func.coalesce(func.sum(ProductStatsDaily.click_count), 0).label("total_clicks"),
        func.coalesce(func.sum(ProductStatsDaily.unique_clicks), 0).label("unique_clicks"),
    ).where(ProductStatsDaily.product_id == product_id)
    total_row = (await session.execute(total_query)).one()

    if total_row.total_clicks == 0:
        return await _product_summary_from_raw(session, product_id, today)

    async def clicks_since(since: date) -> int:
        query = select(func.coalesce(func.sum(ProductStatsDaily.click_count), 0)).where(
            ProductStatsDaily.product_id == product_id,
            ProductStatsDaily.date >= since,
        )
        return (await session.execute(query)).scalar() or 0

    logger.debug("Summary fetched", product_id=product_id, total_clicks=total_row.total_clicks)

    return ProductSummary(
        product_id=product_id,
        total_clicks=total_row.total_clicks,
        unique_clicks=total_row.unique_clicks,
        clicks_today=await clicks_since(today),
        clicks_this_week=await clicks_since(week_ago),
        clicks_this_month=await clicks_since(month_ago),
    )


async def _product_summary_from_raw(
    session: AsyncSession,
    product_id: int,
    today: date,
) -> ProductSummary:
    def since(day: date) -> ColumnElement[int]:
        start = datetime.combine(day, datetime.min.time())
        return func.count().filter(ClickEvent.timestamp >= start)

    query = select(
        func.count().label("total_clicks"),
        func.count(func.distinct(unique_click_key())).label("unique_clicks"),
        since(today).label("clicks_today"),
        since(today - timedelta(days=7)).label("clicks_this_week"),
        since(today - timedelta(days=30)).label("clicks_this_month"),
    ).where(ClickEvent.product_id == product_id, ClickEvent.success.is_(True))
    row = (await session.execute(query)).one()

    return ProductSummary(
        product_id=product_id,
        total_clicks=row.total_clicks,
        unique_clicks=row.unique_clicks,
        clicks_today=row.clicks_today or 0,
        clicks_this_week=row.clicks_this_week or 0,
        clicks_this_month=row.clicks_this_month or 0,
    )


@router.get("/analytics/products/{product_id}/timeseries", response_model=TimeseriesResponse)
async def get_product_timeseries(
    product_id: int,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    clock: Annotated[Clock, Depends(get_clock)],
    start_date: Annotated[date | None, Query(alias="startDate", description="Start date (default: 30 days ago)")] = None,
    end_date: Annotated[date | None, Query(alias="endDate", description="End date (default: today)")] = None,
    granularity: Annotated[
        Literal["hourly", "daily"],
        Query(description="Time granularity")
    ] = "daily",
) -> TimeseriesResponse:
    """Get click counts over time for a product at hourly or daily granularity."""
    today = clock.now().date()
    end_date = end_date or today
    start_date = start_date or (end_date - timedelta(days=30))

    if start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="startDate must be before or equal to endDate",
        )

    start_dt = datetime.combine(start_date, datetime.min.time())
    end_dt = datetime.combine(end_date + timedelta(days=1), datetime.min.time())

    if granularity == "hourly":
        query = (
            select(
                ProductStatsHourly.hour.label("bucket"),
                ProductStatsHourly.click_count,
                ProductStatsHourly.unique_clicks,
            )
            .where(ProductStatsHourly.product_id == product_id)
            .where(ProductStatsHourly.hour >= start_dt)
            .where(ProductStatsHourly.hour < end_dt)
            .order_by(ProductStatsHourly.hour)
        )
    else:
        query = (
            select(
                ProductStatsDaily.date.label("bucket"),
                ProductStatsDaily.click_count,
                ProductStatsDaily.unique_clicks,
            )
            .where(ProductStatsDaily.product_id == product_id)
            .where(ProductStatsDaily.date >= start_date)
            .where(ProductStatsDaily.date <= end_date)
            .order_by(ProductStatsDaily.date)
        )

    rows = (await session.execute(query)).all()
    data = [
        TimeseriesPoint(timestamp=row.bucket, clicks=row.click_count, unique_clicks=row.unique_clicks)
        for row in rows
    ]

    # Not aggregated yet: bucket the raw clicks directly
    if not data:
        bucket = time_bucket(
            session, ClickEvent.timestamp, "hour" if granularity == "hourly" else "day"
        ).label("bucket")
        raw_query = (
            select(
                bucket,
                func.count().label("clicks"),
                func.count(func.distinct(unique_click_key())).label("unique_clicks"),
            )
            .where(ClickEvent.product_id == product_id)
            .where(ClickEvent.success.is_(True))
            .where(ClickEvent.timestamp >= start_dt)
            .where(ClickEvent.timestamp < end_dt)
            .group_by(bucket)
            .order_by(bucket)
        )
        for row in (await session.execute(raw_query)).all():
            timestamp = as_datetime(row.bucket)
            data.append(TimeseriesPoint(
                timestamp=timestamp if granularity == "hourly" else timestamp.date(),
                clicks=row.clicks,
                unique_clicks=row.unique_clicks,
            ))

    logger.debug(
        "Timeseries fetched",
        product_id=product_id,
        granularity=granularity,
        points=len(data),
    )

    return TimeseriesResponse(
        product_id=product_id,
        granularity=granularity,
        start_date=start_date,
        end_date=end_date,
        data=data,
    )
