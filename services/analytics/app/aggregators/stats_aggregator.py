"""Statistics aggregation service for hourly and daily product stats."""

import time
from datetime import date, datetime, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, get_clock
from app.core.database import as_datetime, async_session_factory, time_bucket, upsert
from app.core.observability import record_aggregation
from app.models.click import ClickEvent, unique_click_key
from app.models.stats import ProductStatsDaily, ProductStatsHourly

logger = structlog.get_logger()


class StatsAggregator:
    """Service for aggregating click statistics.

    Performs hourly and daily aggregations of successful raw clicks into
    per-product summary tables for efficient dashboard queries. Runs are
    idempotent: re-aggregating a window overwrites the same rows.

    Usage:
        aggregator = StatsAggregator()
        await aggregator.aggregate_hourly()
        await aggregator.aggregate_daily()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock | None = None,
        top_n: int = 10,  # Number of top pages/UTM sources to keep
    ):
        """Initialize the aggregator.

        Args:
            session_factory: Session factory for the event store.
            clock: Time source for the aggregation windows.
            top_n: Number of top items to keep in daily aggregations.
        """
        self._session_factory = session_factory or async_session_factory
        self._clock = clock or get_clock()
        self._top_n = top_n
        self._hourly_runs = 0
        self._daily_runs = 0

    async def aggregate_hourly(self, hours_back: int = 2) -> int:
        """Aggregate clicks into hourly statistics.

        Args:
            hours_back: Number of hours back to aggregate (for catching up).

        Returns:
            Number of rows upserted.
        """
        start_time_metric = time.perf_counter()

        async with self._session_factory() as session:
            now = self._clock.now()
            start_time = now.replace(minute=0, second=0, microsecond=0) - timedelta(hours=hours_back)

            logger.debug("Running hourly aggregation", start_time=start_time.isoformat())

            hour = time_bucket(session, ClickEvent.timestamp, "hour").label("hour")
            query = (
                select(
                    ClickEvent.product_id,
                    hour,
                    func.count().label("click_count"),
                    func.count(func.distinct(unique_click_key())).label("unique_clicks"),
                    func.avg(ClickEvent.redirect_ms).label("avg_redirect_ms"),
                )
                .where(ClickEvent.timestamp >= start_time)
                .where(ClickEvent.success.is_(True))
                .group_by(ClickEvent.product_id, hour)
            )

            result = await session.execute(query)
            rows = result.all()

            if not rows:
                logger.debug("No clicks to aggregate for hourly stats")
                record_aggregation("hourly", time.perf_counter() - start_time_metric, 0)
                self._hourly_runs += 1
                return 0

            for row in rows:
                stmt = upsert(
                    session,
                    ProductStatsHourly,
                    {
                        "product_id": row.product_id,
                        "hour": as_datetime(row.hour),
                        "click_count": row.click_count,
                        "unique_clicks": row.unique_clicks,
                        "avg_redirect_ms": round(row.avg_redirect_ms or 0),
                    },
                    index_elements=["product_id", "hour"],
                )
                await session.execute(stmt)

            await session.commit()

        duration = time.perf_counter() - start_time_metric
        record_aggregation("hourly", duration, len(rows))
        self._hourly_runs += 1

        logger.info(
            "Hourly aggregation complete",
            rows_upserted=len(rows),
            hours_back=hours_back,
            duration_ms=round(duration * 1000, 2),
        )
        return len(rows)

    async def aggregate_daily(self, days_back: int = 2) -> int:
        """Aggregate clicks into daily statistics with top pages/UTM sources.

        Args:
            days_back: Number of days back to aggregate (for catching up).

        Returns:
            Number of rows upserted.
        """
        start_time_metric = time.perf_counter()

        async with self._session_factory() as session:
            today = self._clock.now().date()
            start_date = today - timedelta(days=days_back)

            logger.debug("Running daily aggregation", start_date=start_date.isoformat())

            products_query = (
                select(func.distinct(ClickEvent.product_id))
                .where(ClickEvent.timestamp >= datetime.combine(start_date, datetime.min.time()))
                .where(ClickEvent.success.is_(True))
            )
            products_result = await session.execute(products_query)
            product_ids = [row[0] for row in products_result.all()]

            if not product_ids:
                logger.debug("No clicks to aggregate for daily stats")
                record_aggregation("daily", time.perf_counter() - start_time_metric, 0)
                self._daily_runs += 1
                return 0

            rows_upserted = 0

            for product_id in product_ids:
                for day_offset in range(days_back + 1):
                    target_date = start_date + timedelta(days=day_offset)
                    if await self._aggregate_daily_for_product(session, product_id, target_date):
                        rows_upserted += 1

            await session.commit()

        duration = time.perf_counter() - start_time_metric
        record_aggregation("daily", duration, rows_upserted)
        self._daily_runs += 1

        logger.info(
            "Daily aggregation complete",
            rows_upserted=rows_upserted,
            days_back=days_back,
            duration_ms=round(duration * 1000, 2),
        )
        return rows_upserted

    async def _aggregate_daily_for_product(
        self,
        session: AsyncSession,
        product_id: int,
        target_date: date,
    ) -> bool:
        """Aggregate daily stats for a single product and date."""
        day_start = datetime.combine(target_date, datetime.min.time())
        day_end = day_start + timedelta(days=1)
        in_day = (
            (ClickEvent.product_id == product_id)
            & (ClickEvent.timestamp >= day_start)
            & (ClickEvent.timestamp < day_end)
            & ClickEvent.success.is_(True)
        )

        stats_query = select(
            func.count().label("click_count"),
            func.count(func.distinct(unique_click_key())).label("unique_clicks"),
            func.avg(ClickEvent.redirect_ms).label("avg_redirect_ms"),
        ).where(in_day)
        stats_result = await session.execute(stats_query)
        stats = stats_result.one_or_none()

        if not stats or stats.click_count == 0:
            return False

        pages_query = (
            select(ClickEvent.page_path, func.count().label("count"))
            .where(in_day)
            .where(ClickEvent.page_path.isnot(None))
            .group_by(ClickEvent.page_path)
            .order_by(func.count().desc())
            .limit(self._top_n)
        )
        pages_result = await session.execute(pages_query)
        top_pages = [
            {"page_path": row.page_path, "count": row.count}
            for row in pages_result.all()
        ]

        sources_query = (
            select(ClickEvent.utm_source, func.count().label("count"))
            .where(in_day)
            .where(ClickEvent.utm_source.isnot(None))
            .group_by(ClickEvent.utm_source)
            .order_by(func.count().desc())
            .limit(self._top_n)
        )
        sources_result = await session.execute(sources_query)
        top_utm_sources = [
            {"utm_source": row.utm_source, "count": row.count}
            for row in sources_result.all()
        ]

        stmt = upsert(
            session,
            ProductStatsDaily,
            {
                "product_id": product_id,
                "date": target_date,
                "click_count": stats.click_count,
                "unique_clicks": stats.unique_clicks,
                "avg_redirect_ms": round(stats.avg_redirect_ms or 0),
                "top_pages": top_pages or None,
                "top_utm_sources": top_utm_sources or None,
            },
            index_elements=["product_id", "date"],
        )
        await session.execute(stmt)
        return True

    @property
    def stats(self) -> dict:
        """Get aggregator statistics."""
        return {
            "hourly_runs": self._hourly_runs,
            "daily_runs": self._daily_runs,
        }


# Global aggregator instance
_aggregator: StatsAggregator | None = None


def get_aggregator() -> StatsAggregator:
    """Get the global aggregator instance."""
    global _aggregator
    if _aggregator is None:
        _aggregator = StatsAggregator()
    return _aggregator
