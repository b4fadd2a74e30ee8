"""Aggregated statistics SQLAlchemy models."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class ProductStatsHourly(Base):
    """Hourly aggregated click statistics per product.

    Primary key is (product_id, hour) to allow efficient upserts
    and range queries by time.
    """

    __tablename__ = "product_stats_hourly"

    product_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        comment="Affiliate product id",
    )
    hour: Mapped[datetime] = mapped_column(
        DateTime,
        primary_key=True,
        index=True,
        comment="Hour bucket (truncated to hour)",
    )
    click_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Successful clicks in this hour",
    )
    unique_clicks: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Distinct content (or link) sources of the clicks",
    )
    avg_redirect_ms: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Average redirect duration in milliseconds",
    )

    def __repr__(self) -> str:
        return f"<ProductStatsHourly {self.product_id} hour={self.hour} clicks={self.click_count}>"


class ProductStatsDaily(Base):
    """Daily aggregated click statistics per product.

    Includes additional aggregations like top pages and UTM sources.
    """

    __tablename__ = "product_stats_daily"

    product_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        comment="Affiliate product id",
    )
    date: Mapped[date] = mapped_column(
        Date,
        primary_key=True,
        index=True,
        comment="Date of the stats",
    )
    click_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Successful clicks on this date",
    )
    unique_clicks: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Distinct content (or link) sources of the clicks",
    )
    avg_redirect_ms: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Average redirect duration in milliseconds",
    )
    top_pages: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Top pages with counts: [{page_path: str, count: int}, ...]",
    )
    top_utm_sources: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Top UTM sources with counts: [{utm_source: str, count: int}, ...]",
    )

    def __repr__(self) -> str:
        return f"<ProductStatsDaily {self.product_id} date={self.date} clicks={self.click_count}>"
