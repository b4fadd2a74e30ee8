"""ClickEvent SQLAlchemy model for storing raw affiliate click events."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, cast, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.elements import ColumnElement

from app.core.database import Base


class ClickEvent(Base):
    """One recorded affiliate-link click with attribution and context.

    Rows are append-only: written once by ingestion or by a retry replay,
    never updated. The id is generated at ingestion time so that replays
    of the same click collapse onto a single row.
    """

    __tablename__ = "click_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment="Event UUID generated at ingestion",
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
        comment="When the click was ingested (UTC)",
    )
    link_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Affiliate link that was clicked",
    )
    product_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Affiliate product behind the link",
    )
    content_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pick_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    variant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    page_path: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Site path the click came from",
    )
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_term: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_content: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(100), nullable=True)
    redirect_ms: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Redirect duration in milliseconds",
    )
    success: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the redirect succeeded",
    )

    # Composite index for per-product range queries
    __table_args__ = (
        Index("ix_click_events_product_id_timestamp", "product_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<ClickEvent {self.id} link={self.link_id} product={self.product_id}>"


def unique_click_key() -> ColumnElement[str]:
    """Identity used for "unique clicks": the content piece, else the link."""
    return func.coalesce(ClickEvent.content_id, cast(ClickEvent.link_id, String))
