"""Retry queue model for tracked events whose first write failed."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, and_, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

EVENT_TYPE_CLICK = "click_event"
EVENT_TYPE_PAGE_VIEW = "page_view"
EVENT_TYPE_SEARCH = "search_query"


class RetryQueueItem(Base):
    """A durable record of a failed ingestion attempt awaiting replay.

    State is derived from three columns:
    - pending: not processed and still under its retry cap
    - processed: processed_at is set (terminal)
    - dead: not processed and retry_count has reached max_retries
    """

    __tablename__ = "analytics_retry_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Payload kind, e.g. click_event",
    )
    event_data: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="Attempted event fields plus ingestion context",
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    next_retry_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_analytics_retry_queue_due", "processed_at", "next_retry_at"),
    )

    @hybrid_property
    def is_pending(self) -> bool:
        return self.processed_at is None and self.retry_count < self.max_retries

    @is_pending.inplace.expression
    @classmethod
    def _is_pending_expression(cls):
        return and_(cls.processed_at.is_(None), cls.retry_count < cls.max_retries)

    @hybrid_property
    def is_processed(self) -> bool:
        return self.processed_at is not None

    @is_processed.inplace.expression
    @classmethod
    def _is_processed_expression(cls):
        return cls.processed_at.isnot(None)

    @hybrid_property
    def is_dead(self) -> bool:
        return self.processed_at is None and self.retry_count >= self.max_retries

    @is_dead.inplace.expression
    @classmethod
    def _is_dead_expression(cls):
        return and_(cls.processed_at.is_(None), cls.retry_count >= cls.max_retries)

    def __repr__(self) -> str:
        return (
            f"<RetryQueueItem {self.id} type={self.event_type} "
            f"retries={self.retry_count}/{self.max_retries}>"
        )
