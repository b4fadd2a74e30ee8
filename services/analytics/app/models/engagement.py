"""Page view and site search models."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class PageView(Base):
    """One article or page view reported by the site frontend.

    Like click events, rows are append-only and keyed by an id generated at
    ingestion, so a replay from the retry queue cannot add a second row.
    """

    __tablename__ = "page_views"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment="Event UUID generated at ingestion",
    )
    article_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        index=True,
        comment="Article shown on the page, if any",
    )
    page_path: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(
        String(45),
        nullable=True,
        comment="Client IP (first X-Forwarded-For hop)",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
        comment="When the view was ingested (UTC)",
    )

    def __repr__(self) -> str:
        return f"<PageView {self.id} path={self.page_path}>"


class SearchQuery(Base):
    """One site search with the number of results it returned."""

    __tablename__ = "search_queries"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment="Event UUID generated at ingestion",
    )
    query: Mapped[str] = mapped_column(String(500), nullable=False)
    results_count: Mapped[int] = mapped_column(Integer, nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
        comment="When the search was ingested (UTC)",
    )

    def __repr__(self) -> str:
        return f"<SearchQuery {self.id} results={self.results_count}>"
