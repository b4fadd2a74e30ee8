"""Event stores: append-only writes of tracked events."""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import Base, async_session_factory, insert_ignore
from app.models.click import ClickEvent
from app.models.engagement import PageView, SearchQuery

logger = structlog.get_logger()


class EventStore:
    """Writes rows of one event table keyed by an ingestion-time id.

    Every call opens its own session so a failure never leaves a
    half-used session behind for the next caller.
    """

    model: type[Base]

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or async_session_factory

    async def insert(self, values: dict[str, Any]) -> None:
        """Insert an event, raising on any database error."""
        async with self._session_factory() as session:
            try:
                session.add(self.model(**values))
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def insert_ignore(self, values: dict[str, Any]) -> bool:
        """Insert an event unless one with the same id already exists.

        Returns:
            True if a row was created, False if the id was already stored.
        """
        async with self._session_factory() as session:
            try:
                stmt = insert_ignore(session, self.model, values, index_elements=["id"])
                result = await session.execute(stmt)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        created = result.rowcount == 1
        if not created:
            logger.info(
                "Event already stored, skipping insert",
                table=self.model.__tablename__,
                event_id=values["id"],
            )
        return created


class ClickEventStore(EventStore):
    """Writes click events to the click_events table."""

    model = ClickEvent


class PageViewStore(EventStore):
    model = PageView


class SearchQueryStore(EventStore):
    model = SearchQuery
