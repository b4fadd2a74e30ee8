"""Small helpers shared by the test modules."""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import ClickEvent, RetryQueueItem


async def count_rows(session_factory: async_sessionmaker[AsyncSession], model: Any) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


async def all_clicks(session_factory: async_sessionmaker[AsyncSession]) -> list[ClickEvent]:
    async with session_factory() as session:
        result = await session.execute(select(ClickEvent).order_by(ClickEvent.timestamp))
        return list(result.scalars().all())


async def get_item(session_factory: async_sessionmaker[AsyncSession], item_id: int) -> RetryQueueItem:
    async with session_factory() as session:
        item = await session.get(RetryQueueItem, item_id)
        assert item is not None
        return item


def click_values(event_id: str, timestamp, **overrides) -> dict[str, Any]:
    """A click_events row with sensible defaults."""
    values = {
        "id": event_id,
        "timestamp": timestamp,
        "link_id": 1,
        "product_id": 1,
        "content_id": None,
        "pick_id": None,
        "variant_id": None,
        "page_path": None,
        "referrer": None,
        "utm_source": None,
        "utm_medium": None,
        "utm_campaign": None,
        "utm_term": None,
        "utm_content": None,
        "device": None,
        "country": None,
        "browser": None,
        "redirect_ms": None,
        "success": True,
    }
    values.update(overrides)
    return values
