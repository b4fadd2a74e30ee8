"""Durable retry queue for events whose first write failed."""

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, get_clock
from app.core.config import Settings, get_settings
from app.core.database import queue_session_factory
from app.core.observability import record_retry_enqueued, record_retry_purged
from app.models.retry_queue import RetryQueueItem
from app.schemas.retry_queue import RetryQueueStatus

logger = structlog.get_logger()


class RetryQueue:
    """Queue operations over the analytics_retry_queue table.

    An item is eligible for replay when it is unprocessed, under its
    retry cap and due (next_retry_at <= now). Processed items are
    terminal. Items that hit their cap stay in the table as dead items
    until an operator (or the optional dead-item retention) removes them.

    Usage:
        queue = RetryQueue()
        await queue.enqueue("click_event", payload)
        for item in await queue.claim_due():
            ...
            await queue.mark_processed(item.id)  # or record_failure(item.id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        self._session_factory = session_factory or queue_session_factory
        self._clock = clock or get_clock()
        self._settings = settings or get_settings()

    @property
    def clock(self) -> Clock:
        return self._clock

    def backoff_delay(self, retry_count: int) -> timedelta:
        """Delay before the next attempt once ``retry_count`` attempts failed.

        The exponent is the already incremented count: 10, 20, 40 minutes
        after the first, second and third failure with the 5 minute base.
        """
        return timedelta(seconds=self._settings.retry_backoff_base_seconds * 2**retry_count)

    async def enqueue(
        self,
        event_type: str,
        event_data: dict[str, Any],
        delay: timedelta | None = None,
    ) -> int:
        """Add an item, first attempt due after ``delay`` (default 1 minute)."""
        now = self._clock.now()
        if delay is None:
            delay = timedelta(seconds=self._settings.retry_initial_delay_seconds)

        item = RetryQueueItem(
            event_type=event_type,
            event_data=event_data,
            retry_count=0,
            max_retries=self._settings.retry_max_retries,
            next_retry_at=now + delay,
            created_at=now,
        )
        async with self._session_factory() as session:
            try:
                session.add(item)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        record_retry_enqueued(event_type)
        logger.info(
            "Event queued for retry",
            item_id=item.id,
            event_type=event_type,
            next_retry_at=item.next_retry_at.isoformat(),
        )
        return item.id

    async def claim_due(self, limit: int | None = None) -> list[RetryQueueItem]:
        """Select due items oldest first and lease them to the caller.

        Selected rows are locked (FOR UPDATE SKIP LOCKED where supported)
        and their next_retry_at is pushed out by the claim lease before
        commit, so an overlapping run does not pick them up. A runner that
        dies mid-batch simply lets the lease expire.
        """
        now = self._clock.now()
        limit = limit or self._settings.retry_batch_size
        lease_until = now + timedelta(seconds=self._settings.retry_claim_seconds)

        async with self._session_factory() as session:
            try:
                query = (
                    select(RetryQueueItem)
                    .where(RetryQueueItem.is_pending)
                    .where(RetryQueueItem.next_retry_at <= now)
                    .order_by(RetryQueueItem.created_at.asc(), RetryQueueItem.id.asc())
                    .limit(limit)
                    .with_for_update(skip_locked=True)
                )
                result = await session.execute(query)
                items = list(result.scalars().all())

                if items:
                    await session.execute(
                        update(RetryQueueItem)
                        .where(RetryQueueItem.id.in_([item.id for item in items]))
                        .values(next_retry_at=lease_until)
                    )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        return items

    async def mark_processed(self, item_id: int) -> bool:
        """Mark an item replayed.

        Returns:
            False if the item was already processed by another run.
        """
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    update(RetryQueueItem)
                    .where(RetryQueueItem.id == item_id)
                    .where(RetryQueueItem.processed_at.is_(None))
                    .values(processed_at=self._clock.now())
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        if result.rowcount != 1:
            logger.warning("Retry item already processed by another run", item_id=item_id)
            return False
        return True

    async def record_failure(self, item_id: int) -> RetryQueueItem | None:
        """Count a failed attempt and schedule the next one with backoff."""
        async with self._session_factory() as session:
            try:
                item = await session.get(RetryQueueItem, item_id, with_for_update=True)
                if item is None:
                    await session.rollback()
                    return None

                item.retry_count += 1
                item.next_retry_at = self._clock.now() + self.backoff_delay(item.retry_count)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        if item.is_dead:
            logger.error(
                "Retry item exhausted its retries",
                item_id=item.id,
                event_type=item.event_type,
                retry_count=item.retry_count,
            )
        return item

    async def purge_processed(self, older_than_days: int | None = None) -> int:
        """Delete processed items whose processed_at is older than the window."""
        days = self._settings.retry_processed_retention_days if older_than_days is None else older_than_days
        cutoff = self._clock.now() - timedelta(days=days)

        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    delete(RetryQueueItem)
                    .where(RetryQueueItem.processed_at.isnot(None))
                    .where(RetryQueueItem.processed_at < cutoff)
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        record_retry_purged("processed", result.rowcount)
        if result.rowcount > 0:
            logger.info("Cleaned up old processed retry items", count=result.rowcount)
        return result.rowcount

    async def purge_dead(self, older_than_days: int) -> int:
        """Delete dead items created more than ``older_than_days`` ago."""
        cutoff = self._clock.now() - timedelta(days=older_than_days)

        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    delete(RetryQueueItem)
                    .where(RetryQueueItem.is_dead)
                    .where(RetryQueueItem.created_at < cutoff)
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        record_retry_purged("dead", result.rowcount)
        if result.rowcount > 0:
            logger.warning("Deleted dead retry items past retention", count=result.rowcount)
        return result.rowcount

    async def status(self) -> RetryQueueStatus:
        """Count items per state in a single pass over the table."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    func.count().filter(RetryQueueItem.is_pending).label("pending"),
                    func.count().filter(RetryQueueItem.is_processed).label("processed"),
                    func.count().filter(RetryQueueItem.is_dead).label("failed"),
                ).select_from(RetryQueueItem)
            )
            row = result.one()

        return RetryQueueStatus(
            pending_items=row.pending or 0,
            processed_items=row.processed or 0,
            failed_items=row.failed or 0,
        )

    async def list_dead(self, limit: int = 50) -> list[RetryQueueItem]:
        """Dead items, oldest first, for operator inspection."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(RetryQueueItem)
                .where(RetryQueueItem.is_dead)
                .order_by(RetryQueueItem.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())


# Global queue instance
_retry_queue: RetryQueue | None = None


def get_retry_queue() -> RetryQueue:
    """Get the global retry queue instance."""
    global _retry_queue
    if _retry_queue is None:
        _retry_queue = RetryQueue()
    return _retry_queue
