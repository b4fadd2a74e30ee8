"""Shared test fixtures: one in-memory SQLite database per test."""

import os

# Settings are cached on first import, so configure them before any app import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.clock import FrozenClock, get_clock  # noqa: E402
from app.core.config import Settings, get_settings  # noqa: E402
from app.core.database import build_session_factory, get_async_session  # noqa: E402
from app.models import Base  # noqa: E402
from app.services.engagement import EngagementTracker, get_engagement_tracker  # noqa: E402
from app.services.event_store import ClickEventStore, PageViewStore, SearchQueryStore  # noqa: E402
from app.services.ingestion import ClickIngestionService, get_ingestion_service  # noqa: E402
from app.services.retry_processor import RetryProcessor, get_retry_processor  # noqa: E402
from app.services.retry_queue import RetryQueue, get_retry_queue  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, 0)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database shared by every connection of the test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        execution_options={"schema_translate_map": {get_settings().db_schema: None}},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def settings():
    return Settings(database_url="sqlite+aiosqlite://", scheduler_enabled=False)


@pytest.fixture
def event_store(session_factory):
    return ClickEventStore(session_factory)


@pytest.fixture
def retry_queue(session_factory, clock, settings):
    return RetryQueue(session_factory, clock=clock, settings=settings)


@pytest.fixture
def page_view_store(session_factory):
    return PageViewStore(session_factory)


@pytest.fixture
def search_store(session_factory):
    return SearchQueryStore(session_factory)


@pytest.fixture
def ingestion_service(event_store, retry_queue, clock, settings):
    return ClickIngestionService(event_store, retry_queue, clock=clock, settings=settings)


@pytest.fixture
def engagement_tracker(page_view_store, search_store, retry_queue, clock, settings):
    return EngagementTracker(page_view_store, search_store, retry_queue, clock=clock, settings=settings)


@pytest.fixture
def retry_processor(retry_queue, event_store, page_view_store, search_store, settings):
    return RetryProcessor(
        retry_queue,
        event_store,
        settings=settings,
        page_view_store=page_view_store,
        search_store=search_store,
    )


@pytest_asyncio.fixture
async def client(
    session_factory, clock, ingestion_service, engagement_tracker, retry_processor, retry_queue
):
    """HTTP client wired to the test database and frozen clock."""
    from app.main import app

    async def override_get_session():
        async with session_factory() as db_session:
            yield db_session

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_ingestion_service] = lambda: ingestion_service
    app.dependency_overrides[get_engagement_tracker] = lambda: engagement_tracker
    app.dependency_overrides[get_retry_processor] = lambda: retry_processor
    app.dependency_overrides[get_retry_queue] = lambda: retry_queue

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

