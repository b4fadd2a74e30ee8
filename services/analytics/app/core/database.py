"""Database configuration with SQLAlchemy 2.0 async support for analytics schema."""

from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Annotated, Any, Literal

from fastapi import Depends
from sqlalchemy import MetaData, func, literal_column
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql.elements import ColumnElement

from app.core.config import Settings, get_settings

settings = get_settings()

Granularity = Literal["hour", "day", "week"]

# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    PostgreSQL gets a connection pool. SQLite has no schemas, so the
    analytics schema is translated away for it.
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            execution_options={"schema_translate_map": {settings.db_schema: None}},
        )

    return create_async_engine(
        database_url,
        echo=echo,  # Log SQL statements in debug mode
        pool_size=5,  # Number of connections to keep in the pool
        max_overflow=10,  # Additional connections beyond pool_size
        pool_timeout=30,  # Seconds to wait for a connection
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,  # Verify connections before use
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the options every store in this service uses."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Alembic runs each migration only on the databases whose role it targets.
# A single shared database plays every role.
ROLE_ALL = "all"
ROLE_EVENT_STORE = "event_store"
ROLE_RETRY_QUEUE = "retry_queue"


def has_separate_queue_database(config: Settings) -> bool:
    return bool(config.retry_queue_database_url) and config.retry_queue_database_url != config.database_url


def migration_targets(config: Settings) -> list[tuple[str, str]]:
    """(database URL, role) pairs to upgrade, event store first."""
    if has_separate_queue_database(config):
        return [
            (config.database_url, ROLE_EVENT_STORE),
            (config.retry_queue_database_url, ROLE_RETRY_QUEUE),
        ]
    return [(config.database_url, ROLE_ALL)]


def runs_migration(target_role: str, database_role: str) -> bool:
    """Whether a migration for ``target_role`` applies to a database playing ``database_role``."""
    return database_role in (ROLE_ALL, target_role)


# Event store engine
engine = build_engine(settings.database_url, echo=settings.debug)
async_session_factory = build_session_factory(engine)

# The retry queue may live in an independent database so that it keeps
# accepting work while the event store is unreachable.
if has_separate_queue_database(settings):
    queue_engine = build_engine(settings.retry_queue_database_url, echo=settings.debug)
else:
    queue_engine = engine
queue_session_factory = build_session_factory(queue_engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models in analytics schema."""

    metadata = MetaData(naming_convention=convention, schema=settings.db_schema)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides an async database session.

    Usage:
        @router.get("/items")
        async def get_items(session: AsyncSession = Depends(get_async_session)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Type alias for dependency injection
AsyncSessionDep = Annotated[AsyncSession, Depends(get_async_session)]


def dialect_name(session: AsyncSession) -> str:
    """Name of the backend the session is bound to ("postgresql", "sqlite")."""
    return session.get_bind().dialect.name


def _dialect_insert(name: str) -> Any:
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Unsupported database backend: {name}")


def insert_ignore(
    session: AsyncSession,
    model: type[DeclarativeBase],
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """INSERT that silently skips rows conflicting on ``index_elements``."""
    stmt = _dialect_insert(dialect_name(session))(model).values(**values)
    return stmt.on_conflict_do_nothing(index_elements=index_elements)


def upsert(
    session: AsyncSession,
    model: type[DeclarativeBase],
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """INSERT ... ON CONFLICT DO UPDATE of every non-key column."""
    stmt = _dialect_insert(dialect_name(session))(model).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={
            key: getattr(stmt.excluded, key)
            for key in values
            if key not in index_elements
        },
    )


def time_bucket(
    session: AsyncSession,
    column: ColumnElement[datetime],
    granularity: Granularity,
) -> ColumnElement[Any]:
    """Truncate a timestamp column to the start of its hour, day or ISO week."""
    if dialect_name(session) == "postgresql":
        return func.date_trunc(literal_column(f"'{granularity}'"), column)
    if granularity == "hour":
        return func.strftime("%Y-%m-%d %H:00:00", column)
    if granularity == "day":
        return func.strftime("%Y-%m-%d 00:00:00", column)
    # Monday of the week: jump forward to Sunday, then back six days
    return func.strftime("%Y-%m-%d 00:00:00", column, "weekday 0", "-6 days")


def as_datetime(value: datetime | str) -> datetime:
    """Normalize a bucket value; SQLite hands back strings."""
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
    if queue_engine is not engine:
        await queue_engine.dispose()
