"""Tests for the database helpers that decide where migrations run."""

import pytest

from app.core.config import Settings
from app.core.database import (
    ROLE_ALL,
    ROLE_EVENT_STORE,
    ROLE_RETRY_QUEUE,
    has_separate_queue_database,
    migration_targets,
    runs_migration,
)

EVENTS_URL = "postgresql+asyncpg://app@events/affiliate"
QUEUE_URL = "postgresql+asyncpg://app@queue/affiliate"


@pytest.mark.parametrize("queue_url", ["", EVENTS_URL])
def test_shared_database_gets_every_migration(queue_url):
    settings = Settings(database_url=EVENTS_URL, retry_queue_database_url=queue_url)

    assert not has_separate_queue_database(settings)
    assert migration_targets(settings) == [(EVENTS_URL, ROLE_ALL)]


def test_separate_queue_database_is_migrated_too():
    settings = Settings(database_url=EVENTS_URL, retry_queue_database_url=QUEUE_URL)

    assert has_separate_queue_database(settings)
    assert migration_targets(settings) == [
        (EVENTS_URL, ROLE_EVENT_STORE),
        (QUEUE_URL, ROLE_RETRY_QUEUE),
    ]


@pytest.mark.parametrize("target_role, database_role, expected", [
    (ROLE_EVENT_STORE, ROLE_ALL, True),
    (ROLE_RETRY_QUEUE, ROLE_ALL, True),
    (ROLE_EVENT_STORE, ROLE_EVENT_STORE, True),
    (ROLE_RETRY_QUEUE, ROLE_RETRY_QUEUE, True),
    # The queue table never lands in the event store database and vice versa
    (ROLE_RETRY_QUEUE, ROLE_EVENT_STORE, False),
    (ROLE_EVENT_STORE, ROLE_RETRY_QUEUE, False),
])
def test_runs_migration(target_role, database_role, expected):
    assert runs_migration(target_role, database_role) is expected
