"""Time source used for every "now"-relative computation."""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current time as a naive UTC datetime."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock. Timestamps are naive UTC, matching the DateTime columns."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, start: datetime | None = None):
        self._now = start or SystemClock().now()

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now


_clock: Clock = SystemClock()


def get_clock() -> Clock:
    """Get the process-wide clock."""
    return _clock
