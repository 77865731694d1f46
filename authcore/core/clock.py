# authcore/core/clock.py
"""Time source shared by the store and the services.

Every component takes a ``clock`` callable so that expiry logic can be driven
deterministically in tests.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class FrozenClock:
    """A manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        self.now = self.now + (delta if delta is not None else timedelta(**kwargs))
        return self.now


def ttl_seconds(delta: timedelta) -> int:
    """Convert a remaining lifetime to a store TTL (never below one second)."""
    return max(1, int(delta.total_seconds()))
