"""
Clock abstraction injected into the services.

All timestamps are naive UTC, matching what the database columns store.
"""
from datetime import datetime, timedelta, timezone


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SystemClock:
    """Wall-clock time."""

    def now(self):
        return utcnow()

    def today(self):
        return self.now().date()


class FixedClock(SystemClock):
    """A clock that only moves when told to."""

    def __init__(self, start=None):
        self._now = start or utcnow()

    def now(self):
        return self._now

    def set(self, moment):
        self._now = moment

    def advance(self, **delta):
        self._now = self._now + timedelta(**delta)
        return self._now
