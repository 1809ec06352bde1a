from datetime import datetime, timedelta


class SystemClock:
    """Wall clock in facility local time."""

    def now(self) -> datetime:
        return datetime.now()


class FixedClock:
    """Clock that only moves when told to. Used by tests and replays."""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


def to_local_naive(value: datetime) -> datetime:
    """Convert an offset-aware datetime to naive facility local time; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
