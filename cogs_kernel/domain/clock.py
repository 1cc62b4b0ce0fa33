"""
Injectable time source.

Services stamp ``created_at`` / ``updated_at`` / ``reversed_at`` and compute
"today" for snapshot-rebuild ranges through a ``Clock`` so tests can pin the
instant.  Nothing below the facade calls ``datetime.now()`` directly.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

from cogs_kernel.domain.business_time import DEFAULT_BUSINESS_TIMEZONE, business_date


class Clock(ABC):

    @abstractmethod
    def now_utc(self) -> datetime:
        """Current instant, timezone-aware UTC."""

    def business_today(self, tz_name: str = DEFAULT_BUSINESS_TIMEZONE) -> date:
        return business_date(self.now_utc(), tz_name)


class SystemClock(Clock):

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock for tests; moves only when told to."""

    def __init__(self, fixed_time: datetime | None = None):
        self._now = (fixed_time or datetime(2024, 1, 1, 12, tzinfo=timezone.utc)).astimezone(
            timezone.utc
        )

    def now_utc(self) -> datetime:
        return self._now

    def set_time(self, value: datetime) -> None:
        self._now = value.astimezone(timezone.utc)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move forward by ``delta`` or by ``timedelta(**kwargs)``; returns the new instant."""
        self._now += delta if delta is not None else timedelta(**kwargs)
        return self._now
