"""
Business-day arithmetic.

Shipments, receipts and returns are stored in UTC.  Daily COGS and snapshot
ranges are expressed as calendar days in the business timezone, so every
conversion between the two goes through this module.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

DEFAULT_BUSINESS_TIMEZONE = "Asia/Bangkok"


def business_tz(name: str = DEFAULT_BUSINESS_TIMEZONE) -> ZoneInfo:
    return ZoneInfo(name)


def to_utc(
    value: datetime | date,
    tz_name: str = DEFAULT_BUSINESS_TIMEZONE,
) -> datetime:
    """
    Normalize caller input to an aware UTC datetime.

    A bare ``date`` means the start of that business day.  A naive
    ``datetime`` is read as business-local wall time.
    """
    if not isinstance(value, datetime):
        return day_start(value, tz_name)
    if value.tzinfo is None:
        value = value.replace(tzinfo=business_tz(tz_name))
    return value.astimezone(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Re-attach UTC to a value read back from a backend that drops tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_start(day: date, tz_name: str = DEFAULT_BUSINESS_TIMEZONE) -> datetime:
    """UTC instant at which ``day`` begins in the business timezone."""
    local = datetime.combine(day, time.min, tzinfo=business_tz(tz_name))
    return local.astimezone(timezone.utc)


def business_day_bounds(
    day: date,
    tz_name: str = DEFAULT_BUSINESS_TIMEZONE,
) -> tuple[datetime, datetime]:
    """Half-open UTC range [start, end) covering one business day."""
    return day_start(day, tz_name), day_start(day + timedelta(days=1), tz_name)


def business_date(
    value: datetime,
    tz_name: str = DEFAULT_BUSINESS_TIMEZONE,
) -> date:
    """Calendar day of an instant as seen in the business timezone."""
    aware = as_utc(value)
    return aware.astimezone(business_tz(tz_name)).date()
