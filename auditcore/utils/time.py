"""Time utilities."""
from datetime import UTC, date, datetime, time, timedelta


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def utc_today() -> date:
    return utcnow().date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` UTC datetimes covering ``day``."""

    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC; naive datetimes are taken to be UTC already."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


__all__ = ["utcnow", "utc_today", "day_bounds", "as_utc"]
