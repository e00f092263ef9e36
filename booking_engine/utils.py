"""Shared date and time helpers used across the booking engine."""

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Union
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_date(value: Union[str, date]) -> date:
    """Parse a YYYY-MM-DD string (or pass through a date).

    Examples:
        >>> parse_date("2025-02-10")
        datetime.date(2025, 2, 10)
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except (ValueError, AttributeError):
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD") from None


def ensure_aware(value: datetime, tz_name: str = "UTC") -> datetime:
    """Attach the business timezone to a naive datetime; aware values are kept."""
    if value.tzinfo is None:
        return value.replace(tzinfo=ZoneInfo(tz_name))
    return value


def parse_datetime(value: Union[str, datetime], tz_name: str = "UTC") -> datetime:
    """Parse an ISO 8601 timestamp into an aware datetime.

    A trailing ``Z`` is accepted. Naive input is read in ``tz_name``.
    """
    if isinstance(value, datetime):
        return ensure_aware(value, tz_name)
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        raise ValueError(f"Invalid ISO 8601 datetime {value!r}") from None
    return ensure_aware(parsed, tz_name)


def iter_dates(start: date, days: int) -> Iterator[date]:
    """Yield ``days`` consecutive dates beginning at ``start``."""
    for offset in range(max(days, 0)):
        yield start + timedelta(days=offset)


def hours_until(moment: datetime, now: datetime) -> float:
    """Hours from ``now`` until ``moment``; negative when ``moment`` has passed."""
    return (moment - now).total_seconds() / 3600
