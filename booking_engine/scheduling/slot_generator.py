"""
Structural slot grid for a technician's working day.

Slots are derived from business hours alone. Existing bookings and
buffers are applied later by the availability calculator.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from booking_engine.config import BusinessHoursConfig, settings
from booking_engine.schemas.booking_schema import TimeSlot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BusinessHours:
    """A single fixed business calendar."""
    start_hour: int = 9
    end_hour: int = 17
    slot_minutes: int = 60
    working_days: tuple[int, ...] = (0, 1, 2, 3, 4)
    timezone: str = "UTC"
    first_date: Optional[date] = None
    last_date: Optional[date] = None
    closed_dates: frozenset[date] = field(default_factory=frozenset)

    @classmethod
    def from_config(cls, config: Optional[BusinessHoursConfig] = None) -> "BusinessHours":
        config = config or settings.hours
        return cls(
            start_hour=config.start_hour,
            end_hour=config.end_hour,
            slot_minutes=config.slot_minutes,
            working_days=config.working_days,
            timezone=config.timezone,
        )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_working_day(self, day: date) -> bool:
        if self.first_date is not None and day < self.first_date:
            return False
        if self.last_date is not None and day > self.last_date:
            return False
        if day in self.closed_dates:
            return False
        return day.weekday() in self.working_days

    def opening(self, day: date) -> datetime:
        return datetime.combine(day, time(hour=self.start_hour), tzinfo=self.tz)

    def closing(self, day: date) -> datetime:
        # end_hour may be 24, which time() cannot represent
        return datetime.combine(day, time(), tzinfo=self.tz) + timedelta(hours=self.end_hour)

    def contains(self, start: datetime, end: datetime) -> bool:
        """Whether [start, end) lies inside one working day's hours."""
        local_start = start.astimezone(self.tz)
        day = local_start.date()
        if not self.is_working_day(day):
            return False
        return self.opening(day) <= local_start and end.astimezone(self.tz) <= self.closing(day)


def generate_slots(
    day: date, technician_id: str, hours: Optional[BusinessHours] = None
) -> list[TimeSlot]:
    """
    Produce the ordered slot grid for one technician on one date.

    Returns an empty list for non-working days, closed dates, and dates
    outside the configured range.
    """
    hours = hours or BusinessHours.from_config()
    if not hours.is_working_day(day):
        logger.debug("No slots for %s on %s: not a working day", technician_id, day)
        return []

    step = timedelta(minutes=hours.slot_minutes)
    cursor = hours.opening(day)
    closing = hours.closing(day)
    slots: list[TimeSlot] = []
    while cursor + step <= closing:
        slots.append(TimeSlot(
            start=cursor,
            end=cursor + step,
            technician_id=technician_id,
            duration_minutes=hours.slot_minutes,
        ))
        cursor += step
    return slots
