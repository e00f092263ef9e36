"""
Availability calculation on top of the slot grid.

Composes the slot generator, buffer policy, and conflict detector into
the set of slots that can actually be offered to a customer, plus a
lazy "next open slot" search over a date range.

Usage:
    calc = AvailabilityCalculator(store)
    slots = calc.get_availability("plumbing", date(2025, 2, 10), "tech_1")
    nxt = calc.find_next_available("plumbing", DateRange.of(date(2025, 2, 10), 7), "tech_1")
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Iterator, Optional, Union

from booking_engine.schemas.booking_schema import Booking, TimeSlot
from booking_engine.scheduling.buffer_policy import BufferPolicy
from booking_engine.scheduling.conflict_detector import check_conflict
from booking_engine.scheduling.slot_generator import BusinessHours, generate_slots
from booking_engine.store.base import BookingStore
from booking_engine.utils import iter_dates, parse_date, utc_now

logger = logging.getLogger(__name__)

# Buffers never reach further than this past a booking's own interval
LOOKUP_MARGIN = timedelta(days=1)


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar dates. Iterating it always starts over."""
    start: date
    end: date

    @classmethod
    def of(cls, start: date, days: int) -> "DateRange":
        if days < 1:
            raise ValueError(f"days must be >= 1, got {days}")
        return cls(start=start, end=start + timedelta(days=days - 1))

    def __iter__(self) -> Iterator[date]:
        return iter_dates(self.start, (self.end - self.start).days + 1)

    def __len__(self) -> int:
        return max((self.end - self.start).days + 1, 0)


def calculate_available(
    slots: Iterable[TimeSlot],
    existing_bookings: Iterable[Booking],
    service_type: str,
    policy: BufferPolicy,
    hours: Optional[BusinessHours] = None,
    duration_minutes: Optional[int] = None,
) -> list[TimeSlot]:
    """
    Keep the slots a booking of ``service_type`` could occupy.

    Each slot start is treated as a candidate of the service's duration
    (the slot length unless ``duration_minutes`` is given). When ``hours``
    is supplied, candidates running past closing time are dropped.
    """
    existing = list(existing_bookings)
    available: list[TimeSlot] = []
    for slot in slots:
        duration = duration_minutes or slot.duration_minutes
        end = slot.start + timedelta(minutes=duration)
        if hours is not None and not hours.contains(slot.start, end):
            continue
        result = check_conflict(
            slot.technician_id, slot.start, duration, service_type, existing, policy
        )
        if not result.can_book:
            continue
        if duration == slot.duration_minutes:
            available.append(slot)
        else:
            available.append(TimeSlot(
                start=slot.start, end=end,
                technician_id=slot.technician_id, duration_minutes=duration,
            ))
    return available


def iter_available(
    date_range: Iterable[date],
    technician_id: str,
    existing_bookings: Iterable[Booking],
    service_type: str,
    policy: BufferPolicy,
    hours: BusinessHours,
    duration_minutes: Optional[int] = None,
) -> Iterator[TimeSlot]:
    """Lazily yield open slots, date by date, in chronological order."""
    existing = list(existing_bookings)
    for day in date_range:
        slots = generate_slots(day, technician_id, hours)
        if not slots:
            continue
        yield from calculate_available(
            slots, existing, service_type, policy, hours, duration_minutes
        )


def find_next_available(
    date_range: Iterable[date],
    technician_id: str,
    existing_bookings: Iterable[Booking],
    service_type: str,
    policy: BufferPolicy,
    hours: BusinessHours,
    duration_minutes: Optional[int] = None,
    after: Optional[datetime] = None,
) -> Optional[TimeSlot]:
    """First open slot in the range (optionally starting at or after ``after``)."""
    for slot in iter_available(
        date_range, technician_id, existing_bookings, service_type,
        policy, hours, duration_minutes,
    ):
        if after is None or slot.start >= after:
            return slot
    return None


class AvailabilityCalculator:
    """Read-only availability queries against a booking store.

    Reads are plain snapshots and take no locks; the coordinator re-checks
    every write inside its own transaction. Slots that start before
    ``clock()`` are never offered.
    """

    def __init__(
        self,
        store: BookingStore,
        hours: Optional[BusinessHours] = None,
        policy: Optional[BufferPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.hours = hours or BusinessHours.from_config()
        self.policy = policy or BufferPolicy.from_config()
        self.clock = clock

    def _bookings_near(self, technician_id: str, first: date, last: date) -> list[Booking]:
        # Filtered on end time so bookings longer than a day still count
        window_start = self.hours.opening(first) - LOOKUP_MARGIN
        window_end = self.hours.closing(last) + LOOKUP_MARGIN
        return [
            b for b in self.store.list_bookings(technician_id, end=window_end)
            if b.end_time > window_start
        ]

    def _upcoming(self, slots: list[TimeSlot]) -> list[TimeSlot]:
        now = self.clock()
        return [s for s in slots if s.start >= now]

    def get_availability(
        self,
        service_type: str,
        day: Union[str, date],
        technician_id: str,
        duration_minutes: Optional[int] = None,
    ) -> list[TimeSlot]:
        """Open slots for one technician on one date (a date or YYYY-MM-DD)."""
        day = parse_date(day)
        slots = generate_slots(day, technician_id, self.hours)
        if not slots:
            return []
        existing = self._bookings_near(technician_id, day, day)
        available = self._upcoming(calculate_available(
            slots, existing, service_type, self.policy, self.hours, duration_minutes
        ))
        logger.debug(
            "%d/%d slots open for %s (%s) on %s",
            len(available), len(slots), technician_id, service_type, day,
        )
        return available

    def availability_for_range(
        self,
        service_type: str,
        date_range: DateRange,
        technician_id: str,
        duration_minutes: Optional[int] = None,
    ) -> list[tuple[date, list[TimeSlot]]]:
        """One (date, open slots) entry per working day; other days are skipped."""
        existing = self._bookings_near(technician_id, date_range.start, date_range.end)
        results: list[tuple[date, list[TimeSlot]]] = []
        for day in date_range:
            slots = generate_slots(day, technician_id, self.hours)
            if not slots:
                continue
            results.append((day, self._upcoming(calculate_available(
                slots, existing, service_type, self.policy, self.hours, duration_minutes
            ))))
        return results

    def find_next_available(
        self,
        service_type: str,
        date_range: DateRange,
        technician_id: str,
        duration_minutes: Optional[int] = None,
        after: Optional[datetime] = None,
    ) -> Optional[TimeSlot]:
        """Earliest open slot within the range that has not started yet."""
        now = self.clock()
        after = now if after is None else max(after, now)
        existing = self._bookings_near(technician_id, date_range.start, date_range.end)
        return find_next_available(
            date_range, technician_id, existing, service_type,
            self.policy, self.hours, duration_minutes, after,
        )
