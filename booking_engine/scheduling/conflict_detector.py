"""
Overlap detection between a candidate interval and a technician's bookings.

Both sides are widened by their own service buffer before the half-open
overlap test, so the buffered intervals of all active bookings stay
pairwise disjoint whatever order they were inserted in.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from booking_engine.schemas.booking_schema import Booking, ConflictCheckResult
from booking_engine.scheduling.buffer_policy import BufferPolicy

logger = logging.getLogger(__name__)


def intervals_overlap(
    start1: datetime, end1: datetime, start2: datetime, end2: datetime
) -> bool:
    """Half-open overlap test: touching intervals do not overlap."""
    return start1 < end2 and start2 < end1


def buffered_interval(booking: Booking, policy: BufferPolicy) -> tuple[datetime, datetime]:
    """A booking's interval widened by its own service buffer."""
    return policy.expand(booking.start_time, booking.end_time, booking.service_type)


def active_bookings_for(
    technician_id: str,
    bookings: Iterable[Booking],
    exclude_booking_id: Optional[str] = None,
) -> list[Booking]:
    """Non-cancelled bookings of one technician, earliest first."""
    return sorted(
        (
            b for b in bookings
            if b.technician_id == technician_id
            and b.is_active
            and b.id != exclude_booking_id
        ),
        key=lambda b: b.start_time,
    )


def check_conflict(
    technician_id: str,
    start: datetime,
    duration_minutes: int,
    service_type: str,
    existing: Iterable[Booking],
    policy: BufferPolicy,
    exclude_booking_id: Optional[str] = None,
) -> ConflictCheckResult:
    """
    Decide whether [start, start + duration) is free for the technician.

    Args:
        technician_id: Technician the candidate would be assigned to.
        start: Candidate start time (timezone-aware).
        duration_minutes: Candidate length.
        service_type: Candidate service, used for its own buffer.
        existing: Bookings to check against; cancelled, other technicians'
            and ``exclude_booking_id`` entries are ignored.
        policy: Buffer table.
        exclude_booking_id: Booking being rescheduled, so it does not
            collide with itself.

    Returns:
        ConflictCheckResult with the earliest colliding booking, if any.
    """
    end = start + timedelta(minutes=duration_minutes)
    cand_start, cand_end = policy.expand(start, end, service_type)

    for booking in active_bookings_for(technician_id, existing, exclude_booking_id):
        other_start, other_end = buffered_interval(booking, policy)
        if intervals_overlap(cand_start, cand_end, other_start, other_end):
            logger.debug(
                "Candidate %s-%s for %s collides with booking %s",
                start.isoformat(), end.isoformat(), technician_id, booking.id,
            )
            return ConflictCheckResult(
                can_book=False,
                conflicting_booking=booking,
                reason=(
                    f"Overlaps {booking.service_type} booking {booking.id} "
                    f"at {booking.start_time.isoformat()} including buffer time."
                ),
            )

    return ConflictCheckResult(can_book=True)
