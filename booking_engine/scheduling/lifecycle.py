"""
Booking status lifecycle as an explicit transition table.

Every status change goes through ``apply_transition``; a change that is
not listed in TRANSITIONS is rejected with a clear error naming the
statuses reachable from the current one.

Usage:
    booking = apply_transition(booking, BookingStatus.CONFIRMED, now)
    assert booking.status == BookingStatus.CONFIRMED
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from booking_engine.errors import SchedulingError
from booking_engine.schemas.booking_schema import Booking, BookingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusTransition:
    """A single valid status change."""
    from_status: BookingStatus
    to_status: BookingStatus


class InvalidStatusTransitionError(SchedulingError):
    """Raised when a status change is not valid from the current status."""


TERMINAL_STATUSES = frozenset({
    BookingStatus.CANCELLED,
    BookingStatus.COMPLETED,
    BookingStatus.NO_SHOW,
})

TRANSITIONS: list[StatusTransition] = [
    # --- New booking ---
    StatusTransition(BookingStatus.PENDING, BookingStatus.CONFIRMED),
    StatusTransition(BookingStatus.PENDING, BookingStatus.RESCHEDULED),
    StatusTransition(BookingStatus.PENDING, BookingStatus.CANCELLED),

    # --- Confirmed ---
    StatusTransition(BookingStatus.CONFIRMED, BookingStatus.RESCHEDULED),
    StatusTransition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    StatusTransition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED),
    StatusTransition(BookingStatus.CONFIRMED, BookingStatus.NO_SHOW),

    # --- Rescheduled (may move again) ---
    StatusTransition(BookingStatus.RESCHEDULED, BookingStatus.CONFIRMED),
    StatusTransition(BookingStatus.RESCHEDULED, BookingStatus.RESCHEDULED),
    StatusTransition(BookingStatus.RESCHEDULED, BookingStatus.CANCELLED),
    StatusTransition(BookingStatus.RESCHEDULED, BookingStatus.COMPLETED),
    StatusTransition(BookingStatus.RESCHEDULED, BookingStatus.NO_SHOW),
]


def allowed_next(status: BookingStatus) -> list[BookingStatus]:
    """Statuses reachable in one step from ``status``."""
    return [t.to_status for t in TRANSITIONS if t.from_status == status]


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    return to_status in allowed_next(from_status)


def apply_transition(
    booking: Booking, to_status: BookingStatus, now: datetime, **updates
) -> Booking:
    """
    Return a copy of ``booking`` moved to ``to_status``.

    Args:
        booking: Current booking row.
        to_status: Target status.
        now: Timestamp recorded as ``updated_at``.
        **updates: Extra fields to change alongside the status.

    Raises:
        InvalidStatusTransitionError: If the change is not in TRANSITIONS.
    """
    if not can_transition(booking.status, to_status):
        valid = [s.value for s in allowed_next(booking.status)]
        raise InvalidStatusTransitionError(
            f"Booking {booking.id} cannot move from '{booking.status.value}' "
            f"to '{to_status.value}'. Valid next statuses: {valid}"
        )
    logger.debug(
        "Booking %s status: %s -> %s", booking.id, booking.status.value, to_status.value
    )
    return booking.model_copy(update={"status": to_status, "updated_at": now, **updates})
