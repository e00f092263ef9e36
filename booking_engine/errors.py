"""
Error taxonomy and result variants for booking operations.

Conflicts, cutoff violations, and exhausted retries are expected
outcomes and come back as BookingOutcome values. Exceptions are kept
for invalid input and for infrastructure signals raised by stores.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from booking_engine.schemas.booking_schema import Booking


class ErrorCode(str, Enum):
    CONFLICT = "CONFLICT"
    CUTOFF_VIOLATION = "CUTOFF_VIOLATION"
    TRANSIENT_STORE_ERROR = "TRANSIENT_STORE_ERROR"
    INVALID_INTERVAL = "INVALID_INTERVAL"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    INVALID_STATUS = "INVALID_STATUS"


class SchedulingError(Exception):
    """Base class for booking engine exceptions."""


class InvalidIntervalError(SchedulingError, ValueError):
    """Zero/negative duration or a start time in the past."""


class BookingNotFoundError(SchedulingError, LookupError):
    """Raised by stores when a booking ID does not exist."""

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class SerializationFailure(SchedulingError):
    """The store aborted a transaction because of a concurrent conflicting commit."""


class DuplicateConfirmationCode(SchedulingError):
    """Unique constraint on confirmation_code rejected a write."""


@dataclass
class BookingOutcome:
    """Result of a coordinator operation: success or one named error variant."""
    ok: bool
    booking: Optional[Booking] = None
    error: Optional[ErrorCode] = None
    message: str = ""
    conflicting_booking: Optional[Booking] = None
    hours_remaining: Optional[float] = None
    attempts: int = 1

    @classmethod
    def success(cls, booking: Booking, message: str = "", attempts: int = 1) -> "BookingOutcome":
        return cls(ok=True, booking=booking, message=message, attempts=attempts)

    @classmethod
    def failure(cls, error: ErrorCode, message: str, **kwargs: Any) -> "BookingOutcome":
        return cls(ok=False, error=error, message=message, **kwargs)

    @classmethod
    def conflict(cls, conflicting: Optional[Booking], message: str) -> "BookingOutcome":
        return cls.failure(ErrorCode.CONFLICT, message, conflicting_booking=conflicting)

    @classmethod
    def cutoff(cls, hours_remaining: float, cutoff_hours: float) -> "BookingOutcome":
        return cls.failure(
            ErrorCode.CUTOFF_VIOLATION,
            f"Changes must be made at least {cutoff_hours:g} hours before the "
            f"appointment; {hours_remaining:.1f} hours remain.",
            hours_remaining=hours_remaining,
        )

    def to_api(self) -> dict[str, Any]:
        """JSON-ready error payload for callers."""
        if self.ok:
            return {"success": True, "message": self.message}
        payload: dict[str, Any] = {
            "error": self.error.value if self.error else None,
            "message": self.message,
        }
        if self.conflicting_booking is not None:
            payload["conflicting_booking"] = self.conflicting_booking.to_api()
        if self.hours_remaining is not None:
            payload["hours_remaining"] = round(self.hours_remaining, 2)
        return payload
