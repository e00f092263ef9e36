"""
Booking transaction coordinator.

The only path that creates, reschedules, confirms, or cancels a booking.
Every write re-reads the technician's bookings inside a store transaction
and re-runs the conflict check there, so among concurrent attempts for
overlapping intervals on one technician at most one can commit.

Protocol for create/reschedule:
1. Validate the interval (and the 24h cutoff for reschedule) up front.
2. Open the store's per-technician serializable transaction.
3. Re-fetch the technician's non-cancelled bookings inside it.
4. Run the conflict detector; on conflict roll back and report it.
5. Write and commit. Serialization failures retry the whole sequence
   a bounded number of times, then surface as TRANSIENT_STORE_ERROR.
"""

import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from booking_engine.config import settings
from booking_engine.errors import (
    BookingOutcome,
    DuplicateConfirmationCode,
    ErrorCode,
    InvalidIntervalError,
    SerializationFailure,
)
from booking_engine.logging_context import get_request_logger
from booking_engine.notifications import BookingEvent, NotificationDispatcher
from booking_engine.schemas.booking_schema import Booking, BookingStatus
from booking_engine.scheduling.buffer_policy import BufferPolicy
from booking_engine.scheduling.confirmation import (
    generate_confirmation_code,
    is_valid_code_format,
    verify_confirmation_code,
)
from booking_engine.scheduling.conflict_detector import check_conflict
from booking_engine.scheduling.lifecycle import (
    InvalidStatusTransitionError,
    apply_transition,
    can_transition,
)
from booking_engine.scheduling.retry import retry_transient
from booking_engine.scheduling.slot_generator import BusinessHours
from booking_engine.store.base import BookingStore, StoreTransaction
from booking_engine.utils import hours_until, parse_datetime, utc_now

logger = get_request_logger(__name__)

TRANSIENT_ERRORS = (SerializationFailure, DuplicateConfirmationCode)


class _Rollback(Exception):
    """Aborts the current transaction and carries the outcome to report."""

    def __init__(self, outcome: BookingOutcome) -> None:
        super().__init__(outcome.message)
        self.outcome = outcome


def new_booking_id() -> str:
    return f"BK-{uuid.uuid4().hex[:10].upper()}"


def _append_note(notes: Optional[str], line: str) -> str:
    return f"{notes}\n{line}" if notes else line


class BookingCoordinator:
    """Serializes booking writes per technician against a BookingStore."""

    def __init__(
        self,
        store: BookingStore,
        policy: Optional[BufferPolicy] = None,
        hours: Optional[BusinessHours] = None,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
        code_generator: Optional[Callable[[], str]] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        cutoff_hours: Optional[float] = None,
        max_code_attempts: Optional[int] = None,
        enforce_business_hours: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.policy = policy or BufferPolicy.from_config()
        self.hours = hours or BusinessHours.from_config()
        self.notifier = notifier or NotificationDispatcher()
        self.clock = clock
        self.code_length = settings.policy.confirmation_code_length
        self.code_generator = code_generator or (
            lambda: generate_confirmation_code(self.code_length)
        )
        self.max_attempts = max_attempts or settings.store.max_transaction_attempts
        self.backoff_seconds = (
            settings.store.retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.cutoff_hours = settings.policy.cutoff_hours if cutoff_hours is None else cutoff_hours
        self.max_code_attempts = max_code_attempts or settings.policy.max_code_attempts
        self.enforce_business_hours = enforce_business_hours
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def validate_interval(
        self, start_time: Union[str, datetime], duration_minutes: int
    ) -> datetime:
        """
        Reject intervals that can never be booked, before touching the store.

        Returns:
            ``start_time`` as an aware datetime; naive values and ISO strings
            without an offset are read in the business timezone.

        Raises:
            InvalidIntervalError: Non-positive duration, start in the past,
                or (when enforced) outside business hours.
        """
        if not isinstance(duration_minutes, int) or duration_minutes <= 0:
            raise InvalidIntervalError(
                f"Duration must be a positive number of minutes, got {duration_minutes!r}"
            )
        try:
            start = parse_datetime(start_time, self.hours.timezone)
        except ValueError as exc:
            raise InvalidIntervalError(str(exc)) from None
        if start < self.clock():
            raise InvalidIntervalError(f"Start time {start.isoformat()} is in the past")
        end = start + timedelta(minutes=duration_minutes)
        if self.enforce_business_hours and not self.hours.contains(start, end):
            raise InvalidIntervalError(
                f"{start.isoformat()} to {end.isoformat()} is outside business hours"
            )
        return start

    def check_cutoff(self, booking: Booking) -> Optional[BookingOutcome]:
        """CUTOFF_VIOLATION outcome when the appointment is too close to change."""
        remaining = hours_until(booking.start_time, self.clock())
        if remaining < self.cutoff_hours:
            logger.info(
                "Cutoff violation on %s: %.1f hours remaining", booking.id, remaining
            )
            return BookingOutcome.cutoff(remaining, self.cutoff_hours)
        return None

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _run(self, technician_id: str, body: Callable[[StoreTransaction], BookingOutcome]) -> BookingOutcome:
        """Run ``body`` in a fresh transaction per attempt, with bounded retry."""

        def attempt(number: int) -> BookingOutcome:
            try:
                with self.store.transaction(technician_id) as txn:
                    outcome = body(txn)
            except _Rollback as rollback:
                outcome = rollback.outcome
            outcome.attempts = number
            return outcome

        result = retry_transient(
            attempt,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            retry_on=TRANSIENT_ERRORS,
            sleep=self._sleep,
        )
        if result.exhausted:
            logger.error(
                "Giving up on %s after %d attempts: %s",
                technician_id, result.attempts, result.last_error,
            )
            return BookingOutcome.failure(
                ErrorCode.TRANSIENT_STORE_ERROR,
                "The booking system is busy, please try again.",
                attempts=result.attempts,
            )
        return result.value

    def _unused_code(self, txn: StoreTransaction) -> str:
        for _ in range(self.max_code_attempts):
            code = self.code_generator()
            if not txn.confirmation_code_exists(code):
                return code
        raise _Rollback(BookingOutcome.failure(
            ErrorCode.TRANSIENT_STORE_ERROR,
            f"No unused confirmation code after {self.max_code_attempts} attempts.",
        ))

    def _transition_in(
        self, txn: StoreTransaction, booking_id: str, to_status: BookingStatus, **updates
    ) -> Booking:
        fresh = txn.get(booking_id)
        if fresh is None:
            raise _Rollback(BookingOutcome.failure(
                ErrorCode.NOT_FOUND, f"Booking {booking_id} not found."
            ))
        if to_status == BookingStatus.CANCELLED and fresh.status == BookingStatus.CANCELLED:
            raise _Rollback(BookingOutcome.failure(
                ErrorCode.ALREADY_CANCELLED, f"Booking {booking_id} is already cancelled."
            ))
        try:
            return apply_transition(fresh, to_status, self.clock(), **updates)
        except InvalidStatusTransitionError as exc:
            raise _Rollback(BookingOutcome.failure(ErrorCode.INVALID_STATUS, str(exc)))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def attempt_booking(
        self,
        technician_id: str,
        start_time: Union[str, datetime],
        duration_minutes: int,
        service_type: str,
        customer_id: str,
        notes: Optional[str] = None,
    ) -> BookingOutcome:
        """Create a pending booking if the interval is free, or report why not."""
        try:
            start = self.validate_interval(start_time, duration_minutes)
        except InvalidIntervalError as exc:
            return BookingOutcome.failure(ErrorCode.INVALID_INTERVAL, str(exc))

        def body(txn: StoreTransaction) -> BookingOutcome:
            existing = txn.list_active_bookings(technician_id)
            result = check_conflict(
                technician_id, start, duration_minutes, service_type, existing, self.policy
            )
            if not result.can_book:
                raise _Rollback(BookingOutcome.conflict(result.conflicting_booking, result.reason))
            now = self.clock()
            booking = Booking(
                id=new_booking_id(),
                customer_id=customer_id,
                technician_id=technician_id,
                service_type=service_type,
                start_time=start,
                duration_minutes=duration_minutes,
                status=BookingStatus.PENDING,
                confirmation_code=self._unused_code(txn),
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            txn.insert(booking)
            return BookingOutcome.success(booking, f"Booking {booking.id} created.")

        outcome = self._run(technician_id, body)
        if outcome.ok:
            logger.info(
                "Booking %s created for %s at %s (%s)",
                outcome.booking.id, technician_id, start.isoformat(), service_type,
            )
            self.notifier.dispatch(BookingEvent.CREATED, outcome.booking)
        elif outcome.error == ErrorCode.CONFLICT:
            logger.info("Booking conflict for %s at %s", technician_id, start.isoformat())
        return outcome

    def reschedule(
        self,
        booking_id: str,
        new_start_time: Union[str, datetime],
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> BookingOutcome:
        """Move a booking to a new interval, in place, only if that interval is free."""
        current = self.store.get(booking_id)
        if current is None:
            return BookingOutcome.failure(ErrorCode.NOT_FOUND, f"Booking {booking_id} not found.")
        if not can_transition(current.status, BookingStatus.RESCHEDULED):
            return BookingOutcome.failure(
                ErrorCode.INVALID_STATUS,
                f"Booking {booking_id} is {current.status.value} and cannot be rescheduled.",
            )
        violation = self.check_cutoff(current)
        if violation is not None:
            return violation

        duration = duration_minutes or current.duration_minutes
        try:
            start = self.validate_interval(new_start_time, duration)
        except InvalidIntervalError as exc:
            return BookingOutcome.failure(ErrorCode.INVALID_INTERVAL, str(exc))

        previous_start = current.start_time

        def body(txn: StoreTransaction) -> BookingOutcome:
            fresh = txn.get(booking_id)
            if fresh is None:
                raise _Rollback(BookingOutcome.failure(
                    ErrorCode.NOT_FOUND, f"Booking {booking_id} not found."
                ))
            existing = txn.list_active_bookings(fresh.technician_id)
            result = check_conflict(
                fresh.technician_id, start, duration, fresh.service_type,
                existing, self.policy, exclude_booking_id=booking_id,
            )
            if not result.can_book:
                raise _Rollback(BookingOutcome.conflict(result.conflicting_booking, result.reason))
            note = f"Rescheduled: {reason}" if reason else "Rescheduled by customer"
            updated = self._transition_in(
                txn, booking_id, BookingStatus.RESCHEDULED,
                start_time=start, duration_minutes=duration,
                notes=_append_note(fresh.notes, note),
            )
            txn.update(updated)
            return BookingOutcome.success(updated, f"Booking {booking_id} rescheduled.")

        outcome = self._run(current.technician_id, body)
        if outcome.ok:
            logger.info(
                "Booking %s rescheduled from %s to %s",
                booking_id, previous_start.isoformat(), start.isoformat(),
            )
            self.notifier.dispatch(
                BookingEvent.RESCHEDULED, outcome.booking, previous_start=previous_start
            )
        return outcome

    def cancel(self, booking_id: str, reason: Optional[str] = None) -> BookingOutcome:
        """Mark a booking cancelled; history is kept and it stops blocking slots."""
        current = self.store.get(booking_id)
        if current is None:
            return BookingOutcome.failure(ErrorCode.NOT_FOUND, f"Booking {booking_id} not found.")
        if current.status == BookingStatus.CANCELLED:
            return BookingOutcome.failure(
                ErrorCode.ALREADY_CANCELLED, f"Booking {booking_id} is already cancelled."
            )
        if not can_transition(current.status, BookingStatus.CANCELLED):
            return BookingOutcome.failure(
                ErrorCode.INVALID_STATUS,
                f"Booking {booking_id} is {current.status.value} and cannot be cancelled.",
            )
        violation = self.check_cutoff(current)
        if violation is not None:
            return violation

        def body(txn: StoreTransaction) -> BookingOutcome:
            fresh = txn.get(booking_id)
            note = f"Cancelled: {reason}" if reason else "Cancelled by customer"
            updated = self._transition_in(
                txn, booking_id, BookingStatus.CANCELLED,
                notes=_append_note(fresh.notes if fresh else None, note),
            )
            txn.update(updated)
            return BookingOutcome.success(updated, f"Booking {booking_id} has been cancelled.")

        outcome = self._run(current.technician_id, body)
        if outcome.ok:
            logger.info("Booking cancelled: %s", booking_id)
            self.notifier.dispatch(BookingEvent.CANCELLED, outcome.booking, reason=reason)
        return outcome

    def confirm(self, booking_id: str) -> BookingOutcome:
        """Customer confirmation: pending or rescheduled -> confirmed."""
        current = self.store.get(booking_id)
        if current is None:
            return BookingOutcome.failure(ErrorCode.NOT_FOUND, f"Booking {booking_id} not found.")

        def body(txn: StoreTransaction) -> BookingOutcome:
            updated = self._transition_in(txn, booking_id, BookingStatus.CONFIRMED)
            txn.update(updated)
            return BookingOutcome.success(updated, f"Booking {booking_id} confirmed.")

        outcome = self._run(current.technician_id, body)
        if outcome.ok:
            logger.info("Booking confirmed: %s", booking_id)
            self.notifier.dispatch(BookingEvent.CONFIRMED, outcome.booking)
        return outcome

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.store.get(booking_id)

    def verify_confirmation_code(self, booking_id: str, code: str) -> bool:
        """True only for the exact code stored on that booking."""
        if not code or not is_valid_code_format(code, self.code_length):
            return False
        booking = self.store.get(booking_id)
        if booking is None:
            return False
        return verify_confirmation_code(booking.confirmation_code, code)
