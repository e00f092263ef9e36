"""
Booking creation, rescheduling, cancellation, and lookup for callers.

Thin adapters over the shared BookingCoordinator: validate the request,
call the coordinator, and shape the outcome into the response contract.
"""

import logging
from datetime import datetime
from typing import Optional, Union

from pydantic import ValidationError

from booking_engine.errors import BookingOutcome
from booking_engine.logging_context import new_request_id
from booking_engine.schemas.api_schema import (
    BookingCreateRequest,
    CancelRequest,
    RescheduleRequest,
)
from booking_engine.tools.availability import _validation_error
from booking_engine.tools.engine import get_coordinator
from booking_engine.tools.services import default_duration, match_service

logger = logging.getLogger(__name__)


def create_booking(
    technician_id: str,
    service_type: str,
    start_time: Union[str, datetime],
    duration_minutes: Optional[int] = None,
    customer_ref: str = "",
    notes: Optional[str] = None,
) -> dict:
    """Create a pending booking.

    Returns ``{booking_id, confirmation_code, status: "pending"}`` or an
    error payload such as ``{error: "CONFLICT", conflicting_booking}``.
    """
    new_request_id()
    try:
        request = BookingCreateRequest(
            technician_id=technician_id,
            service_type=service_type,
            start_time=start_time,
            duration_minutes=duration_minutes,
            customer_ref=customer_ref,
            notes=notes,
        )
    except ValidationError as exc:
        return _validation_error(exc)

    service = match_service(request.service_type) or request.service_type
    duration = request.duration_minutes
    if duration is None:
        duration = default_duration(service)
    outcome = get_coordinator().attempt_booking(
        technician_id=request.technician_id,
        start_time=request.start_time,
        duration_minutes=duration,
        service_type=service,
        customer_id=request.customer_ref,
        notes=request.notes,
    )
    if not outcome.ok:
        return outcome.to_api()
    booking = outcome.booking
    return {
        "booking_id": booking.id,
        "confirmation_code": booking.confirmation_code,
        "status": booking.status.value,
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "technician_id": booking.technician_id,
        "message": (
            f"Booking received. Confirmation code: {booking.confirmation_code}. "
            f"{service} on {booking.start_time:%Y-%m-%d} at {booking.start_time:%H:%M}."
        ),
    }


def _booking_payload(outcome: BookingOutcome) -> dict:
    if not outcome.ok:
        return outcome.to_api()
    return {**outcome.booking.to_api(), "message": outcome.message}


def reschedule_booking(
    booking_id: str,
    new_start_time: Union[str, datetime],
    duration_minutes: Optional[int] = None,
    reason: Optional[str] = None,
) -> dict:
    """Move a booking; returns the updated booking or an error payload."""
    new_request_id()
    try:
        request = RescheduleRequest(
            booking_id=booking_id, new_start_time=new_start_time,
            duration_minutes=duration_minutes, reason=reason,
        )
    except ValidationError as exc:
        return _validation_error(exc)
    return _booking_payload(get_coordinator().reschedule(
        request.booking_id, request.new_start_time,
        duration_minutes=request.duration_minutes, reason=request.reason,
    ))


def cancel_booking(booking_id: str, reason: Optional[str] = None) -> dict:
    """Cancel a booking; returns ``{status: "cancelled"}`` or an error payload."""
    new_request_id()
    try:
        request = CancelRequest(booking_id=booking_id, reason=reason)
    except ValidationError as exc:
        return _validation_error(exc)
    outcome = get_coordinator().cancel(request.booking_id, reason=request.reason)
    if not outcome.ok:
        return outcome.to_api()
    return {
        "booking_id": outcome.booking.id,
        "status": outcome.booking.status.value,
        "message": outcome.message,
    }


def confirm_booking(booking_id: str) -> dict:
    """Mark a pending or rescheduled booking as confirmed."""
    new_request_id()
    return _booking_payload(get_coordinator().confirm(booking_id))


def get_booking(booking_id: str) -> Optional[dict]:
    """Retrieve a booking by ID."""
    booking = get_coordinator().get_booking(booking_id)
    return booking.to_api() if booking else None


def verify_confirmation_code(booking_id: str, code: str) -> bool:
    """Check a customer-supplied code against the one stored on the booking."""
    return get_coordinator().verify_confirmation_code(booking_id, code)
