"""
Availability lookups for HTTP handlers and conversational agents.

Results are JSON-ready dicts. Invalid input is reported as a
VALIDATION_ERROR payload instead of raising.
"""

import logging
from datetime import date
from typing import Optional, TypedDict, Union

from pydantic import ValidationError

from booking_engine.config import settings
from booking_engine.schemas.api_schema import (
    AvailabilityRangeRequest,
    AvailabilityRequest,
    AvailabilityResponse,
    AvailabilitySlot,
)
from booking_engine.schemas.booking_schema import TimeSlot
from booking_engine.scheduling.availability import DateRange
from booking_engine.tools.engine import get_calculator
from booking_engine.tools.services import default_duration, default_technician, match_service

logger = logging.getLogger(__name__)


class ErrorResult(TypedDict):
    error: str
    message: str


def _validation_error(exc: Union[ValidationError, ValueError]) -> ErrorResult:
    if isinstance(exc, ValidationError):
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = str(exc)
    return {"error": "VALIDATION_ERROR", "message": message}


def _resolve(service_type: str, technician_id: Optional[str]) -> tuple[str, str]:
    service = match_service(service_type) or service_type
    technician = technician_id or default_technician(service)
    if technician is None:
        raise ValueError(f"No technician available for service '{service_type}'")
    return service, technician


def _response(day: date, slots: list[TimeSlot]) -> dict:
    return AvailabilityResponse(
        date=day.isoformat(),
        available_slots=[AvailabilitySlot(**s.to_api()) for s in slots],
        total_slots=len(slots),
    ).model_dump()


def get_availability(
    service_type: str, date: Union[str, date], technician_id: Optional[str] = None
) -> dict:
    """Open slots for one service on one date.

    Returns ``{date, available_slots: [{start, end, duration_minutes,
    technician_id}], total_slots}``.
    """
    try:
        request = AvailabilityRequest(
            service_type=service_type, date=date, technician_id=technician_id
        )
        service, technician = _resolve(request.service_type, request.technician_id)
    except (ValidationError, ValueError) as exc:
        return _validation_error(exc)

    slots = get_calculator().get_availability(
        service, request.date, technician, duration_minutes=default_duration(service)
    )
    logger.info(
        "Availability: %s/%s on %s -> %d slots", service, technician, request.date, len(slots)
    )
    return _response(request.date, slots)


def get_availability_range(
    service_type: str,
    start_date: Union[str, date],
    days: int = 7,
    technician_id: Optional[str] = None,
) -> Union[list[dict], ErrorResult]:
    """One availability entry per working day in the next ``days`` days."""
    try:
        request = AvailabilityRangeRequest(
            service_type=service_type, start_date=start_date,
            days=days, technician_id=technician_id,
        )
        if request.days > settings.policy.availability_max_days:
            raise ValueError(
                f"days cannot exceed {settings.policy.availability_max_days}"
            )
        service, technician = _resolve(request.service_type, request.technician_id)
    except (ValidationError, ValueError) as exc:
        return _validation_error(exc)

    entries = get_calculator().availability_for_range(
        service, DateRange.of(request.start_date, request.days), technician,
        duration_minutes=default_duration(service),
    )
    return [_response(day, slots) for day, slots in entries]


def find_next_available_slot(
    service_type: str,
    from_date: Union[str, date],
    days: Optional[int] = None,
    technician_id: Optional[str] = None,
) -> Union[dict, ErrorResult, None]:
    """Earliest open slot from ``from_date`` onwards, or None within the horizon."""
    days = days or settings.policy.availability_max_days
    try:
        request = AvailabilityRangeRequest(
            service_type=service_type, start_date=from_date,
            days=days, technician_id=technician_id,
        )
        service, technician = _resolve(request.service_type, request.technician_id)
    except (ValidationError, ValueError) as exc:
        return _validation_error(exc)

    slot = get_calculator().find_next_available(
        service, DateRange.of(request.start_date, request.days), technician,
        duration_minutes=default_duration(service),
    )
    return slot.to_api() if slot else None
