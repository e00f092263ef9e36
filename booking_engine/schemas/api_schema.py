"""Validated request and response shapes for the caller-facing booking contract."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class AvailabilityRequest(BaseModel):
    """Availability query for one service on one date."""
    service_type: str = Field(min_length=1)
    date: date
    technician_id: Optional[str] = None


class AvailabilityRangeRequest(BaseModel):
    """Availability query over a run of consecutive days."""
    service_type: str = Field(min_length=1)
    start_date: date
    days: int = Field(default=7, ge=1)
    technician_id: Optional[str] = None


class BookingCreateRequest(BaseModel):
    """Validated booking creation payload."""
    technician_id: str = Field(min_length=1)
    service_type: str = Field(min_length=1)
    start_time: datetime
    duration_minutes: Optional[int] = None
    customer_ref: str = Field(min_length=1)
    notes: Optional[str] = Field(default=None, max_length=500)


class RescheduleRequest(BaseModel):
    """Move an existing booking to a new start time."""
    booking_id: str = Field(min_length=1)
    new_start_time: datetime
    duration_minutes: Optional[int] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class CancelRequest(BaseModel):
    """Cancel an existing booking."""
    booking_id: str = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)


class AvailabilitySlot(BaseModel):
    """Single available time slot as returned to callers."""
    start: str
    end: str
    duration_minutes: int
    technician_id: str


class AvailabilityResponse(BaseModel):
    """Availability for one date."""
    date: str
    available_slots: list[AvailabilitySlot] = Field(default_factory=list)
    total_slots: int = 0
