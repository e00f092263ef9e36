"""Booking, slot, and conflict data models."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class BookingStatus(str, Enum):
    """All states a booking can be in."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class TimeSlot(BaseModel):
    """A fixed-size candidate interval on a technician's calendar. Never persisted."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    technician_id: str
    duration_minutes: int

    def to_api(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.duration_minutes,
            "technician_id": self.technician_id,
        }


class Booking(BaseModel):
    """A booking row as owned by the store."""

    id: str
    customer_id: str
    technician_id: str
    service_type: str
    start_time: datetime
    duration_minutes: int
    status: BookingStatus = BookingStatus.PENDING
    confirmation_code: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        """Whether this booking takes part in conflict checks."""
        return self.status != BookingStatus.CANCELLED

    def to_api(self) -> dict[str, Any]:
        return {
            "booking_id": self.id,
            "customer_ref": self.customer_id,
            "technician_id": self.technician_id,
            "service_type": self.service_type,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "status": self.status.value,
            "confirmation_code": self.confirmation_code,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class BufferConfig(BaseModel):
    """Padding required around a booking of one service type."""

    model_config = ConfigDict(frozen=True)

    before_minutes: int = Field(default=15, ge=0)
    after_minutes: int = Field(default=15, ge=0)


class ConflictCheckResult(BaseModel):
    """Outcome of checking one candidate interval against existing bookings."""

    can_book: bool
    conflicting_booking: Optional[Booking] = None
    reason: Optional[str] = None
