"""
Persistence port for bookings.

The coordinator only talks to these interfaces, so the same conflict
logic runs against the in-memory test double or a SQL database.

A store must provide:
- ``transaction(technician_id)``: a context manager giving serializable
  isolation for that technician's rows. It commits on clean exit, rolls
  back on any exception, and raises SerializationFailure when the backend
  aborts because of a concurrent commit.
- a unique constraint on ``confirmation_code`` (DuplicateConfirmationCode).
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Optional

from booking_engine.schemas.booking_schema import Booking


class StoreTransaction(ABC):
    """Reads and writes inside one isolated transaction."""

    @abstractmethod
    def list_active_bookings(self, technician_id: str) -> list[Booking]:
        """Fresh read of the technician's non-cancelled bookings."""

    @abstractmethod
    def get(self, booking_id: str) -> Optional[Booking]:
        ...

    @abstractmethod
    def insert(self, booking: Booking) -> Booking:
        ...

    @abstractmethod
    def update(self, booking: Booking) -> Booking:
        """Replace the stored row with the same ID. Raises BookingNotFoundError."""

    @abstractmethod
    def confirmation_code_exists(self, code: str) -> bool:
        ...


class BookingStore(ABC):
    """Transactional booking storage."""

    @abstractmethod
    def transaction(self, technician_id: str) -> AbstractContextManager[StoreTransaction]:
        ...

    @abstractmethod
    def get(self, booking_id: str) -> Optional[Booking]:
        """Snapshot read outside any transaction."""

    @abstractmethod
    def list_bookings(
        self,
        technician_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        include_cancelled: bool = False,
    ) -> list[Booking]:
        """Snapshot read of bookings starting in [start, end), earliest first."""

    @abstractmethod
    def count(self, technician_id: Optional[str] = None, include_cancelled: bool = True) -> int:
        ...

    def close(self) -> None:
        """Release resources held by the store."""
