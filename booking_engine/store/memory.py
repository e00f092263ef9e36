"""
In-memory booking store.

Used by tests, the CLI demo, and the default tool configuration. Each
technician has its own lock, held for the whole transaction, which gives
the same at-most-one-winner behaviour as a serializable database for
that technician's rows. Writes are staged and applied only on commit.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from booking_engine.errors import (
    BookingNotFoundError,
    DuplicateConfirmationCode,
    SerializationFailure,
)
from booking_engine.schemas.booking_schema import Booking
from booking_engine.store.base import BookingStore, StoreTransaction

logger = logging.getLogger(__name__)


class _MemoryTransaction(StoreTransaction):
    def __init__(self, store: "InMemoryBookingStore") -> None:
        self._store = store
        self._staged: dict[str, Booking] = {}

    def _visible(self) -> dict[str, Booking]:
        rows = self._store._snapshot()
        rows.update(self._staged)
        return rows

    def list_active_bookings(self, technician_id: str) -> list[Booking]:
        return sorted(
            (b.model_copy() for b in self._visible().values()
             if b.technician_id == technician_id and b.is_active),
            key=lambda b: b.start_time,
        )

    def get(self, booking_id: str) -> Optional[Booking]:
        booking = self._visible().get(booking_id)
        return booking.model_copy() if booking else None

    def insert(self, booking: Booking) -> Booking:
        if booking.id in self._visible():
            raise ValueError(f"Booking {booking.id} already exists")
        self._staged[booking.id] = booking.model_copy()
        return booking

    def update(self, booking: Booking) -> Booking:
        if booking.id not in self._visible():
            raise BookingNotFoundError(booking.id)
        self._staged[booking.id] = booking.model_copy()
        return booking

    def confirmation_code_exists(self, code: str) -> bool:
        return any(b.confirmation_code == code for b in self._visible().values())


class InMemoryBookingStore(BookingStore):
    """Thread-safe dict-backed store with per-technician transaction locks."""

    def __init__(self) -> None:
        self._rows: dict[str, Booking] = {}
        self._data_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._tech_locks: dict[str, threading.Lock] = {}
        self._pending_failures = 0

    def _lock_for(self, technician_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._tech_locks.setdefault(technician_id, threading.Lock())

    def _snapshot(self) -> dict[str, Booking]:
        with self._data_lock:
            return dict(self._rows)

    def fail_next_commits(self, count: int) -> None:
        """Make the next ``count`` commits raise SerializationFailure."""
        with self._data_lock:
            self._pending_failures = count

    def _commit(self, txn: _MemoryTransaction) -> None:
        with self._data_lock:
            if self._pending_failures > 0:
                self._pending_failures -= 1
                raise SerializationFailure("could not serialize access due to concurrent update")
            for booking in txn._staged.values():
                code = booking.confirmation_code
                if code and any(
                    other.confirmation_code == code and other.id != booking.id
                    for other in self._rows.values()
                ):
                    raise DuplicateConfirmationCode(f"Confirmation code {code} already in use")
            self._rows.update(txn._staged)

    @contextmanager
    def transaction(self, technician_id: str) -> Iterator[StoreTransaction]:
        with self._lock_for(technician_id):
            txn = _MemoryTransaction(self)
            yield txn
            self._commit(txn)

    def get(self, booking_id: str) -> Optional[Booking]:
        booking = self._snapshot().get(booking_id)
        return booking.model_copy() if booking else None

    def list_bookings(
        self,
        technician_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        include_cancelled: bool = False,
    ) -> list[Booking]:
        rows = [
            b.model_copy() for b in self._snapshot().values()
            if b.technician_id == technician_id
            and (include_cancelled or b.is_active)
            and (start is None or b.start_time >= start)
            and (end is None or b.start_time < end)
        ]
        return sorted(rows, key=lambda b: b.start_time)

    def count(self, technician_id: Optional[str] = None, include_cancelled: bool = True) -> int:
        return sum(
            1 for b in self._snapshot().values()
            if (technician_id is None or b.technician_id == technician_id)
            and (include_cancelled or b.is_active)
        )

    def reset(self) -> None:
        """Drop all bookings. Used by test fixtures for isolation."""
        with self._data_lock:
            self._rows.clear()
            self._pending_failures = 0
