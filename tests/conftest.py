"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from booking_engine.notifications import NotificationDispatcher
from booking_engine.schemas.booking_schema import Booking, BookingStatus
from booking_engine.scheduling.buffer_policy import BufferPolicy
from booking_engine.scheduling.coordinator import BookingCoordinator
from booking_engine.scheduling.slot_generator import BusinessHours
from booking_engine.store.memory import InMemoryBookingStore
from booking_engine.tools import engine

# Monday; every test books into this week unless it says otherwise
BOOKING_DAY = datetime(2025, 2, 10, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 0) -> datetime:
    """UTC datetime on BOOKING_DAY (+ ``day`` days) at hour:minute."""
    return BOOKING_DAY + timedelta(days=day, hours=hour, minutes=minute)


class FixedClock:
    """Injectable clock that only moves when a test moves it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


def no_sleep(_seconds: float) -> None:
    pass


def make_booking(
    booking_id: str = "BK-TEST000001",
    start: Optional[datetime] = None,
    duration_minutes: int = 60,
    service_type: str = "plumbing",
    technician_id: str = "tech_1",
    status: BookingStatus = BookingStatus.CONFIRMED,
    confirmation_code: Optional[str] = "TEST0001",
) -> Booking:
    """Helper to create a Booking with sensible defaults."""
    created = datetime(2025, 2, 1, tzinfo=timezone.utc)
    return Booking(
        id=booking_id,
        customer_id="CUST-1",
        technician_id=technician_id,
        service_type=service_type,
        start_time=start or at(10),
        duration_minutes=duration_minutes,
        status=status,
        confirmation_code=confirmation_code,
        created_at=created,
        updated_at=created,
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 2, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def hours():
    return BusinessHours()


@pytest.fixture
def policy():
    return BufferPolicy()


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def notifier():
    dispatcher = NotificationDispatcher()
    yield dispatcher
    dispatcher.unsubscribe_all()


@pytest.fixture
def coordinator(store, policy, hours, notifier, clock):
    return BookingCoordinator(
        store,
        policy=policy,
        hours=hours,
        notifier=notifier,
        clock=clock,
        backoff_seconds=0,
        sleep=no_sleep,
    )


@pytest.fixture
def tools_engine(store, policy, hours, clock):
    """Point the caller-facing tools at a fresh in-memory store."""
    coordinator = engine.configure(
        store=store, hours=hours, policy=policy, clock=clock,
        backoff_seconds=0, sleep=no_sleep,
    )
    yield coordinator
    engine.reset()
