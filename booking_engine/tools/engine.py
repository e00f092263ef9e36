"""
Process-wide engine wiring shared by the caller-facing tools.

Defaults to an in-memory store (or SqlBookingStore when DATABASE_URL is
set). Tests and hosts call ``configure`` to inject their own store,
clock, or notifier, and ``reset`` for isolation.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from booking_engine.config import settings
from booking_engine.notifications import NotificationDispatcher
from booking_engine.scheduling.availability import AvailabilityCalculator
from booking_engine.scheduling.buffer_policy import BufferPolicy
from booking_engine.scheduling.coordinator import BookingCoordinator
from booking_engine.scheduling.slot_generator import BusinessHours
from booking_engine.store.base import BookingStore
from booking_engine.store.memory import InMemoryBookingStore
from booking_engine.utils import utc_now

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_coordinator: Optional[BookingCoordinator] = None
_calculator: Optional[AvailabilityCalculator] = None


def _default_store() -> BookingStore:
    if settings.store.database_url:
        from booking_engine.store.sql import SqlBookingStore

        logger.info("Using SQL booking store")
        return SqlBookingStore.from_config()
    return InMemoryBookingStore()


def configure(
    store: Optional[BookingStore] = None,
    hours: Optional[BusinessHours] = None,
    policy: Optional[BufferPolicy] = None,
    notifier: Optional[NotificationDispatcher] = None,
    clock: Callable[[], datetime] = utc_now,
    **coordinator_options,
) -> BookingCoordinator:
    """Replace the shared coordinator and availability calculator."""
    global _coordinator, _calculator
    with _lock:
        store = store or _default_store()
        hours = hours or BusinessHours.from_config()
        policy = policy or BufferPolicy.from_config()
        _coordinator = BookingCoordinator(
            store, policy=policy, hours=hours, notifier=notifier,
            clock=clock, **coordinator_options,
        )
        _calculator = AvailabilityCalculator(store, hours=hours, policy=policy, clock=clock)
        return _coordinator


def get_coordinator() -> BookingCoordinator:
    if _coordinator is None:
        configure()
    return _coordinator


def get_calculator() -> AvailabilityCalculator:
    if _calculator is None:
        configure()
    return _calculator


def reset() -> None:
    """Drop the shared engine. Used by test fixtures for isolation."""
    global _coordinator, _calculator
    with _lock:
        if _coordinator is not None:
            _coordinator.store.close()
        _coordinator = None
        _calculator = None
