"""
Post-commit notification dispatch.

Listeners (SMS, email, calendar sync ...) subscribe to booking events and
are called only after the booking transaction has committed. Delivery is
best-effort: a failing listener is logged and never affects the booking.

Usage:
    dispatcher = NotificationDispatcher()
    dispatcher.subscribe(BookingEvent.CREATED, send_confirmation_sms)
    dispatcher.dispatch(BookingEvent.CREATED, booking)
"""

import logging
from concurrent.futures import Executor
from enum import Enum
from typing import Any, Callable, Optional

from booking_engine.schemas.booking_schema import Booking

logger = logging.getLogger(__name__)


class BookingEvent(str, Enum):
    CREATED = "booking.created"
    RESCHEDULED = "booking.rescheduled"
    CANCELLED = "booking.cancelled"
    CONFIRMED = "booking.confirmed"


Listener = Callable[[BookingEvent, Booking, dict[str, Any]], None]


class NotificationDispatcher:
    """Fan-out of booking events to subscribed listeners.

    With an ``executor`` listeners run in the background and ``dispatch``
    returns immediately; without one they run inline after the commit.
    """

    def __init__(self, executor: Optional[Executor] = None) -> None:
        self._listeners: dict[BookingEvent, list[Listener]] = {}
        self._executor = executor

    def subscribe(self, event: BookingEvent, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def unsubscribe_all(self) -> None:
        self._listeners.clear()

    def dispatch(self, event: BookingEvent, booking: Booking, **context: Any) -> None:
        for listener in self._listeners.get(event, []):
            if self._executor is not None:
                self._executor.submit(self._deliver, listener, event, booking, context)
            else:
                self._deliver(listener, event, booking, context)

    @staticmethod
    def _deliver(
        listener: Listener, event: BookingEvent, booking: Booking, context: dict[str, Any]
    ) -> None:
        try:
            listener(event, booking, context)
        except Exception:
            logger.exception(
                "Notification listener %r failed for %s on booking %s",
                getattr(listener, "__name__", listener), event.value, booking.id,
            )
