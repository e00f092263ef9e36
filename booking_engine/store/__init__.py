from booking_engine.store.base import BookingStore, StoreTransaction
from booking_engine.store.memory import InMemoryBookingStore

__all__ = ["BookingStore", "StoreTransaction", "InMemoryBookingStore"]
