from booking_engine.scheduling.availability import (
    AvailabilityCalculator,
    DateRange,
    calculate_available,
    find_next_available,
    iter_available,
)
from booking_engine.scheduling.buffer_policy import BufferPolicy
from booking_engine.scheduling.conflict_detector import check_conflict, intervals_overlap
from booking_engine.scheduling.coordinator import BookingCoordinator
from booking_engine.scheduling.slot_generator import BusinessHours, generate_slots

__all__ = [
    "AvailabilityCalculator", "DateRange", "calculate_available",
    "find_next_available", "iter_available",
    "BufferPolicy", "check_conflict", "intervals_overlap",
    "BookingCoordinator", "BusinessHours", "generate_slots",
]
