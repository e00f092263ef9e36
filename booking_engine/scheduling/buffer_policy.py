"""Per-service buffer times for travel, setup, and cleanup around a booking."""

import logging
from datetime import datetime, timedelta
from typing import Mapping, Optional

from booking_engine.config import BookingPolicyConfig, settings
from booking_engine.schemas.booking_schema import BufferConfig

logger = logging.getLogger(__name__)

# before/after minutes; cleanup usually outweighs setup
SERVICE_BUFFERS: dict[str, BufferConfig] = {
    "plumbing": BufferConfig(before_minutes=15, after_minutes=30),
    "electrical": BufferConfig(before_minutes=15, after_minutes=30),
    "hvac": BufferConfig(before_minutes=30, after_minutes=30),
    "roofing": BufferConfig(before_minutes=30, after_minutes=45),
    "painting": BufferConfig(before_minutes=15, after_minutes=30),
    "locksmith": BufferConfig(before_minutes=0, after_minutes=15),
    "glazier": BufferConfig(before_minutes=15, after_minutes=30),
    "cleaning": BufferConfig(before_minutes=15, after_minutes=15),
    "pest_control": BufferConfig(before_minutes=15, after_minutes=30),
    "appliance_repair": BufferConfig(before_minutes=15, after_minutes=30),
    "garage_door": BufferConfig(before_minutes=15, after_minutes=30),
    "handyman": BufferConfig(before_minutes=15, after_minutes=15),
    "general_handyman": BufferConfig(before_minutes=15, after_minutes=15),
    "drain_cleaning": BufferConfig(before_minutes=15, after_minutes=30),
    "emergency_repair": BufferConfig(before_minutes=0, after_minutes=30),
}


def normalize_service_type(service_type: str) -> str:
    """Canonical lookup key: lower case, words joined by underscores.

    Examples:
        >>> normalize_service_type(" Pest-Control ")
        'pest_control'
    """
    return "_".join(service_type.strip().lower().replace("-", " ").split())


class BufferPolicy:
    """Static service_type -> BufferConfig table with a default entry."""

    def __init__(
        self,
        buffers: Optional[Mapping[str, BufferConfig]] = None,
        default: Optional[BufferConfig] = None,
    ) -> None:
        source = SERVICE_BUFFERS if buffers is None else buffers
        self._buffers = {normalize_service_type(k): v for k, v in source.items()}
        self.default = default or BufferConfig()

    @classmethod
    def from_config(cls, config: Optional[BookingPolicyConfig] = None) -> "BufferPolicy":
        config = config or settings.policy
        return cls(default=BufferConfig(
            before_minutes=config.default_buffer_before_minutes,
            after_minutes=config.default_buffer_after_minutes,
        ))

    def for_service(self, service_type: str) -> BufferConfig:
        """Buffer for a service type; unknown types get the default rather than failing."""
        buffer = self._buffers.get(normalize_service_type(service_type))
        if buffer is None:
            logger.debug("No buffer configured for '%s', using default", service_type)
            return self.default
        return buffer

    def expand(
        self, start: datetime, end: datetime, service_type: str
    ) -> tuple[datetime, datetime]:
        """Widen [start, end) by the service's before/after buffer."""
        buffer = self.for_service(service_type)
        return (
            start - timedelta(minutes=buffer.before_minutes),
            end + timedelta(minutes=buffer.after_minutes),
        )
