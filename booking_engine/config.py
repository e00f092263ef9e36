"""
Centralized configuration with environment variable overrides.

Business hours, booking policy thresholds, and store settings are all
configurable here. Nothing is hardcoded in scheduling or tool logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_weekdays(env_var: str, default: str) -> tuple[int, ...]:
    """Parse a comma-separated weekday list ("mon,tue" or "0,1") into ints (Monday=0)."""
    raw = os.getenv(env_var, default)
    days: list[int] = []
    for part in raw.split(","):
        token = part.strip().lower()
        if not token:
            continue
        if token[:3] in WEEKDAY_NAMES:
            days.append(WEEKDAY_NAMES.index(token[:3]))
            continue
        try:
            days.append(int(token))
        except ValueError:
            raise ValueError(f"Invalid weekday in {env_var}: {token!r}") from None
    return tuple(sorted(set(days)))


@dataclass(frozen=True)
class BusinessHoursConfig:
    """Single fixed calendar the slot grid is generated from."""

    start_hour: int = _safe_int("BUSINESS_START_HOUR", "9")
    end_hour: int = _safe_int("BUSINESS_END_HOUR", "17")
    slot_minutes: int = _safe_int("SLOT_MINUTES", "60")
    working_days: tuple[int, ...] = _safe_weekdays("WORKING_DAYS", "mon,tue,wed,thu,fri")
    timezone: str = os.getenv("BUSINESS_TIMEZONE", "UTC")


@dataclass(frozen=True)
class BookingPolicyConfig:
    """Cutoff, buffer, and confirmation code policy."""

    cutoff_hours: float = _safe_float("CUTOFF_HOURS", "24")
    default_buffer_before_minutes: int = _safe_int("DEFAULT_BUFFER_BEFORE_MINUTES", "15")
    default_buffer_after_minutes: int = _safe_int("DEFAULT_BUFFER_AFTER_MINUTES", "15")
    confirmation_code_length: int = _safe_int("CONFIRMATION_CODE_LENGTH", "8")
    max_code_attempts: int = _safe_int("MAX_CODE_ATTEMPTS", "5")
    availability_max_days: int = _safe_int("AVAILABILITY_MAX_DAYS", "30")


@dataclass(frozen=True)
class StoreConfig:
    """Persistence settings and transaction retry bounds."""

    database_url: str = os.getenv("DATABASE_URL", "")
    max_transaction_attempts: int = _safe_int("MAX_TRANSACTION_ATTEMPTS", "3")
    retry_backoff_seconds: float = _safe_float("RETRY_BACKOFF_SECONDS", "0.05")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    hours: BusinessHoursConfig = field(default_factory=BusinessHoursConfig)
    policy: BookingPolicyConfig = field(default_factory=BookingPolicyConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    hours = config.hours
    if not 0 <= hours.start_hour < hours.end_hour <= 24:
        raise ValueError(
            "BUSINESS_START_HOUR/BUSINESS_END_HOUR must satisfy 0 <= start < end <= 24, "
            f"got {hours.start_hour}..{hours.end_hour}"
        )
    if hours.slot_minutes < 1:
        raise ValueError(f"SLOT_MINUTES must be >= 1, got {hours.slot_minutes}")
    if hours.slot_minutes > (hours.end_hour - hours.start_hour) * 60:
        raise ValueError(
            f"SLOT_MINUTES ({hours.slot_minutes}) is longer than the business day"
        )
    if any(not 0 <= d <= 6 for d in hours.working_days):
        raise ValueError(f"WORKING_DAYS must be weekdays 0-6, got {hours.working_days}")

    policy = config.policy
    if policy.cutoff_hours < 0:
        raise ValueError(f"CUTOFF_HOURS must be >= 0, got {policy.cutoff_hours}")
    if policy.default_buffer_before_minutes < 0 or policy.default_buffer_after_minutes < 0:
        raise ValueError(
            "DEFAULT_BUFFER_BEFORE_MINUTES and DEFAULT_BUFFER_AFTER_MINUTES must be >= 0"
        )
    if not 4 <= policy.confirmation_code_length <= 32:
        raise ValueError(
            "CONFIRMATION_CODE_LENGTH must be between 4 and 32, "
            f"got {policy.confirmation_code_length}"
        )
    if policy.max_code_attempts < 1:
        raise ValueError(f"MAX_CODE_ATTEMPTS must be >= 1, got {policy.max_code_attempts}")
    if policy.availability_max_days < 1:
        raise ValueError(
            f"AVAILABILITY_MAX_DAYS must be >= 1, got {policy.availability_max_days}"
        )

    store = config.store
    if not 1 <= store.max_transaction_attempts <= 3:
        raise ValueError(
            "MAX_TRANSACTION_ATTEMPTS must be between 1 and 3, "
            f"got {store.max_transaction_attempts}"
        )
    if store.retry_backoff_seconds < 0:
        raise ValueError(
            f"RETRY_BACKOFF_SECONDS must be >= 0, got {store.retry_backoff_seconds}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info(
        "Configuration loaded: hours %02d:00-%02d:00 %s, cutoff %sh",
        config.hours.start_hour, config.hours.end_hour,
        config.hours.timezone, config.policy.cutoff_hours,
    )
    return config


# Singleton instance
settings = load_config()
