"""Service catalog with default durations and qualified technicians."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

TECHNICIANS: dict[str, str] = {
    "tech_1": "Mike T.",
    "tech_2": "Sarah L.",
    "tech_3": "James K.",
    "tech_4": "Priya M.",
    "tech_5": "Dave W.",
    "tech_6": "Tom R.",
}

SERVICE_CATALOG: dict[str, dict] = {
    "plumbing": {
        "name": "Plumbing Service",
        "description": "Taps, toilets, pipes, and hot water systems.",
        "duration_minutes": 60,
        "technicians": ["tech_1", "tech_2"],
    },
    "electrical": {
        "name": "Electrical Service",
        "description": "Repairs, installations, safety inspections, and lighting.",
        "duration_minutes": 60,
        "technicians": ["tech_3", "tech_4"],
    },
    "hvac": {
        "name": "HVAC Service",
        "description": "Heating, ventilation, and air conditioning service.",
        "duration_minutes": 120,
        "technicians": ["tech_5"],
    },
    "general_handyman": {
        "name": "General Handyman",
        "description": "General repairs, furniture assembly, door and window repairs.",
        "duration_minutes": 60,
        "technicians": ["tech_6"],
    },
    "drain_cleaning": {
        "name": "Drain Cleaning",
        "description": "Blocked drains, CCTV inspection, and jet cleaning.",
        "duration_minutes": 60,
        "technicians": ["tech_1", "tech_5"],
    },
    "locksmith": {
        "name": "Locksmith",
        "description": "Lock changes, rekeying, and lockouts.",
        "duration_minutes": 60,
        "technicians": ["tech_6"],
    },
}

SERVICE_ALIASES: dict[str, str] = {
    "plumber": "plumbing", "pipes": "plumbing", "toilet": "plumbing",
    "tap": "plumbing", "hot water": "plumbing",
    "electrician": "electrical", "wiring": "electrical", "lights": "electrical",
    "heating": "hvac", "cooling": "hvac", "air conditioning": "hvac", "aircon": "hvac",
    "handyman": "general_handyman",
    "drain": "drain_cleaning", "blocked drain": "drain_cleaning",
    "lock": "locksmith",
}

DEFAULT_DURATION_MINUTES = 60


def get_all_services() -> list[dict]:
    """Return all services with basic info."""
    return [
        {"id": sid, "name": info["name"], "duration_minutes": info["duration_minutes"]}
        for sid, info in SERVICE_CATALOG.items()
    ]


def match_service(query: str) -> Optional[str]:
    """Match free text or a service ID to a catalog ID. Returns None if no match."""
    normalized = query.lower().strip()
    underscored = "_".join(normalized.replace("-", " ").split())
    if underscored in SERVICE_CATALOG:
        return underscored
    for alias, service_id in SERVICE_ALIASES.items():
        if alias in normalized:
            return service_id
    return None


def get_service_details(service_type: str) -> Optional[dict]:
    """Full catalog entry for a service (ID or alias)."""
    sid = match_service(service_type)
    if sid is None:
        return None
    return {"id": sid, **SERVICE_CATALOG[sid]}


def default_duration(service_type: str) -> int:
    """Booking length for a service; unknown services get one hour."""
    details = get_service_details(service_type)
    return details["duration_minutes"] if details else DEFAULT_DURATION_MINUTES


def default_technician(service_type: str) -> Optional[str]:
    """First technician qualified for the service, if any."""
    details = get_service_details(service_type)
    if not details or not details["technicians"]:
        return None
    return details["technicians"][0]
