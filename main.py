"""
Command-line entry point for the booking engine.

Runs against the store selected by DATABASE_URL (in-memory when unset,
so bookings only last for one invocation unless a database is given).

Usage:
    python main.py services
    python main.py availability plumbing 2025-02-10
    python main.py next plumbing 2025-02-10 --days 14
    python main.py book tech_1 plumbing 2025-02-10T10:00 --customer CUST-1
    python main.py reschedule BK-0123456789 2025-02-12T14:00 --reason "clash"
    python main.py cancel BK-0123456789 --reason "no longer needed"
    python main.py verify BK-0123456789 AB12CD34
"""

import argparse
import json
import logging
import sys

from booking_engine.tools.availability import (
    find_next_available_slot,
    get_availability,
    get_availability_range,
)
from booking_engine.tools.booking import (
    cancel_booking,
    confirm_booking,
    create_booking,
    get_booking,
    reschedule_booking,
    verify_confirmation_code,
)
from booking_engine.tools.services import get_all_services

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check availability and manage bookings for field-service technicians."
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging output.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("services", help="List bookable services.")

    availability = commands.add_parser("availability", help="Open slots for a date.")
    availability.add_argument("service_type")
    availability.add_argument("date", help="YYYY-MM-DD")
    availability.add_argument("--days", type=int, default=1, help="Number of days to show.")
    availability.add_argument("--technician", default=None)

    nxt = commands.add_parser("next", help="Earliest open slot from a date.")
    nxt.add_argument("service_type")
    nxt.add_argument("date", help="YYYY-MM-DD")
    nxt.add_argument("--days", type=int, default=None, help="Search horizon in days.")
    nxt.add_argument("--technician", default=None)

    book = commands.add_parser("book", help="Create a pending booking.")
    book.add_argument("technician_id")
    book.add_argument("service_type")
    book.add_argument("start_time", help="ISO 8601, e.g. 2025-02-10T10:00")
    book.add_argument("--duration", type=int, default=None, help="Minutes.")
    book.add_argument("--customer", required=True, help="Customer reference.")
    book.add_argument("--notes", default=None)

    reschedule = commands.add_parser("reschedule", help="Move a booking.")
    reschedule.add_argument("booking_id")
    reschedule.add_argument("new_start_time")
    reschedule.add_argument("--duration", type=int, default=None)
    reschedule.add_argument("--reason", default=None)

    cancel = commands.add_parser("cancel", help="Cancel a booking.")
    cancel.add_argument("booking_id")
    cancel.add_argument("--reason", default=None)

    confirm = commands.add_parser("confirm", help="Confirm a pending booking.")
    confirm.add_argument("booking_id")

    show = commands.add_parser("show", help="Show a booking.")
    show.add_argument("booking_id")

    verify = commands.add_parser("verify", help="Check a confirmation code.")
    verify.add_argument("booking_id")
    verify.add_argument("code")
    return parser


def run(args: argparse.Namespace):
    """Dispatch a parsed command to the matching tool function."""
    if args.command == "services":
        return get_all_services()
    if args.command == "availability":
        if args.days > 1:
            return get_availability_range(
                args.service_type, args.date, args.days, args.technician
            )
        return get_availability(args.service_type, args.date, args.technician)
    if args.command == "next":
        return find_next_available_slot(
            args.service_type, args.date, args.days, args.technician
        )
    if args.command == "book":
        return create_booking(
            args.technician_id, args.service_type, args.start_time,
            duration_minutes=args.duration, customer_ref=args.customer, notes=args.notes,
        )
    if args.command == "reschedule":
        return reschedule_booking(
            args.booking_id, args.new_start_time,
            duration_minutes=args.duration, reason=args.reason,
        )
    if args.command == "cancel":
        return cancel_booking(args.booking_id, reason=args.reason)
    if args.command == "confirm":
        return confirm_booking(args.booking_id)
    if args.command == "show":
        return get_booking(args.booking_id)
    if args.command == "verify":
        return {"valid": verify_confirmation_code(args.booking_id, args.code)}
    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    result = run(args)
    sys.stdout.write(json.dumps(result, indent=2, default=str) + "\n")

    if isinstance(result, dict) and "error" in result:
        logger.error("%s: %s", result["error"], result.get("message"))
        return 1
    if result is None:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
