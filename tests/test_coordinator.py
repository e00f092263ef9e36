"""Tests for the booking transaction coordinator."""

import random
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from itertools import combinations

import pytest

from booking_engine.errors import ErrorCode
from booking_engine.notifications import BookingEvent
from booking_engine.schemas.booking_schema import BookingStatus
from booking_engine.scheduling.buffer_policy import SERVICE_BUFFERS
from booking_engine.scheduling.conflict_detector import buffered_interval, intervals_overlap
from booking_engine.scheduling.coordinator import BookingCoordinator

from tests.conftest import at, no_sleep


def _book(coordinator, hour=10, minute=0, technician_id="tech_1", service="plumbing", day=0):
    return coordinator.attempt_booking(
        technician_id, at(hour, minute, day=day), 60, service, "CUST-1"
    )


class TestAttemptBooking:
    def test_creates_pending_booking(self, coordinator, store):
        outcome = _book(coordinator)
        assert outcome.ok
        booking = outcome.booking
        assert booking.id.startswith("BK-")
        assert booking.status == BookingStatus.PENDING
        assert re.fullmatch(r"[A-Z0-9]{8}", booking.confirmation_code)
        assert store.get(booking.id) == booking

    def test_conflict_reports_colliding_booking(self, coordinator, store):
        first = _book(coordinator)
        second = _book(coordinator, 11)
        assert not second.ok
        assert second.error == ErrorCode.CONFLICT
        assert second.conflicting_booking.id == first.booking.id
        assert store.count("tech_1") == 1

    def test_conflict_payload(self, coordinator):
        first = _book(coordinator)
        payload = _book(coordinator).to_api()
        assert payload["error"] == "CONFLICT"
        assert payload["conflicting_booking"]["booking_id"] == first.booking.id

    def test_different_technicians_do_not_conflict(self, coordinator):
        assert _book(coordinator).ok
        assert _book(coordinator, technician_id="tech_2").ok

    def test_zero_duration_rejected(self, coordinator, store):
        outcome = coordinator.attempt_booking("tech_1", at(10), 0, "plumbing", "CUST-1")
        assert outcome.error == ErrorCode.INVALID_INTERVAL
        assert store.count() == 0

    def test_negative_duration_rejected(self, coordinator):
        outcome = coordinator.attempt_booking("tech_1", at(10), -30, "plumbing", "CUST-1")
        assert outcome.error == ErrorCode.INVALID_INTERVAL

    def test_past_start_rejected(self, coordinator, clock):
        clock.set(at(12))
        outcome = _book(coordinator, 10)
        assert outcome.error == ErrorCode.INVALID_INTERVAL
        assert "past" in outcome.message

    def test_outside_business_hours_rejected(self, coordinator):
        assert _book(coordinator, 8).error == ErrorCode.INVALID_INTERVAL
        assert _book(coordinator, 16, 30).error == ErrorCode.INVALID_INTERVAL

    def test_business_hours_can_be_relaxed(self, store, policy, hours, clock):
        coordinator = BookingCoordinator(
            store, policy=policy, hours=hours, clock=clock,
            enforce_business_hours=False, sleep=no_sleep,
        )
        assert _book(coordinator, 7).ok

    def test_naive_start_is_read_in_business_timezone(self, coordinator):
        outcome = coordinator.attempt_booking(
            "tech_1", datetime(2025, 2, 10, 10, 0), 60, "plumbing", "CUST-1"
        )
        assert outcome.ok
        assert outcome.booking.start_time == at(10)

    def test_iso_string_start(self, coordinator):
        outcome = coordinator.attempt_booking(
            "tech_1", "2025-02-10T10:00:00Z", 60, "plumbing", "CUST-1"
        )
        assert outcome.booking.start_time == at(10)

    def test_unparseable_start(self, coordinator):
        outcome = coordinator.attempt_booking("tech_1", "soon", 60, "plumbing", "CUST-1")
        assert outcome.error == ErrorCode.INVALID_INTERVAL

    def test_created_notification(self, coordinator, notifier):
        events = []
        notifier.subscribe(BookingEvent.CREATED, lambda e, b, ctx: events.append((e, b.id)))
        outcome = _book(coordinator)
        assert events == [(BookingEvent.CREATED, outcome.booking.id)]

    def test_failing_listener_does_not_roll_back(self, coordinator, notifier, store):
        def broken(event, booking, context):
            raise RuntimeError("SMS gateway down")

        notifier.subscribe(BookingEvent.CREATED, broken)
        outcome = _book(coordinator)
        assert outcome.ok
        assert store.get(outcome.booking.id) is not None


class TestConcurrentBooking:
    def test_at_most_one_winner(self, coordinator, store):
        before = store.count("tech_1")
        with ThreadPoolExecutor(max_workers=50) as pool:
            outcomes = list(pool.map(lambda _: _book(coordinator), range(50)))

        winners = [o for o in outcomes if o.ok]
        losers = [o for o in outcomes if not o.ok]
        assert len(winners) == 1
        assert all(
            o.error in (ErrorCode.CONFLICT, ErrorCode.TRANSIENT_STORE_ERROR) for o in losers
        )
        assert store.count("tech_1") == before + 1

    def test_overlapping_intervals_race(self, coordinator, store):
        starts = [(10, 0), (10, 15), (10, 30), (10, 45), (11, 0)] * 6
        with ThreadPoolExecutor(max_workers=len(starts)) as pool:
            outcomes = list(pool.map(lambda hm: _book(coordinator, *hm), starts))
        assert sum(o.ok for o in outcomes) == 1
        assert store.count("tech_1") == 1

    def test_technicians_book_in_parallel(self, coordinator, store):
        technicians = [f"tech_{n}" for n in range(1, 7)]
        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(lambda t: _book(coordinator, technician_id=t), technicians))
        assert all(o.ok for o in outcomes)
        assert store.count() == 6


class TestDisjointness:
    """Random booking traffic through the transactional path only."""

    def _random_attempt(self, coordinator, rng):
        service = rng.choice(sorted(SERVICE_BUFFERS))
        day = rng.randrange(5)
        start = at(9, day=day) + timedelta(minutes=15 * rng.randrange(28))
        duration = rng.choice([30, 45, 60, 90, 120])
        technician = rng.choice(["tech_1", "tech_2"])
        return coordinator.attempt_booking(technician, start, duration, service, "CUST-R")

    def _assert_disjoint(self, store, policy):
        for technician in ("tech_1", "tech_2"):
            active = store.list_bookings(technician)
            for a, b in combinations(active, 2):
                a_start, a_end = buffered_interval(a, policy)
                b_start, b_end = buffered_interval(b, policy)
                assert not intervals_overlap(a_start, a_end, b_start, b_end), (a.id, b.id)

    def test_sequential_random_bookings(self, coordinator, store, policy):
        rng = random.Random(1234)
        created = []
        for _ in range(300):
            outcome = self._random_attempt(coordinator, rng)
            if outcome.ok:
                created.append(outcome.booking.id)
            if created and rng.random() < 0.1:
                coordinator.cancel(created.pop(rng.randrange(len(created))))
        assert created
        self._assert_disjoint(store, policy)

    def test_concurrent_random_bookings(self, coordinator, store, policy):
        rng = random.Random(99)
        seeds = [rng.randrange(10**6) for _ in range(200)]
        with ThreadPoolExecutor(max_workers=16) as pool:
            list(pool.map(
                lambda seed: self._random_attempt(coordinator, random.Random(seed)), seeds
            ))
        assert store.count() > 0
        self._assert_disjoint(store, policy)


class TestCutoff:
    def test_reschedule_inside_cutoff(self, coordinator, clock):
        booking = _book(coordinator).booking
        clock.set(at(10) - timedelta(hours=12))
        outcome = coordinator.reschedule(booking.id, at(14, day=1))
        assert outcome.error == ErrorCode.CUTOFF_VIOLATION
        assert outcome.hours_remaining == pytest.approx(12.0)
        assert outcome.to_api()["hours_remaining"] == 12.0

    def test_reschedule_outside_cutoff_reaches_conflict_check(self, coordinator, clock):
        booking = _book(coordinator).booking
        other = _book(coordinator, 14).booking
        clock.set(at(10) - timedelta(hours=48))
        outcome = coordinator.reschedule(booking.id, at(14))
        assert outcome.error == ErrorCode.CONFLICT
        assert outcome.conflicting_booking.id == other.id

    def test_reschedule_outside_cutoff_succeeds(self, coordinator, clock):
        booking = _book(coordinator).booking
        clock.set(at(10) - timedelta(hours=48))
        assert coordinator.reschedule(booking.id, at(14)).ok

    def test_cancel_inside_cutoff(self, coordinator, clock, store):
        booking = _book(coordinator).booking
        clock.set(at(10) - timedelta(hours=23, minutes=59))
        outcome = coordinator.cancel(booking.id)
        assert outcome.error == ErrorCode.CUTOFF_VIOLATION
        assert store.get(booking.id).status == BookingStatus.PENDING

    def test_exactly_at_cutoff_is_allowed(self, coordinator, clock):
        booking = _book(coordinator).booking
        clock.set(at(10) - timedelta(hours=24))
        assert coordinator.cancel(booking.id).ok


class TestReschedule:
    def test_updates_row_in_place(self, coordinator, store, notifier):
        events = []
        notifier.subscribe(BookingEvent.RESCHEDULED, lambda e, b, ctx: events.append(ctx))
        booking = _book(coordinator).booking

        outcome = coordinator.reschedule(booking.id, at(14), reason="customer at work")
        assert outcome.ok
        assert outcome.booking.id == booking.id
        assert outcome.booking.status == BookingStatus.RESCHEDULED
        assert outcome.booking.start_time == at(14)
        assert outcome.booking.confirmation_code == booking.confirmation_code
        assert "Rescheduled: customer at work" in outcome.booking.notes
        assert store.count("tech_1") == 1
        assert events == [{"previous_start": at(10)}]

    def test_may_overlap_its_own_old_interval(self, coordinator):
        booking = _book(coordinator).booking
        assert coordinator.reschedule(booking.id, at(10, 30)).ok

    def test_old_interval_is_freed(self, coordinator):
        booking = _book(coordinator).booking
        coordinator.reschedule(booking.id, at(14))
        assert _book(coordinator, 10).ok

    def test_can_change_duration(self, coordinator):
        booking = _book(coordinator).booking
        outcome = coordinator.reschedule(booking.id, at(13), duration_minutes=120)
        assert outcome.booking.duration_minutes == 120

    def test_not_found(self, coordinator):
        assert coordinator.reschedule("BK-MISSING", at(14)).error == ErrorCode.NOT_FOUND

    def test_cancelled_booking_cannot_move(self, coordinator):
        booking = _book(coordinator).booking
        coordinator.cancel(booking.id)
        assert coordinator.reschedule(booking.id, at(14)).error == ErrorCode.INVALID_STATUS

    def test_invalid_new_interval(self, coordinator):
        booking = _book(coordinator).booking
        outcome = coordinator.reschedule(booking.id, at(14), duration_minutes=-1)
        assert outcome.error == ErrorCode.INVALID_INTERVAL


class TestCancel:
    def test_cancel_frees_slot(self, coordinator, store, notifier):
        events = []
        notifier.subscribe(BookingEvent.CANCELLED, lambda e, b, ctx: events.append(ctx))
        booking = _book(coordinator).booking

        outcome = coordinator.cancel(booking.id, reason="fixed it myself")
        assert outcome.ok
        assert outcome.booking.status == BookingStatus.CANCELLED
        assert events == [{"reason": "fixed it myself"}]
        assert _book(coordinator).ok
        assert store.count("tech_1", include_cancelled=False) == 1
        assert store.count("tech_1") == 2

    def test_cancel_twice(self, coordinator):
        booking = _book(coordinator).booking
        coordinator.cancel(booking.id)
        outcome = coordinator.cancel(booking.id)
        assert outcome.error == ErrorCode.ALREADY_CANCELLED
        assert outcome.to_api()["error"] == "ALREADY_CANCELLED"

    def test_not_found(self, coordinator):
        assert coordinator.cancel("BK-MISSING").error == ErrorCode.NOT_FOUND


class TestConfirm:
    def test_pending_to_confirmed(self, coordinator):
        booking = _book(coordinator).booking
        outcome = coordinator.confirm(booking.id)
        assert outcome.ok
        assert outcome.booking.status == BookingStatus.CONFIRMED

    def test_confirm_twice_is_invalid(self, coordinator):
        booking = _book(coordinator).booking
        coordinator.confirm(booking.id)
        assert coordinator.confirm(booking.id).error == ErrorCode.INVALID_STATUS

    def test_rescheduled_can_be_confirmed(self, coordinator):
        booking = _book(coordinator).booking
        coordinator.reschedule(booking.id, at(14))
        assert coordinator.confirm(booking.id).ok


class TestTransientFailures:
    def test_retry_then_success(self, coordinator, store):
        store.fail_next_commits(1)
        outcome = _book(coordinator)
        assert outcome.ok
        assert outcome.attempts == 2
        assert store.count() == 1

    def test_exhausted_retries(self, coordinator, store):
        store.fail_next_commits(3)
        outcome = _book(coordinator)
        assert outcome.error == ErrorCode.TRANSIENT_STORE_ERROR
        assert outcome.attempts == 3
        assert store.count() == 0

    def test_attempts_never_exceed_three(self, store, policy, hours, clock):
        coordinator = BookingCoordinator(
            store, policy=policy, hours=hours, clock=clock, max_attempts=10, sleep=no_sleep,
        )
        store.fail_next_commits(10)
        assert _book(coordinator).attempts == 3

    def test_conflict_is_not_retried(self, coordinator):
        _book(coordinator)
        assert _book(coordinator).attempts == 1


class TestConfirmationCodes:
    def test_code_collision_draws_again(self, store, policy, hours, clock):
        codes = iter(["AAAAAAAA", "AAAAAAAA", "BBBBBBBB"])
        coordinator = BookingCoordinator(
            store, policy=policy, hours=hours, clock=clock,
            code_generator=lambda: next(codes), sleep=no_sleep,
        )
        assert _book(coordinator, 9).booking.confirmation_code == "AAAAAAAA"
        assert _book(coordinator, 14).booking.confirmation_code == "BBBBBBBB"

    def test_code_space_exhausted(self, store, policy, hours, clock):
        coordinator = BookingCoordinator(
            store, policy=policy, hours=hours, clock=clock,
            code_generator=lambda: "AAAAAAAA", max_code_attempts=3, sleep=no_sleep,
        )
        assert _book(coordinator, 9).ok
        outcome = _book(coordinator, 14)
        assert outcome.error == ErrorCode.TRANSIENT_STORE_ERROR
        assert store.count() == 1

    def test_verify(self, store, policy, hours, clock):
        coordinator = BookingCoordinator(
            store, policy=policy, hours=hours, clock=clock,
            code_generator=lambda: "AB12CD34", sleep=no_sleep,
        )
        booking = _book(coordinator).booking
        code = booking.confirmation_code
        assert coordinator.verify_confirmation_code(booking.id, code)
        assert not coordinator.verify_confirmation_code(booking.id, code.lower())
        assert not coordinator.verify_confirmation_code(booking.id, "ZZZZZZZZ")
        assert not coordinator.verify_confirmation_code("BK-MISSING", code)


def test_get_booking(coordinator):
    booking = _book(coordinator).booking
    assert coordinator.get_booking(booking.id) == booking
    assert coordinator.get_booking("BK-MISSING") is None


def test_clock_default_is_aware_utc():
    from booking_engine.utils import utc_now

    assert utc_now().tzinfo is timezone.utc
