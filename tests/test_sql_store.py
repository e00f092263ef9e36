"""Tests for the SQLAlchemy booking store (SQLite backend)."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError

from booking_engine.errors import DuplicateConfirmationCode, ErrorCode
from booking_engine.schemas.booking_schema import BookingStatus
from booking_engine.scheduling.coordinator import BookingCoordinator
from booking_engine.store.sql import SqlBookingStore, _is_serialization_failure

from tests.conftest import at, make_booking, no_sleep


@pytest.fixture
def sql_store(tmp_path):
    store = SqlBookingStore(f"sqlite:///{tmp_path / 'bookings.db'}")
    yield store
    store.close()


@pytest.fixture
def sql_coordinator(sql_store, policy, hours, clock):
    return BookingCoordinator(
        sql_store, policy=policy, hours=hours, clock=clock,
        backoff_seconds=0, sleep=no_sleep,
    )


class TestSqlStore:
    def test_insert_and_get_round_trip(self, sql_store):
        booking = make_booking()
        with sql_store.transaction("tech_1") as txn:
            txn.insert(booking)
        assert sql_store.get(booking.id) == booking

    def test_datetimes_come_back_aware_utc(self, sql_store):
        melbourne = at(10).astimezone(ZoneInfo("Australia/Melbourne"))
        booking = make_booking(start=melbourne)
        with sql_store.transaction("tech_1") as txn:
            txn.insert(booking)
        stored = sql_store.get(booking.id)
        assert stored.start_time.tzinfo == timezone.utc
        assert stored.start_time == at(10)

    def test_missing_booking(self, sql_store):
        assert sql_store.get("BK-MISSING") is None

    def test_duplicate_confirmation_code_rejected(self, sql_store):
        with sql_store.transaction("tech_1") as txn:
            txn.insert(make_booking("BK-1", start=at(9), confirmation_code="DUP00001"))
        with pytest.raises(DuplicateConfirmationCode):
            with sql_store.transaction("tech_1") as txn:
                txn.insert(make_booking("BK-2", start=at(14), confirmation_code="DUP00001"))
        assert sql_store.count() == 1

    def test_exception_rolls_back(self, sql_store):
        with pytest.raises(RuntimeError):
            with sql_store.transaction("tech_1") as txn:
                txn.insert(make_booking())
                raise RuntimeError("abort")
        assert sql_store.count() == 0

    def test_active_bookings_exclude_cancelled(self, sql_store):
        with sql_store.transaction("tech_1") as txn:
            txn.insert(make_booking("BK-1", start=at(9), confirmation_code="CODE0001"))
            txn.insert(make_booking(
                "BK-2", start=at(12), confirmation_code="CODE0002",
                status=BookingStatus.CANCELLED,
            ))
            assert [b.id for b in txn.list_active_bookings("tech_1")] == ["BK-1"]
            assert txn.confirmation_code_exists("CODE0002")
            assert not txn.confirmation_code_exists("CODE9999")

    def test_list_bookings_window(self, sql_store):
        with sql_store.transaction("tech_1") as txn:
            txn.insert(make_booking("BK-MON", start=at(10), confirmation_code="CODE0001"))
            txn.insert(make_booking("BK-TUE", start=at(10, day=1), confirmation_code="CODE0002"))
        rows = sql_store.list_bookings("tech_1", at(0), at(0, day=1))
        assert [b.id for b in rows] == ["BK-MON"]

    def test_count(self, sql_store):
        with sql_store.transaction("tech_1") as txn:
            txn.insert(make_booking("BK-1", confirmation_code="CODE0001"))
            txn.insert(make_booking(
                "BK-2", start=at(14), confirmation_code="CODE0002",
                status=BookingStatus.CANCELLED,
            ))
        assert sql_store.count("tech_1") == 2
        assert sql_store.count("tech_1", include_cancelled=False) == 1
        assert sql_store.count("tech_2") == 0

    def test_in_memory_database(self):
        store = SqlBookingStore("sqlite://")
        try:
            with store.transaction("tech_1") as txn:
                txn.insert(make_booking())
            assert store.count() == 1
        finally:
            store.close()


class TestSqlCoordinator:
    def test_booking_lifecycle(self, sql_coordinator, sql_store):
        created = sql_coordinator.attempt_booking("tech_1", at(10), 60, "plumbing", "CUST-1")
        assert created.ok

        moved = sql_coordinator.reschedule(created.booking.id, at(14))
        assert moved.ok
        assert sql_store.get(created.booking.id).start_time == at(14)

        cancelled = sql_coordinator.cancel(created.booking.id)
        assert cancelled.ok
        assert sql_store.get(created.booking.id).status == BookingStatus.CANCELLED
        assert sql_store.count() == 1

    def test_conflict(self, sql_coordinator):
        first = sql_coordinator.attempt_booking("tech_1", at(10), 60, "plumbing", "CUST-1")
        second = sql_coordinator.attempt_booking("tech_1", at(11), 60, "plumbing", "CUST-2")
        assert second.error == ErrorCode.CONFLICT
        assert second.conflicting_booking.id == first.booking.id

    def test_at_most_one_winner(self, sql_coordinator, sql_store):
        def attempt(n):
            return sql_coordinator.attempt_booking(
                "tech_1", at(10), 60, "plumbing", f"CUST-{n}"
            )

        with ThreadPoolExecutor(max_workers=20) as pool:
            outcomes = list(pool.map(attempt, range(20)))

        assert sum(o.ok for o in outcomes) == 1
        assert all(
            o.ok or o.error in (ErrorCode.CONFLICT, ErrorCode.TRANSIENT_STORE_ERROR)
            for o in outcomes
        )
        assert sql_store.count("tech_1") == 1


class TestSerializationDetection:
    def test_postgres_sqlstate(self):
        class PgError(Exception):
            pgcode = "40001"

        assert _is_serialization_failure(DBAPIError("COMMIT", {}, PgError("abort")))

    def test_sqlite_lock(self):
        exc = OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
        assert _is_serialization_failure(exc)

    def test_other_errors(self):
        exc = OperationalError("SELECT", {}, Exception("no such table: bookings"))
        assert not _is_serialization_failure(exc)
