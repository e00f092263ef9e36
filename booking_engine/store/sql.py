"""
SQLAlchemy booking store.

PostgreSQL runs every transaction at SERIALIZABLE and additionally takes
a transaction-scoped advisory lock keyed by technician_id. SQLite opens
every transaction with BEGIN IMMEDIATE, which serializes writers on the
database file. Backend serialization and lock failures are raised as
SerializationFailure so the coordinator can retry them.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from booking_engine.config import settings
from booking_engine.errors import (
    BookingNotFoundError,
    DuplicateConfirmationCode,
    SerializationFailure,
)
from booking_engine.schemas.booking_schema import Booking, BookingStatus
from booking_engine.store.base import BookingStore, StoreTransaction

logger = logging.getLogger(__name__)

SERIALIZATION_SQLSTATES = {"40001", "40P01"}
LOCK_MESSAGES = ("database is locked", "could not serialize", "deadlock detected")


class Base(DeclarativeBase):
    pass


class UTCDateTime(TypeDecorator):
    """Stores UTC; always hands back timezone-aware UTC datetimes."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class BookingRow(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("confirmation_code", name="uq_bookings_confirmation_code"),
        Index("ix_bookings_technician_start", "technician_id", "start_time"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    customer_id: Mapped[str] = mapped_column(Text)
    technician_id: Mapped[str] = mapped_column(String(64))
    service_type: Mapped[str] = mapped_column(String(64))
    start_time: Mapped[datetime] = mapped_column(UTCDateTime())
    duration_minutes: Mapped[int] = mapped_column(Integer)
    status: Mapped[BookingStatus] = mapped_column(
        SAEnum(
            BookingStatus,
            native_enum=False,
            length=16,
            values_callable=lambda enum: [m.value for m in enum],
        ),
        default=BookingStatus.PENDING,
    )
    confirmation_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime())
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime())


def _to_booking(row: BookingRow) -> Booking:
    return Booking(
        id=row.id,
        customer_id=row.customer_id,
        technician_id=row.technician_id,
        service_type=row.service_type,
        start_time=row.start_time,
        duration_minutes=row.duration_minutes,
        status=row.status,
        confirmation_code=row.confirmation_code,
        notes=row.notes,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _copy_into(row: BookingRow, booking: Booking) -> BookingRow:
    row.customer_id = booking.customer_id
    row.technician_id = booking.technician_id
    row.service_type = booking.service_type
    row.start_time = booking.start_time
    row.duration_minutes = booking.duration_minutes
    row.status = booking.status
    row.confirmation_code = booking.confirmation_code
    row.notes = booking.notes
    row.created_at = booking.created_at
    row.updated_at = booking.updated_at
    return row


def _is_serialization_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in SERIALIZATION_SQLSTATES:
        return True
    message = str(orig or exc).lower()
    return any(m in message for m in LOCK_MESSAGES)


def _enable_sqlite_immediate_transactions(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN so every transaction takes the write lock up front."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class _SqlTransaction(StoreTransaction):
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_active_bookings(self, technician_id: str) -> list[Booking]:
        rows = self._session.scalars(
            select(BookingRow)
            .where(BookingRow.technician_id == technician_id)
            .where(BookingRow.status != BookingStatus.CANCELLED)
            .order_by(BookingRow.start_time)
        )
        return [_to_booking(r) for r in rows]

    def get(self, booking_id: str) -> Optional[Booking]:
        row = self._session.get(BookingRow, booking_id)
        return _to_booking(row) if row else None

    def insert(self, booking: Booking) -> Booking:
        row = _copy_into(BookingRow(id=booking.id), booking)
        self._session.add(row)
        self._session.flush()
        return booking

    def update(self, booking: Booking) -> Booking:
        row = self._session.get(BookingRow, booking.id)
        if row is None:
            raise BookingNotFoundError(booking.id)
        _copy_into(row, booking)
        self._session.flush()
        return booking

    def confirmation_code_exists(self, code: str) -> bool:
        found = self._session.scalar(
            select(BookingRow.id).where(BookingRow.confirmation_code == code).limit(1)
        )
        return found is not None


class SqlBookingStore(BookingStore):
    """Booking store on any SQLAlchemy-supported database."""

    def __init__(self, url: str, echo: bool = False, create_schema: bool = True) -> None:
        self.url = url
        is_sqlite = url.startswith("sqlite")
        in_memory = is_sqlite and (":memory:" in url or url.rstrip("/") == "sqlite:")
        if is_sqlite:
            kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
            if in_memory:
                kwargs["poolclass"] = StaticPool
            self.engine = create_engine(url, echo=echo, **kwargs)
            _enable_sqlite_immediate_transactions(self.engine)
        else:
            self.engine = create_engine(
                url, echo=echo, pool_pre_ping=True, isolation_level="SERIALIZABLE"
            )
        # A shared in-memory connection cannot host two transactions at once
        self._connection_lock = threading.Lock() if in_memory else None
        if create_schema:
            Base.metadata.create_all(self.engine)

    @classmethod
    def from_config(cls) -> "SqlBookingStore":
        if not settings.store.database_url:
            raise ValueError("DATABASE_URL is not set")
        return cls(settings.store.database_url)

    def _guard(self):
        return self._connection_lock if self._connection_lock is not None else nullcontext()

    @contextmanager
    def transaction(self, technician_id: str) -> Iterator[StoreTransaction]:
        with self._guard():
            try:
                with Session(self.engine, expire_on_commit=False) as session, session.begin():
                    if self.engine.dialect.name == "postgresql":
                        session.execute(
                            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                            {"key": technician_id},
                        )
                    yield _SqlTransaction(session)
            except IntegrityError as exc:
                if "confirmation_code" in str(exc.orig).lower():
                    raise DuplicateConfirmationCode(str(exc.orig)) from exc
                raise
            except DBAPIError as exc:
                if _is_serialization_failure(exc):
                    raise SerializationFailure(str(exc.orig)) from exc
                raise

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        with self._guard():
            with Session(self.engine) as session:
                yield session

    def get(self, booking_id: str) -> Optional[Booking]:
        with self._read_session() as session:
            row = session.get(BookingRow, booking_id)
            return _to_booking(row) if row else None

    def list_bookings(
        self,
        technician_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        include_cancelled: bool = False,
    ) -> list[Booking]:
        query = select(BookingRow).where(BookingRow.technician_id == technician_id)
        if not include_cancelled:
            query = query.where(BookingRow.status != BookingStatus.CANCELLED)
        if start is not None:
            query = query.where(BookingRow.start_time >= start)
        if end is not None:
            query = query.where(BookingRow.start_time < end)
        with self._read_session() as session:
            return [_to_booking(r) for r in session.scalars(query.order_by(BookingRow.start_time))]

    def count(self, technician_id: Optional[str] = None, include_cancelled: bool = True) -> int:
        query = select(func.count()).select_from(BookingRow)
        if technician_id is not None:
            query = query.where(BookingRow.technician_id == technician_id)
        if not include_cancelled:
            query = query.where(BookingRow.status != BookingStatus.CANCELLED)
        with self._read_session() as session:
            return int(session.scalar(query) or 0)

    def close(self) -> None:
        self.engine.dispose()
