"""Database queries and writes for users, conferences and booking lookups."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterable, Iterator

import sqlalchemy as sa

from . import schema
from .models import (
    TIMESTAMP_FORMAT,
    Booking,
    BookingStatus,
    Conference,
    NewConference,
    User,
)

MAX_CONFERENCE_DURATION = timedelta(hours=12)
MAX_CONFERENCE_TOPICS = 10


class BookingError(Exception):
    """A request that breaks a business rule of the booking service."""


class NotFoundError(BookingError, LookupError):
    """The requested record does not exist."""

    def __init__(self, message: str = "Record not found") -> None:
        super().__init__(message)


@contextmanager
def _transaction(conn: sa.Connection) -> Iterator[sa.Connection]:
    """Run a block atomically, as a savepoint when a transaction is already open."""
    scope = conn.begin_nested() if conn.in_transaction() else conn.begin()
    with scope:
        yield conn


def _parse_timestamp(text: str) -> datetime:
    try:
        return datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError as exc:
        raise BookingError(str(exc)) from exc


def _one(conn: sa.Connection, query: sa.Select):
    row = conn.execute(query).first()
    if row is None:
        raise NotFoundError()
    return row


def insert_new_user(conn: sa.Connection, user_id: str, topics: Iterable[str]) -> User:
    """Create a user together with their topics of interest."""
    topic_rows = [{"user_id": user_id, "topic": topic} for topic in topics]
    with _transaction(conn):
        conn.execute(sa.insert(schema.users).values(user_id=user_id))
        if topic_rows:
            conn.execute(sa.insert(schema.user_interests), topic_rows)
    return User(user_id=user_id)


def create_new_conference(conn: sa.Connection, form: NewConference) -> Conference:
    """Validate and store a new conference with all of its slots available."""
    start_time = _parse_timestamp(form.start)
    end_time = _parse_timestamp(form.end)

    if start_time >= end_time:
        raise BookingError("Start timestamp must be before end timestamp")
    if end_time - start_time > MAX_CONFERENCE_DURATION:
        raise BookingError("Duration should not exceed 12 hours")
    if form.slots <= 0:
        raise BookingError("Available slots must be greater than 0")
    if len(form.topics) > MAX_CONFERENCE_TOPICS:
        raise BookingError("Maximum 10 topics allowed")

    conferences = schema.conferences
    with _transaction(conn):
        result = conn.execute(
            sa.insert(conferences).values(
                name=form.name,
                location=form.location,
                start_timestamp=start_time,
                end_timestamp=end_time,
                total_slots=form.slots,
                available_slots=form.slots,
            )
        )
        conference_id = result.inserted_primary_key[0]
        topic_rows = [{"conference_id": conference_id, "topic": t} for t in form.topics]
        if topic_rows:
            conn.execute(sa.insert(schema.conference_topics), topic_rows)
        row = _one(
            conn,
            sa.select(conferences).where(conferences.c.conference_id == conference_id),
        )
    return Conference.from_row(row)


def get_conference_by_name(conn: sa.Connection, name: str) -> Conference:
    """Look up a conference by its unique name."""
    conferences = schema.conferences
    row = _one(conn, sa.select(conferences).where(conferences.c.name == name).limit(1))
    return Conference.from_row(row)


def get_user_by_id(conn: sa.Connection, user_id: str) -> User:
    """Look up a user by id."""
    users = schema.users
    row = _one(
        conn, sa.select(users.c.user_id).where(users.c.user_id == user_id).limit(1)
    )
    return User(user_id=row.user_id)


def check_user_has_overlapping_booking(
    conn: sa.Connection, user_id: str, start: datetime, end: datetime
) -> int | None:
    """Return the id of an active booking of the user that overlaps the interval."""
    bookings, conferences = schema.bookings, schema.conferences
    query = (
        sa.select(bookings.c.booking_id)
        .select_from(bookings.join(conferences))
        .where(bookings.c.user_id == user_id)
        .where(bookings.c.status != BookingStatus.CANCELED)
        .where(conferences.c.start_timestamp < end)
        .where(conferences.c.end_timestamp > start)
        .limit(1)
    )
    return conn.execute(query).scalar()


def check_existing_active_booking(
    conn: sa.Connection, user_id: str, conference_id: int
) -> int | None:
    """Return the id of the user's non-canceled booking for a conference."""
    bookings = schema.bookings
    query = (
        sa.select(bookings.c.booking_id)
        .where(bookings.c.user_id == user_id)
        .where(bookings.c.conference_id == conference_id)
        .where(bookings.c.status != BookingStatus.CANCELED)
        .limit(1)
    )
    return conn.execute(query).scalar()


def get_booking_by_id(conn: sa.Connection, booking_id: int) -> Booking:
    """Look up a booking by id."""
    bookings = schema.bookings
    row = _one(conn, sa.select(bookings).where(bookings.c.booking_id == booking_id))
    return Booking.from_row(row)


def get_booking_with_conference_name(
    conn: sa.Connection, booking_id: int
) -> tuple[Booking, str]:
    """Return a booking along with the name of its conference."""
    bookings, conferences = schema.bookings, schema.conferences
    query = (
        sa.select(bookings, conferences.c.name.label("conference_name"))
        .select_from(bookings.join(conferences))
        .where(bookings.c.booking_id == booking_id)
        .limit(1)
    )
    row = _one(conn, query)
    return Booking.from_row(row), row.conference_name


def get_next_waitlist_booking(conn: sa.Connection, conference_id: int) -> Booking | None:
    """Return the waitlisted booking first in line that has not been offered a slot."""
    bookings = schema.bookings
    query = (
        sa.select(bookings)
        .where(bookings.c.conference_id == conference_id)
        .where(bookings.c.status == BookingStatus.WAITLISTED)
        .where(bookings.c.can_confirm == sa.false())
        .order_by(bookings.c.waitlist_position.asc())
        .limit(1)
    )
    row = conn.execute(query).first()
    return None if row is None else Booking.from_row(row)