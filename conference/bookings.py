"""Booking lifecycle: confirming, waitlisting, promoting and canceling seats."""

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa

from . import schema
from .actions import BookingError, _one, _transaction, get_booking_by_id
from .models import Booking, BookingStatus, Conference


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _cleared_waitlist_fields() -> dict:
    return {
        "waitlist_position": None,
        "can_confirm": False,
        "waitlist_confirmation_deadline": None,
    }


def _adjust_slots(conn: sa.Connection, conference_id: int, delta: int) -> None:
    conferences = schema.conferences
    conn.execute(
        sa.update(conferences)
        .where(conferences.c.conference_id == conference_id)
        .values(available_slots=conferences.c.available_slots + delta)
    )


def _insert_booking(
    conn: sa.Connection,
    conference_id: int,
    user_id: str,
    status: BookingStatus,
    waitlist_position: int | None,
) -> Booking:
    result = conn.execute(
        sa.insert(schema.bookings).values(
            conference_id=conference_id,
            user_id=user_id,
            status=status,
            waitlist_position=waitlist_position,
            can_confirm=False,
        )
    )
    return get_booking_by_id(conn, result.inserted_primary_key[0])


def _next_waitlist_position(conn: sa.Connection, conference_id: int) -> int:
    bookings = schema.bookings
    highest = conn.execute(
        sa.select(sa.func.max(bookings.c.waitlist_position))
        .where(bookings.c.conference_id == conference_id)
        .where(bookings.c.status == BookingStatus.WAITLISTED)
    ).scalar()
    return (highest or 0) + 1


def _append_to_waitlist(conn: sa.Connection, conference_id: int, user_id: str) -> Booking:
    position = _next_waitlist_position(conn, conference_id)
    return _insert_booking(
        conn, conference_id, user_id, BookingStatus.WAITLISTED, position
    )


def _count_with_status(
    conn: sa.Connection, conference_id: int, status: BookingStatus
) -> int:
    bookings = schema.bookings
    return conn.execute(
        sa.select(sa.func.count())
        .select_from(bookings)
        .where(bookings.c.conference_id == conference_id)
        .where(bookings.c.status == status)
    ).scalar_one()


def _check_confirmable(booking: Booking) -> int:
    if booking.status is not BookingStatus.CONFIRMATION_PENDING:
        raise BookingError("Booking is not in confirmation pending state")
    if not booking.can_confirm:
        raise BookingError("Booking cannot be confirmed at this time")
    if booking.conference_id is None:
        raise BookingError("Booking has no conference")
    return booking.conference_id


def _mark_confirmed(conn: sa.Connection, booking_id: int, conference_id: int) -> Booking:
    bookings = schema.bookings
    _adjust_slots(conn, conference_id, -1)
    conn.execute(
        sa.update(bookings)
        .where(bookings.c.booking_id == booking_id)
        .values(status=BookingStatus.CONFIRMED, **_cleared_waitlist_fields())
    )
    return get_booking_by_id(conn, booking_id)


def create_confirmed_booking(
    conn: sa.Connection, conference_id: int, user_id: str
) -> Booking:
    """Take one slot of the conference and record a confirmed booking."""
    with _transaction(conn):
        _adjust_slots(conn, conference_id, -1)
        return _insert_booking(
            conn, conference_id, user_id, BookingStatus.CONFIRMED, None
        )


def create_waitlist_booking(
    conn: sa.Connection, conference_id: int, user_id: str
) -> Booking:
    """Put the user at the end of the conference's waitlist."""
    with _transaction(conn):
        return _append_to_waitlist(conn, conference_id, user_id)


def confirm_waitlist_booking(conn: sa.Connection, booking_id: int) -> Booking:
    """Confirm a booking that has been offered a slot."""
    with _transaction(conn):
        booking = get_booking_by_id(conn, booking_id)
        conference_id = _check_confirmable(booking)
        return _mark_confirmed(conn, booking_id, conference_id)


def confirm_waitlist_booking_secure(
    conn: sa.Connection, booking_id: int, user_id: str
) -> Booking:
    """Confirm an offered slot, only for the booking's owner and before the deadline."""
    with _transaction(conn):
        booking = get_booking_by_id(conn, booking_id)

        if booking.user_id is None:
            raise BookingError("Booking has no associated user")
        if booking.user_id != user_id:
            raise BookingError(
                f"Access denied: booking {booking_id} belongs to user "
                f"'{booking.user_id}', not '{user_id}'"
            )

        conference_id = _check_confirmable(booking)

        deadline = booking.waitlist_confirmation_deadline
        if deadline is not None and _utcnow() > deadline:
            raise BookingError("Confirmation deadline has expired")

        return _mark_confirmed(conn, booking_id, conference_id)


def cancel_booking(conn: sa.Connection, booking_id: int) -> Booking:
    """Cancel a booking, giving its slot back if it was confirmed."""
    bookings = schema.bookings
    with _transaction(conn):
        booking = get_booking_by_id(conn, booking_id)

        if booking.status is BookingStatus.CANCELED:
            raise BookingError("Booking is already canceled")

        if booking.status is BookingStatus.CONFIRMED and booking.conference_id is not None:
            _adjust_slots(conn, booking.conference_id, 1)

        conn.execute(
            sa.update(bookings)
            .where(bookings.c.booking_id == booking_id)
            .values(
                status=BookingStatus.CANCELED,
                canceled_at=_utcnow(),
                **_cleared_waitlist_fields(),
            )
        )
        return get_booking_by_id(conn, booking_id)


def update_booking_can_confirm(
    conn: sa.Connection,
    booking_id: int,
    can_confirm: bool,
    deadline: datetime | None,
) -> None:
    """Set whether a booking may be confirmed and until when."""
    bookings = schema.bookings
    conn.execute(
        sa.update(bookings)
        .where(bookings.c.booking_id == booking_id)
        .values(can_confirm=can_confirm, waitlist_confirmation_deadline=deadline)
    )


def remove_from_overlapping_waitlists(
    conn: sa.Connection,
    user_id: str,
    start: datetime,
    end: datetime,
    exclude_conference_id: int,
) -> None:
    """Cancel the user's waitlist places in other conferences overlapping the interval."""
    bookings, conferences = schema.bookings, schema.conferences
    with _transaction(conn):
        overlapping = conn.execute(
            sa.select(bookings.c.booking_id)
            .select_from(bookings.join(conferences))
            .where(bookings.c.user_id == user_id)
            .where(bookings.c.status == BookingStatus.WAITLISTED)
            .where(conferences.c.conference_id != exclude_conference_id)
            .where(conferences.c.start_timestamp < end)
            .where(conferences.c.end_timestamp > start)
        ).scalars().all()

        if overlapping:
            conn.execute(
                sa.update(bookings)
                .where(bookings.c.booking_id.in_(overlapping))
                .values(
                    status=BookingStatus.CANCELED,
                    canceled_at=_utcnow(),
                    **_cleared_waitlist_fields(),
                )
            )


def auto_cancel_expired_conferences(conn: sa.Connection) -> list[str]:
    """Cancel waitlisted bookings of started conferences; return the names affected."""
    bookings, conferences = schema.bookings, schema.conferences
    now = _utcnow()
    updated: list[str] = []
    with _transaction(conn):
        started = conn.execute(
            sa.select(conferences.c.conference_id, conferences.c.name).where(
                conferences.c.start_timestamp <= now
            )
        ).all()

        for conference_id, name in started:
            result = conn.execute(
                sa.update(bookings)
                .where(bookings.c.conference_id == conference_id)
                .where(bookings.c.status == BookingStatus.WAITLISTED)
                .values(
                    status=BookingStatus.CANCELED,
                    canceled_at=now,
                    **_cleared_waitlist_fields(),
                )
            )
            if result.rowcount > 0:
                updated.append(name)
    return updated


def create_booking_atomic(
    conn: sa.Connection, conference_id: int, user_id: str
) -> Booking:
    """Book a conference, confirming only when a slot is free and nobody is queued."""
    bookings, conferences = schema.bookings, schema.conferences
    with _transaction(conn):
        conference = Conference.from_row(
            _one(
                conn,
                sa.select(conferences)
                .where(conferences.c.conference_id == conference_id)
                .with_for_update(),
            )
        )

        existing = conn.execute(
            sa.select(bookings.c.booking_id)
            .where(bookings.c.user_id == user_id)
            .where(bookings.c.conference_id == conference_id)
            .where(bookings.c.status != BookingStatus.CANCELED)
            .limit(1)
            .with_for_update()
        ).scalar()
        if existing is not None:
            raise BookingError("User already has an active booking for this conference")

        pending = _count_with_status(
            conn, conference_id, BookingStatus.CONFIRMATION_PENDING
        )
        waitlisted = _count_with_status(conn, conference_id, BookingStatus.WAITLISTED)

        if conference.available_slots > 0 and pending == 0 and waitlisted == 0:
            _adjust_slots(conn, conference_id, -1)
            return _insert_booking(
                conn, conference_id, user_id, BookingStatus.CONFIRMED, None
            )
        return _append_to_waitlist(conn, conference_id, user_id)