from datetime import datetime

import pytest
import sqlalchemy as sa

from conference.models import Booking, BookingStatus
from conference.schema import (
    bookings,
    conference_topics,
    conferences,
    create_all,
    make_engine,
    user_interests,
    users,
)


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    create_all(eng)
    yield eng
    eng.dispose()


def _add_conference(conn, name):
    return conn.execute(
        conferences.insert()
        .values(
            name=name,
            location="Hall",
            start_timestamp=datetime(2030, 1, 1, 10),
            end_timestamp=datetime(2030, 1, 1, 12),
            total_slots=2,
            available_slots=2,
        )
        .returning(conferences.c.conference_id)
    ).scalar_one()


def test_user_created_at_is_filled(engine):
    with engine.begin() as conn:
        conn.execute(users.insert().values(user_id="alice"))
    with engine.connect() as conn:
        row = conn.execute(sa.select(users)).one()
    assert row.user_id == "alice"
    assert isinstance(row.created_at, datetime) and row.created_at.year >= 2000


def test_conference_ids_increase(engine):
    with engine.begin() as conn:
        first = _add_conference(conn, "One")
        second = _add_conference(conn, "Two")
    assert second > first


def test_conference_name_unique(engine):
    with engine.begin() as conn:
        _add_conference(conn, "Same")
    with pytest.raises(sa.exc.IntegrityError):
        with engine.begin() as conn:
            _add_conference(conn, "Same")


def test_duplicate_user_rejected(engine):
    with engine.begin() as conn:
        conn.execute(users.insert().values(user_id="bob"))
    with pytest.raises(sa.exc.IntegrityError):
        with engine.begin() as conn:
            conn.execute(users.insert().values(user_id="bob"))


def test_booking_foreign_key_enforced(engine):
    with pytest.raises(sa.exc.IntegrityError):
        with engine.begin() as conn:
            conn.execute(
                bookings.insert().values(
                    conference_id=999, user_id="ghost", status=BookingStatus.CONFIRMED
                )
            )


def test_topic_foreign_keys_enforced(engine):
    with pytest.raises(sa.exc.IntegrityError):
        with engine.begin() as conn:
            conn.execute(user_interests.insert().values(user_id="ghost", topic="rust"))
    with pytest.raises(sa.exc.IntegrityError):
        with engine.begin() as conn:
            conn.execute(conference_topics.insert().values(conference_id=999, topic="rust"))


def test_booking_status_round_trip(engine):
    with engine.begin() as conn:
        conn.execute(users.insert().values(user_id="alice"))
        conf_id = _add_conference(conn, "Conf")
        conn.execute(
            bookings.insert().values(
                conference_id=conf_id,
                user_id="alice",
                status=BookingStatus.CONFIRMATION_PENDING,
                can_confirm=True,
            )
        )
    with engine.connect() as conn:
        booking = Booking.from_row(conn.execute(sa.select(bookings)).one())
        raw = conn.execute(sa.text("SELECT status FROM bookings")).scalar_one()
    assert booking.status is BookingStatus.CONFIRMATION_PENDING
    assert booking.can_confirm is True
    assert booking.conference_id == conf_id
    assert raw == BookingStatus.CONFIRMATION_PENDING.value


def test_memory_database_shared_between_connections(engine):
    with engine.begin() as conn:
        conn.execute(users.insert().values(user_id="carol"))
    with engine.connect() as conn:
        names = conn.execute(sa.select(users.c.user_id)).scalars().all()
    assert names == ["carol"]


def test_file_database_persists(tmp_path):
    url = f"sqlite:///{tmp_path / 'bookings.db'}"
    first = make_engine(url)
    create_all(first)
    with first.begin() as conn:
        conn.execute(users.insert().values(user_id="dave"))
    first.dispose()
    second = make_engine(url)
    create_all(second)
    with second.connect() as conn:
        names = conn.execute(sa.select(users.c.user_id)).scalars().all()
    second.dispose()
    assert names == ["dave"]