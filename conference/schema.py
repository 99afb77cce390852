"""Relational schema for users, conferences, topics and bookings."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.pool import StaticPool

from .models import BookingStatus

metadata = sa.MetaData()

booking_status = sa.Enum(
    BookingStatus,
    name="booking_status",
    values_callable=lambda kinds: [kind.value for kind in kinds],
)

users = sa.Table(
    "users",
    metadata,
    sa.Column("user_id", sa.String(255), primary_key=True),
    sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
)

user_interests = sa.Table(
    "user_interests",
    metadata,
    sa.Column("user_id", sa.String(255), sa.ForeignKey("users.user_id"), primary_key=True),
    sa.Column("topic", sa.String(255), primary_key=True),
)

conferences = sa.Table(
    "conferences",
    metadata,
    sa.Column("conference_id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String(255), nullable=False, unique=True),
    sa.Column("location", sa.String(255), nullable=False),
    sa.Column("start_timestamp", sa.DateTime, nullable=False),
    sa.Column("end_timestamp", sa.DateTime, nullable=False),
    sa.Column("total_slots", sa.Integer, nullable=False),
    sa.Column("available_slots", sa.Integer, nullable=False),
    sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
)

conference_topics = sa.Table(
    "conference_topics",
    metadata,
    sa.Column(
        "conference_id",
        sa.Integer,
        sa.ForeignKey("conferences.conference_id"),
        primary_key=True,
    ),
    sa.Column("topic", sa.String(255), primary_key=True),
)

bookings = sa.Table(
    "bookings",
    metadata,
    sa.Column("booking_id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("conference_id", sa.Integer, sa.ForeignKey("conferences.conference_id")),
    sa.Column("user_id", sa.String(255), sa.ForeignKey("users.user_id")),
    sa.Column("status", booking_status, nullable=False),
    sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    sa.Column("waitlist_confirmation_deadline", sa.DateTime),
    sa.Column("canceled_at", sa.DateTime),
    sa.Column("can_confirm", sa.Boolean),
    sa.Column("waitlist_position", sa.Integer),
)


def _enable_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url) -> sa.Engine:
    """Create an engine; SQLite gets foreign keys and a shared in-memory pool."""
    parsed = sa.engine.make_url(url)
    options = {}
    is_sqlite = parsed.get_backend_name() == "sqlite"
    if is_sqlite and parsed.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    engine = sa.create_engine(parsed, **options)
    if is_sqlite:
        sa.event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def create_all(engine: sa.Engine) -> None:
    """Create every table that does not exist yet."""
    metadata.create_all(engine)