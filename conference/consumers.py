"""Queue consumers that react to expired confirmations and conference starts."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import pika
import pika.exceptions
import sqlalchemy as sa

from . import schema
from .actions import BookingError, get_conference_by_name
from .messages import ConferenceStartMessage, ConfirmationExpirationMessage
from .models import BookingStatus, PayloadError

log = logging.getLogger(__name__)

CONFIRMATION_TIMER_QUEUE = "confirmation.timer"
CONFIRMATION_WINDOW = timedelta(seconds=10)
CONFIRMATION_TTL_MS = "10000"
PERSISTENT_DELIVERY = 2
DEFAULT_WAITLIST_QUEUE_PREFIX = "conference."

_PROCESSING_ERRORS = (sa.exc.SQLAlchemyError, BookingError)


def _ack(channel: Any, delivery_tag: int) -> None:
    try:
        channel.basic_ack(delivery_tag=delivery_tag, multiple=False)
    except pika.exceptions.AMQPError as exc:
        log.error("Error acknowledging message: %r", exc)


def _nack(channel: Any, delivery_tag: int, requeue: bool) -> None:
    try:
        channel.basic_nack(delivery_tag=delivery_tag, multiple=False, requeue=requeue)
    except pika.exceptions.AMQPError as exc:
        log.error("Error rejecting message: %r", exc)


class ExpiredConfirmationConsumer:
    """Returns bookings whose confirmation window ran out to the end of the waitlist."""

    def __init__(self, engine: sa.Engine) -> None:
        self._engine = engine

    def handle(self, channel: Any, method: Any, properties: Any, body: bytes) -> None:
        """Process one expired-confirmation delivery and ack or reject it."""
        log.info("Processing expired confirmation message")
        tag = method.delivery_tag

        try:
            message = ConfirmationExpirationMessage.from_json(body)
        except PayloadError as exc:
            log.error("Error deserializing expired confirmation message: %s", exc)
            _nack(channel, tag, requeue=False)
            return

        log.info(
            "Confirmation expired for booking %s from conference %s",
            message.booking_id,
            message.conference_name,
        )

        try:
            with self._engine.begin() as conn:
                moved = self.move_booking_to_waitlist_end(
                    conn, message.booking_id, message.conference_name
                )
        except _PROCESSING_ERRORS as exc:
            log.error("Error processing expired confirmation: %s", exc)
            _nack(channel, tag, requeue=True)
            return

        if moved:
            log.info(
                "Moved booking %s back to waitlist for conference %s",
                message.booking_id,
                message.conference_name,
            )
            try:
                with self._engine.begin() as conn:
                    self.promote_next_waitlisted_person(
                        conn, message.conference_name, channel
                    )
            except (*_PROCESSING_ERRORS, pika.exceptions.AMQPError) as exc:
                log.error(
                    "Failed to promote next waitlisted person for '%s': %s",
                    message.conference_name,
                    exc,
                )
        else:
            log.info(
                "Booking %s was not in confirmation pending state", message.booking_id
            )
        _ack(channel, tag)

    def move_booking_to_waitlist_end(
        self, conn: sa.Connection, booking_id: int, conference_name: str
    ) -> bool:
        """Put a pending booking back at the end of the waitlist; False if not pending."""
        bookings = schema.bookings
        conference = get_conference_by_name(conn, conference_name)

        highest = conn.execute(
            sa.select(sa.func.max(bookings.c.waitlist_position))
            .where(bookings.c.conference_id == conference.conference_id)
            .where(bookings.c.status == BookingStatus.WAITLISTED)
        ).scalar()
        new_position = (highest or 0) + 1

        result = conn.execute(
            sa.update(bookings)
            .where(bookings.c.booking_id == booking_id)
            .where(bookings.c.status == BookingStatus.CONFIRMATION_PENDING)
            .values(
                status=BookingStatus.WAITLISTED,
                can_confirm=False,
                waitlist_confirmation_deadline=None,
                waitlist_position=new_position,
            )
        )
        return result.rowcount > 0

    def promote_next_waitlisted_person(
        self, conn: sa.Connection, conference_name: str, channel: Any
    ) -> None:
        """Offer a free slot to the first waitlisted booking and start its timer."""
        bookings = schema.bookings
        conference = get_conference_by_name(conn, conference_name)

        if conference.available_slots <= 0:
            log.info(
                "No available slots in conference '%s' - skipping auto-promotion",
                conference_name,
            )
            return

        booking_id = conn.execute(
            sa.select(bookings.c.booking_id)
            .where(bookings.c.conference_id == conference.conference_id)
            .where(bookings.c.status == BookingStatus.WAITLISTED)
            .order_by(bookings.c.waitlist_position.asc())
            .limit(1)
        ).scalar()

        if booking_id is None:
            log.info(
                "No more waitlisted bookings for conference '%s' - waitlist exhausted",
                conference_name,
            )
            return

        deadline = datetime.now(timezone.utc) + CONFIRMATION_WINDOW
        conn.execute(
            sa.update(bookings)
            .where(bookings.c.booking_id == booking_id)
            .values(
                waitlist_confirmation_deadline=deadline.replace(tzinfo=None),
                can_confirm=True,
                status=BookingStatus.CONFIRMATION_PENDING,
                waitlist_position=None,
            )
        )

        message = ConfirmationExpirationMessage(
            booking_id=booking_id,
            expiration_time=deadline,
            conference_name=conference_name,
        )
        channel.basic_publish(
            exchange="",
            routing_key=CONFIRMATION_TIMER_QUEUE,
            body=message.to_json().encode("utf-8"),
            properties=pika.BasicProperties(
                delivery_mode=PERSISTENT_DELIVERY,
                expiration=CONFIRMATION_TTL_MS,
            ),
        )
        log.info(
            "Auto-promoted booking %s from waitlist for conference '%s' "
            "(slots available: %s). Confirmation expires at %s",
            booking_id,
            conference_name,
            conference.available_slots,
            deadline,
        )


class ConferenceStartConsumer:
    """Cancels outstanding waitlist places once a conference has begun."""

    def __init__(
        self, engine: sa.Engine, waitlist_queue_prefix: str = DEFAULT_WAITLIST_QUEUE_PREFIX
    ) -> None:
        self._engine = engine
        self.waitlist_queue_prefix = waitlist_queue_prefix

    def handle(self, channel: Any, method: Any, properties: Any, body: bytes) -> None:
        """Process one conference-start delivery and ack or reject it."""
        log.info("Processing conference start event")
        tag = method.delivery_tag

        try:
            message = ConferenceStartMessage.from_json(body)
        except PayloadError as exc:
            log.error("Error deserializing conference start message: %s", exc)
            _nack(channel, tag, requeue=False)
            return

        log.info(
            "Conference '%s' has started at %s",
            message.conference_name,
            message.start_time,
        )

        try:
            with self._engine.begin() as conn:
                cancelled = self.process_conference_start(
                    conn, message.conference_name, channel
                )
        except _PROCESSING_ERRORS as exc:
            log.error("Error processing conference start: %s", exc)
            _nack(channel, tag, requeue=True)
            return

        if cancelled > 0:
            log.info(
                "Cancelled %s waitlisted bookings and cleaned up queue for conference '%s'",
                cancelled,
                message.conference_name,
            )
        _ack(channel, tag)

    def process_conference_start(
        self, conn: sa.Connection, conference_name: str, channel: Any
    ) -> int:
        """Cancel waitlisted and pending bookings, drop the waitlist queue, return the count."""
        bookings = schema.bookings
        conference = get_conference_by_name(conn, conference_name)

        result = conn.execute(
            sa.update(bookings)
            .where(bookings.c.conference_id == conference.conference_id)
            .where(
                bookings.c.status.in_(
                    [BookingStatus.WAITLISTED, BookingStatus.CONFIRMATION_PENDING]
                )
            )
            .values(
                status=BookingStatus.CANCELED,
                canceled_at=datetime.now(timezone.utc).replace(tzinfo=None),
                waitlist_position=None,
                can_confirm=False,
                waitlist_confirmation_deadline=None,
            )
        )

        queue_name = f"{self.waitlist_queue_prefix}{conference_name}.waitlist"
        try:
            channel.queue_delete(queue=queue_name, if_unused=False, if_empty=False)
        except pika.exceptions.AMQPError as exc:
            log.warning("Could not delete queue %s: %r", queue_name, exc)
        else:
            log.info("Deleted queue: %s", queue_name)

        return result.rowcount