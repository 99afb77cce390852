import json
from datetime import datetime, timedelta, timezone

import pytest

from conference.messages import (
    ConferenceStartMessage,
    ConfirmationExpirationMessage,
    SlotAvailableMessage,
)
from conference.models import PayloadError

UTC = timezone.utc


def test_conference_start_wire_format():
    message = ConferenceStartMessage("Rust Conf", datetime(2024, 5, 1, 9, 0, tzinfo=UTC))
    assert message.to_json() == '{"conference_name":"Rust Conf","start_time":"2024-05-01T09:00:00Z"}'


def test_slot_available_round_trip_and_field_order():
    message = SlotAvailableMessage(4, "alice", "Conf", datetime(2024, 5, 1, 9, 0, 1, tzinfo=UTC))
    text = message.to_json()
    assert list(json.loads(text)) == ["booking_id", "user_id", "conference_name", "confirmation_deadline"]
    assert SlotAvailableMessage.from_json(text) == message


def test_expiration_round_trip_with_microseconds():
    message = ConfirmationExpirationMessage(12, datetime(2024, 5, 1, 9, 0, 0, 123456, tzinfo=UTC), "Conf")
    assert ConfirmationExpirationMessage.from_json(message.to_json().encode()) == message


def test_millisecond_fraction_is_three_digits():
    message = ConferenceStartMessage("Conf", datetime(2024, 5, 1, 9, 0, 0, 500000, tzinfo=UTC))
    assert json.loads(message.to_json())["start_time"].endswith("09:00:00.500Z")


def test_offset_converted_to_utc():
    plus_two = timezone(timedelta(hours=2))
    body = b'{"conference_name":"Conf","start_time":"2024-05-01T09:00:00+02:00"}'
    message = ConferenceStartMessage.from_json(body)
    assert message.start_time == datetime(2024, 5, 1, 9, 0, tzinfo=plus_two)
    assert message.start_time.utcoffset() == timedelta(0)


def test_nanosecond_fraction_truncated():
    body = '{"booking_id":1,"expiration_time":"2024-05-01T09:00:00.123456789Z","conference_name":"Conf"}'
    message = ConfirmationExpirationMessage.from_json(body)
    assert message.expiration_time.microsecond == 123456


def test_aware_non_utc_serialised_as_utc_round_trip():
    local = datetime(2024, 5, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))
    message = ConferenceStartMessage("Conf", local)
    assert json.loads(message.to_json())["start_time"].endswith("Z")
    assert ConferenceStartMessage.from_json(message.to_json()).start_time == local


def test_naive_datetime_rejected():
    with pytest.raises(ValueError):
        ConferenceStartMessage("Conf", datetime(2024, 5, 1, 9, 0))


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[1, 2]",
        b'{"conference_name":"Conf"}',
        b'{"conference_name":"Conf","start_time":"yesterday"}',
        b'{"conference_name":5,"start_time":"2024-05-01T09:00:00Z"}',
        b"\xff\xfe",
    ],
)
def test_malformed_conference_start(body):
    with pytest.raises(PayloadError):
        ConferenceStartMessage.from_json(body)


def test_boolean_booking_id_rejected():
    body = '{"booking_id":true,"user_id":"a","conference_name":"C","confirmation_deadline":"2024-05-01T09:00:00Z"}'
    with pytest.raises(PayloadError, match="booking_id"):
        SlotAvailableMessage.from_json(body)


def test_invalid_calendar_date_rejected():
    body = '{"booking_id":1,"expiration_time":"2024-02-31T09:00:00Z","conference_name":"Conf"}'
    with pytest.raises(PayloadError, match="expiration_time"):
        ConfirmationExpirationMessage.from_json(body)