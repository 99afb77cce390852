"""Domain records and the JSON payloads of the booking service."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


class PayloadError(ValueError):
    """A request or message body that does not have the expected shape."""


class BookingStatus(enum.Enum):
    """Lifecycle state of a booking; values are the database labels."""

    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    CANCELED = "CANCELED"
    CONFIRMATION_PENDING = "CONFIRMATION_PENDING"

    def to_json(self) -> str:
        """Name used for this status in API responses."""
        if self is BookingStatus.CONFIRMATION_PENDING:
            return "ConfirmationPending"
        return self.value


def _fraction(microsecond: int) -> str:
    if microsecond == 0:
        return ""
    if microsecond % 1000 == 0:
        return f".{microsecond // 1000:03d}"
    return f".{microsecond:06d}"


def _timestamp_json(value: datetime | None) -> str | None:
    """Render a naive timestamp the way API responses carry it."""
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%S") + _fraction(value.microsecond)


def _object(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise PayloadError("invalid type: expected a JSON object")
    return data


def _field(data: Mapping[str, Any], name: str) -> Any:
    try:
        return data[name]
    except KeyError:
        raise PayloadError(f"missing field `{name}`") from None


def _str(data: Mapping[str, Any], name: str) -> str:
    value = _field(data, name)
    if not isinstance(value, str):
        raise PayloadError(f"invalid type for `{name}`: expected a string")
    return value


def _i32(data: Mapping[str, Any], name: str) -> int:
    value = _field(data, name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise PayloadError(f"invalid type for `{name}`: expected i32")
    if not _I32_MIN <= value <= _I32_MAX:
        raise PayloadError(f"invalid value for `{name}`: expected i32")
    return value


def _str_list(data: Mapping[str, Any], name: str) -> tuple[str, ...]:
    value = _field(data, name)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise PayloadError(f"invalid type for `{name}`: expected a sequence of strings")
    return tuple(value)


def _mapping(row: Any) -> Mapping[str, Any]:
    return getattr(row, "_mapping", row)


@dataclass(frozen=True)
class User:
    user_id: str


@dataclass(frozen=True)
class NewUser:
    user_id: str
    topics: tuple[str, ...]

    @classmethod
    def from_json(cls, data: Any) -> NewUser:
        data = _object(data)
        return cls(user_id=_str(data, "user_id"), topics=_str_list(data, "topics"))


@dataclass(frozen=True)
class Conference:
    conference_id: int
    name: str
    location: str
    start_timestamp: datetime
    end_timestamp: datetime
    total_slots: int
    available_slots: int
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> Conference:
        m = _mapping(row)
        return cls(
            conference_id=m["conference_id"],
            name=m["name"],
            location=m["location"],
            start_timestamp=m["start_timestamp"],
            end_timestamp=m["end_timestamp"],
            total_slots=m["total_slots"],
            available_slots=m["available_slots"],
            created_at=m.get("created_at"),
        )


@dataclass(frozen=True)
class NewConference:
    name: str
    location: str
    start: str
    end: str
    slots: int
    topics: tuple[str, ...]

    @classmethod
    def from_json(cls, data: Any) -> NewConference:
        data = _object(data)
        return cls(
            name=_str(data, "name"),
            location=_str(data, "location"),
            start=_str(data, "start"),
            end=_str(data, "end"),
            slots=_i32(data, "slots"),
            topics=_str_list(data, "topics"),
        )


@dataclass(frozen=True)
class Booking:
    booking_id: int
    conference_id: int | None
    user_id: str | None
    status: BookingStatus
    created_at: datetime | None = None
    waitlist_confirmation_deadline: datetime | None = None
    canceled_at: datetime | None = None
    can_confirm: bool | None = None
    waitlist_position: int | None = None

    @classmethod
    def from_row(cls, row: Any) -> Booking:
        m = _mapping(row)
        return cls(
            booking_id=m["booking_id"],
            conference_id=m["conference_id"],
            user_id=m["user_id"],
            status=BookingStatus(m["status"]),
            created_at=m.get("created_at"),
            waitlist_confirmation_deadline=m.get("waitlist_confirmation_deadline"),
            canceled_at=m.get("canceled_at"),
            can_confirm=m.get("can_confirm"),
            waitlist_position=m.get("waitlist_position"),
        )


@dataclass(frozen=True)
class BookConferenceRequest:
    name: str
    user_id: str

    @classmethod
    def from_json(cls, data: Any) -> BookConferenceRequest:
        data = _object(data)
        return cls(name=_str(data, "name"), user_id=_str(data, "user_id"))


@dataclass(frozen=True)
class BookConferenceResponse:
    booking_id: int
    status: BookingStatus
    message: str
    waitlist_position: int | None

    def to_json(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "status": self.status.to_json(),
            "message": self.message,
            "waitlist_position": self.waitlist_position,
        }


@dataclass(frozen=True)
class BookingIdRequest:
    booking_id: int

    @classmethod
    def from_json(cls, data: Any) -> BookingIdRequest:
        return cls(booking_id=_i32(_object(data), "booking_id"))


@dataclass(frozen=True)
class ConfirmBookingRequest:
    """Confirmation request; only the booking's owner may confirm it."""

    booking_id: int
    user_id: str

    @classmethod
    def from_json(cls, data: Any) -> ConfirmBookingRequest:
        data = _object(data)
        return cls(booking_id=_i32(data, "booking_id"), user_id=_str(data, "user_id"))


@dataclass(frozen=True)
class BookingStatusResponse:
    booking_id: int
    status: BookingStatus
    conference_name: str
    can_confirm: bool
    confirmation_deadline: datetime | None
    waitlist_position: int | None

    def to_json(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "status": self.status.to_json(),
            "conference_name": self.conference_name,
            "can_confirm": self.can_confirm,
            "confirmation_deadline": _timestamp_json(self.confirmation_deadline),
            "waitlist_position": self.waitlist_position,
        }


@dataclass(frozen=True)
class ApiResponse:
    message: str

    def to_json(self) -> dict[str, Any]:
        return {"message": self.message}