"""Queue message bodies exchanged between the service and its consumers."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from .models import PayloadError, _fraction, _i32, _object, _str

_TIMESTAMP = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)


def _require_aware(value: datetime, name: str) -> None:
    if not isinstance(value, datetime) or value.utcoffset() is None:
        raise ValueError(f"`{name}` must be a timezone-aware datetime")


def _format_utc(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + _fraction(value.microsecond) + "Z"


def _parse_utc(data: Mapping[str, Any], name: str) -> datetime:
    text = _str(data, name)
    match = _TIMESTAMP.fullmatch(text)
    if match is None:
        raise PayloadError(f"invalid timestamp for `{name}`: {text!r}")
    date, time, fraction, zone = match.groups()
    fraction = (fraction or "")[:6].ljust(6, "0")
    if zone in ("Z", "z"):
        zone = "+00:00"
    try:
        parsed = datetime.fromisoformat(f"{date}T{time}.{fraction}{zone}")
    except ValueError as exc:
        raise PayloadError(f"invalid timestamp for `{name}`: {text!r}") from exc
    return parsed.astimezone(timezone.utc)


def _decode(data: str | bytes) -> Mapping[str, Any]:
    try:
        return _object(json.loads(data))
    except PayloadError:
        raise
    except ValueError as exc:
        raise PayloadError(f"malformed message: {exc}") from exc


def _encode(fields: dict[str, Any]) -> str:
    return json.dumps(fields, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class SlotAvailableMessage:
    """Sent when a waitlisted booking is placed on a conference's queue."""

    booking_id: int
    user_id: str
    conference_name: str
    confirmation_deadline: datetime

    def __post_init__(self) -> None:
        _require_aware(self.confirmation_deadline, "confirmation_deadline")

    def to_json(self) -> str:
        return _encode(
            {
                "booking_id": self.booking_id,
                "user_id": self.user_id,
                "conference_name": self.conference_name,
                "confirmation_deadline": _format_utc(self.confirmation_deadline),
            }
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> SlotAvailableMessage:
        fields = _decode(data)
        return cls(
            booking_id=_i32(fields, "booking_id"),
            user_id=_str(fields, "user_id"),
            conference_name=_str(fields, "conference_name"),
            confirmation_deadline=_parse_utc(fields, "confirmation_deadline"),
        )


@dataclass(frozen=True)
class ConfirmationExpirationMessage:
    """Timer message that expires when a pending confirmation runs out."""

    booking_id: int
    expiration_time: datetime
    conference_name: str

    def __post_init__(self) -> None:
        _require_aware(self.expiration_time, "expiration_time")

    def to_json(self) -> str:
        return _encode(
            {
                "booking_id": self.booking_id,
                "expiration_time": _format_utc(self.expiration_time),
                "conference_name": self.conference_name,
            }
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> ConfirmationExpirationMessage:
        fields = _decode(data)
        return cls(
            booking_id=_i32(fields, "booking_id"),
            expiration_time=_parse_utc(fields, "expiration_time"),
            conference_name=_str(fields, "conference_name"),
        )


@dataclass(frozen=True)
class ConferenceStartMessage:
    """Event delivered when a conference begins."""

    conference_name: str
    start_time: datetime

    def __post_init__(self) -> None:
        _require_aware(self.start_time, "start_time")

    def to_json(self) -> str:
        return _encode(
            {
                "conference_name": self.conference_name,
                "start_time": _format_utc(self.start_time),
            }
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> ConferenceStartMessage:
        fields = _decode(data)
        return cls(
            conference_name=_str(fields, "conference_name"),
            start_time=_parse_utc(fields, "start_time"),
        )