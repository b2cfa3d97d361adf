"""JSON forms of optional protobuf ``Any`` and ``Timestamp`` values."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any as _AnyType
from typing import Optional

NANOS_PER_SECOND = 1_000_000_000

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})"
    r"(?:\.(\d+))?"
    r"([Zz]|[+-]\d{2}:\d{2})\Z"
)


@dataclass(frozen=True)
class Any:
    """A message of any type, identified by its type URL."""

    type_url: str
    value: bytes = b""


@dataclass(frozen=True)
class Timestamp:
    """A point in time as seconds and nanoseconds since the Unix epoch."""

    seconds: int
    nanos: int = 0


def _encode_base64(value: bytes) -> str:
    return base64.b64encode(bytes(value)).decode("ascii")


def _decode_base64(value: _AnyType) -> bytes:
    if value is None:
        return b""
    if not isinstance(value, str):
        raise ValueError(f"Expected a base64 string, got {type(value).__name__}")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 string: {e}") from e


def serialize_option_any(value: Optional[Any]) -> Optional[dict]:
    """Return the JSON form of an optional Any, with the value in base64."""
    if value is None:
        return None
    return {"type_url": value.type_url, "value": _encode_base64(value.value)}


def deserialize_option_any(data: _AnyType) -> Optional[Any]:
    """Build an optional Any from its JSON form."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"Expected an object, got {type(data).__name__}")
    for field in ("type_url", "value"):
        if field not in data:
            raise ValueError(f"missing field `{field}`")
    type_url = data["type_url"]
    if not isinstance(type_url, str):
        raise ValueError("Field `type_url` must be a string")
    return Any(type_url=type_url, value=_decode_base64(data["value"]))


def _format_timestamp(value: Timestamp) -> str:
    if not 0 <= value.nanos < NANOS_PER_SECOND:
        raise ValueError(f"Nanoseconds out of range: {value.nanos}")
    try:
        moment = _EPOCH + timedelta(seconds=value.seconds)
    except OverflowError as e:
        raise ValueError(f"Timestamp out of range: {value.seconds}") from e

    base = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if value.nanos == 0:
        return base + "Z"
    fraction = f"{value.nanos:09d}".rstrip("0")
    return f"{base}.{fraction}Z"


def _parse_timestamp(text: str) -> Timestamp:
    match = _RFC3339.match(text)
    if match is None:
        raise ValueError(f"Invalid RFC 3339 timestamp: {text!r}")
    year, month, day, hour, minute, second, fraction, offset = match.groups()

    if offset in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if offset[0] == "-" else 1
        hours, minutes = int(offset[1:3]), int(offset[4:6])
        if hours > 23 or minutes > 59:
            raise ValueError(f"Invalid offset in timestamp: {text!r}")
        tz = timezone(sign * timedelta(hours=hours, minutes=minutes))

    try:
        moment = datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second),
            tzinfo=tz,
        )
    except ValueError as e:
        raise ValueError(f"Invalid timestamp {text!r}: {e}") from e

    delta = moment - _EPOCH
    seconds = delta.days * 86400 + delta.seconds
    nanos = int(fraction[:9].ljust(9, "0")) if fraction else 0
    return Timestamp(seconds=seconds, nanos=nanos)


def serialize_option_timestamp(value: Optional[Timestamp]) -> Optional[str]:
    """Return an optional Timestamp as an RFC 3339 string in UTC."""
    if value is None:
        return None
    return _format_timestamp(value)


def deserialize_option_timestamp(data: _AnyType) -> Optional[Timestamp]:
    """Build an optional Timestamp from an RFC 3339 string."""
    if data is None:
        return None
    if not isinstance(data, str):
        raise ValueError(f"Expected a timestamp string, got {type(data).__name__}")
    return _parse_timestamp(data)