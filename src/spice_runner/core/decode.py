"""Coercions for loosely typed wire values.

Dune transmits many numeric and timestamp columns as strings. These helpers
turn such values into native ``float`` and timezone-aware ``datetime``
objects and raise :class:`DecodeError` when the text cannot be read.
"""

from __future__ import annotations

import datetime
import re
from typing import Any

from .errors import DecodeError

_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_SPECIAL_FLOATS = {"nan", "+nan", "-nan", "inf", "+inf", "-inf", "infinity", "+infinity", "-infinity"}

# 2024-01-02T03:04:05Z, 2024-01-02T03:04:05.123456789+02:00, 2024-01-02 03:04:05.000 UTC
_TIMESTAMP_RE = re.compile(
    r"(?P<date>\d{4}-\d{2}-\d{2})[T ](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"\s*(?P<offset>Z|z|UTC|[+-]\d{2}:?\d{2})"
)


def f64_from_str(value: Any) -> float:
    """Parse a decimal string (or pass through a native number) as a float."""
    if isinstance(value, bool):
        raise DecodeError("expected a number, got a boolean", value=value)
    if isinstance(value, int | float):
        return float(value)
    if not isinstance(value, str):
        raise DecodeError(f"expected a numeric string, got {type(value).__name__}", value=value)

    text = value.strip()
    if not text:
        raise DecodeError("empty string is not a number", value=value)
    if not _NUMBER_RE.fullmatch(text) and text.lower() not in _SPECIAL_FLOATS:
        raise DecodeError(f"invalid number {value!r}", value=value)
    return float(text)


def optional_f64_from_str(value: Any) -> float | None:
    if value is None:
        return None
    return f64_from_str(value)


def datetime_from_str(value: Any) -> datetime.datetime:
    """Parse an ISO-8601 style timestamp carrying an explicit UTC offset.

    Fractional seconds of any length are accepted and truncated to
    microseconds. Timestamps without an offset are rejected since their
    instant is ambiguous. The result is normalised to UTC.
    """
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            raise DecodeError("naive datetime has no UTC offset", value=value)
        return value.astimezone(datetime.UTC)
    if not isinstance(value, str):
        raise DecodeError(f"expected a timestamp string, got {type(value).__name__}", value=value)

    match = _TIMESTAMP_RE.fullmatch(value.strip())
    if match is None:
        raise DecodeError(f"invalid timestamp {value!r}", value=value)

    fraction = (match["fraction"] or "0")[:6].ljust(6, "0")
    try:
        parsed = datetime.datetime.strptime(
            f"{match['date']}T{match['time']}.{fraction}", "%Y-%m-%dT%H:%M:%S.%f"
        )
    except ValueError as exc:
        raise DecodeError(f"invalid timestamp {value!r}: {exc}", value=value) from exc

    return parsed.replace(tzinfo=_parse_offset(match["offset"], value)).astimezone(datetime.UTC)


def optional_datetime_from_str(value: Any) -> datetime.datetime | None:
    if value is None:
        return None
    return datetime_from_str(value)


def _parse_offset(offset: str, value: str) -> datetime.tzinfo:
    if offset in ("Z", "z", "UTC"):
        return datetime.UTC
    sign = -1 if offset[0] == "-" else 1
    digits = offset[1:].replace(":", "")
    hours, minutes = int(digits[:2]), int(digits[2:])
    if hours > 23 or minutes > 59:
        raise DecodeError(f"invalid UTC offset in {value!r}", value=value)
    return datetime.timezone(sign * datetime.timedelta(hours=hours, minutes=minutes))
