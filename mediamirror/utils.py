"""Utility helpers for the media mirror."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any


TICKS_PER_SECOND = 10_000_000
EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, matching stored values."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC."""

    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_remote_datetime(value: object) -> datetime | None:
    """Parse the ISO-8601 timestamps emitted by the remote server."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported datetime value: {value!r}")

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # The server emits seven fractional digits; fromisoformat accepts six.
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for index, char in enumerate(tail):
            if not char.isdigit():
                rest = tail[index:]
                break
            digits += char
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    return to_naive_utc(datetime.fromisoformat(text))


def epoch_seconds(value: datetime) -> float:
    """Seconds since the Unix epoch for a (naive UTC or aware) datetime."""

    return (to_naive_utc(value) - EPOCH).total_seconds()


def ticks_to_seconds(ticks: int | None) -> int | None:
    """Convert 100-nanosecond runtime ticks to whole seconds."""

    if ticks is None:
        return None
    return math.floor(ticks / TICKS_PER_SECOND)


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality over decoded JSON-like values.

    Mappings compare independent of key order, sequences compare element-wise
    (lists and tuples are interchangeable) and ``bool`` is never equal to a
    number, unlike Python's default ``True == 1``.
    """

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if set(left.keys()) != set(right.keys()):
            return False
        return all(deep_equal(left[key], right[key]) for key in left)
    if _is_sequence(left) and _is_sequence(right):
        if len(left) != len(right):
            return False
        return all(deep_equal(a, b) for a, b in zip(left, right))
    if _is_sequence(left) or _is_sequence(right):
        return False
    if isinstance(left, Mapping) or isinstance(right, Mapping):
        return False
    if isinstance(left, datetime) and isinstance(right, datetime):
        return to_naive_utc(left) == to_naive_utc(right)
    return left == right


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))
