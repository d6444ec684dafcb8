"""Tagged field values for generic row comparison.

Rows are open field maps, so equality and field merging must work over
arbitrary scalar/date/boolean values.  Every raw value is converted into a
FieldValue (kind + canonical payload) before comparison; two values are equal
only when both kind and payload match.

Canonicalization rules:
  - bool is BOOLEAN, never NUMBER (True != 1)
  - int / float / Decimal are NUMBER and compare numerically (1 == 1.0)
  - aware datetimes are converted to naive UTC; naive datetimes are taken as UTC
  - Enum members compare by their value, UUIDs as text
  - lists/tuples become ARRAY, mappings become OBJECT, recursively
"""

from __future__ import annotations

import datetime
import enum
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping


class ValueKind(str, enum.Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    TEXT = "text"
    DATETIME = "datetime"
    DATE = "date"
    TIME = "time"
    BYTES = "bytes"
    ARRAY = "array"
    OBJECT = "object"


@dataclass(frozen=True)
class FieldValue:
    """A raw row value tagged with its kind and reduced to a canonical payload."""

    kind: ValueKind
    value: Any

    @classmethod
    def of(cls, raw: Any) -> FieldValue:
        if isinstance(raw, FieldValue):
            return raw
        if raw is None:
            return cls(ValueKind.NULL, None)
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, enum.Enum):
            return cls.of(raw.value)
        if isinstance(raw, (int, float, Decimal)):
            return cls(ValueKind.NUMBER, _to_decimal(raw))
        if isinstance(raw, str):
            return cls(ValueKind.TEXT, raw)
        if isinstance(raw, uuid.UUID):
            return cls(ValueKind.TEXT, str(raw))
        # datetime is a subclass of date, so it is checked first
        if isinstance(raw, datetime.datetime):
            return cls(ValueKind.DATETIME, to_naive_utc(raw))
        if isinstance(raw, datetime.date):
            return cls(ValueKind.DATE, raw)
        if isinstance(raw, datetime.time):
            return cls(ValueKind.TIME, raw.replace(tzinfo=None))
        if isinstance(raw, (bytes, bytearray, memoryview)):
            return cls(ValueKind.BYTES, bytes(raw))
        if isinstance(raw, Mapping):
            items = tuple(sorted((str(k), cls.of(v)) for k, v in raw.items()))
            return cls(ValueKind.OBJECT, items)
        if isinstance(raw, (list, tuple)):
            return cls(ValueKind.ARRAY, tuple(cls.of(v) for v in raw))
        raise TypeError(f"Unsupported field value type: {type(raw).__name__}")


def _to_decimal(raw: int | float | Decimal) -> Decimal:
    if isinstance(raw, Decimal):
        return raw
    try:
        return Decimal(str(raw))
    except InvalidOperation:  # pragma: no cover - str() of a number always parses
        raise TypeError(f"Unsupported numeric value: {raw!r}") from None


def to_naive_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)


def deep_equal(a: Any, b: Any) -> bool:
    """Return True when two raw values are equal under tagged comparison."""
    return FieldValue.of(a) == FieldValue.of(b)


def parse_datetime(text: str) -> datetime.datetime:
    """Parse an ISO 8601 timestamp, accepting the trailing 'Z' JavaScript emits.

    Aware results are converted to UTC.

    Raises:
        ValueError: If the text is not an ISO 8601 timestamp.
    """
    cleaned = text.strip()
    if cleaned.endswith(("Z", "z")):
        cleaned = cleaned[:-1] + "+00:00"
    parsed = datetime.datetime.fromisoformat(cleaned)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc)
    return parsed


def parse_date(text: str) -> datetime.date:
    cleaned = text.strip()
    if "T" in cleaned or " " in cleaned:
        return parse_datetime(cleaned).date()
    return datetime.date.fromisoformat(cleaned)


def as_timestamp(value: Any) -> datetime.datetime | None:
    """Interpret a row value as a point in time (naive UTC), or None."""
    if isinstance(value, datetime.datetime):
        return to_naive_utc(value)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value:
        try:
            return to_naive_utc(parse_datetime(value))
        except ValueError:
            return None
    return None


def is_newer(a: Any, b: Any) -> bool:
    """True when timestamp ``a`` is strictly newer than ``b``.

    Missing or unparseable timestamps never count as newer.
    """
    left = as_timestamp(a)
    right = as_timestamp(b)
    if left is None or right is None:
        return False
    return left > right


def to_wire(value: Any) -> Any:
    """Convert a store value into its JSON-safe artifact form."""
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(k): to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    return value
