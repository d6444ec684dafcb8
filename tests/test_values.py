import datetime
import enum
from decimal import Decimal

import pytest

from snapmerge.merge.values import (
    FieldValue,
    ValueKind,
    deep_equal,
    is_newer,
    parse_datetime,
    to_wire,
)


class Color(enum.Enum):
    RED = "red"


def test_bool_is_not_a_number():
    assert FieldValue.of(True).kind is ValueKind.BOOLEAN
    assert not deep_equal(True, 1)
    assert not deep_equal(False, 0)


def test_numbers_compare_numerically():
    assert deep_equal(1, 1.0)
    assert deep_equal(Decimal("2.50"), 2.5)
    assert not deep_equal(1, "1")


def test_datetimes_compare_in_utc():
    aware = datetime.datetime(2024, 5, 1, 14, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=2)))
    naive_utc = datetime.datetime(2024, 5, 1, 12, 0)
    assert deep_equal(aware, naive_utc)
    assert not deep_equal(naive_utc, naive_utc.date())


def test_nested_values_ignore_key_order():
    assert deep_equal({"a": 1, "b": [1, 2]}, {"b": [1, 2], "a": 1})
    assert not deep_equal([1, 2], [2, 1])


def test_enum_and_text():
    assert deep_equal(Color.RED, "red")


def test_unsupported_type_raises():
    with pytest.raises(TypeError):
        FieldValue.of(object())


def test_parse_datetime_accepts_trailing_z():
    parsed = parse_datetime("2024-05-01T12:00:00Z")
    assert parsed == datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


def test_is_newer_is_strict_and_tolerates_missing():
    assert is_newer("2024-05-02T00:00:00Z", "2024-05-01T00:00:00Z")
    assert not is_newer("2024-05-01T00:00:00Z", "2024-05-01T00:00:00Z")
    assert not is_newer(None, "2024-05-01T00:00:00Z")
    assert not is_newer("garbage", "2024-05-01T00:00:00Z")


def test_to_wire_produces_json_safe_values():
    row = {
        "at": datetime.datetime(2024, 5, 1, 12, 0),
        "day": datetime.date(2024, 5, 1),
        "amount": Decimal("3"),
        "ratio": Decimal("0.5"),
        "blob": b"\x01\xff",
        "tags": ("a", "b"),
    }
    assert to_wire(row) == {
        "at": "2024-05-01T12:00:00Z",
        "day": "2024-05-01",
        "amount": 3,
        "ratio": 0.5,
        "blob": "01ff",
        "tags": ["a", "b"],
    }
