from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import pytest

from bulkimport.core.exceptions import DataError
from bulkimport.domain.models import FieldType, ImportField, TableField
from bulkimport.services.conversion import UTC, convert, format_duration, parse_timestamp


def _field(type_, nullable=True, **kwargs) -> ImportField:
    if type_ == "string" and "length" not in kwargs:
        kwargs["length"] = 255
    return ImportField("value", type_, nullable, **kwargs)


def test_null_for_nullable_field_stays_null():
    assert convert(None, _field("integer")) is None


def test_null_for_non_nullable_field_is_a_data_error():
    """The error carries the offending field name."""
    with pytest.raises(DataError) as excinfo:
        convert(None, ImportField("id", "integer", False, target_name="user_id"))
    assert excinfo.value.field_name == "user_id"
    assert "user_id" in str(excinfo.value)


@pytest.mark.parametrize(
    "raw, expected",
    [(12, 12), ("12", 12), (" 7 ", 7), ("12.0", 12), (3.9, 3), (True, 1), (b"5", 5)],
)
def test_integer_conversion(raw, expected):
    assert convert(raw, _field("integer")) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [(True, 1), (False, 0), (0, 0), (5, 1), ("false", 0), ("TRUE", 1), ("", 0), ("1", 1), ("0", 0)],
)
def test_boolean_conversion(raw, expected):
    assert convert(raw, _field("boolean")) == expected


def test_float_conversion():
    assert convert("1.5", _field("float")) == 1.5
    assert convert(2, _field("float")) == 2.0


def test_text_conversion():
    """Text keeps strings, decodes bytes and stringifies numbers."""
    assert convert("abc", _field("string")) == "abc"
    assert convert(b"abc", _field("text")) == "abc"
    assert convert(123, _field("string")) == "123"
    assert convert(b"\xff\x00", _field("blob")) == "\udcff\x00"


@pytest.mark.parametrize("field_type", ["integer", "float", "date"])
def test_malformed_value_is_a_data_error(field_type):
    with pytest.raises(DataError) as excinfo:
        convert("not a value", _field(field_type))
    assert excinfo.value.value == "not a value"


def test_dates_before_gregorian_calendar():
    """Dates before 1582-10-15 become NULL, or the zero date when NULL is not allowed."""
    assert convert("0001-01-01", _field("date")) is None
    assert convert("0001-01-01", _field("date", nullable=False)) == "0000-00-00"
    assert convert("1582-10-14 23:59:59", _field("datetime", nullable=False)) == "0000-00-00 00:00:00"
    assert convert("1582-10-15", _field("date", nullable=False)) == "1582-10-15"


def test_zero_date_strings():
    assert convert("0000-00-00 00:00:00", _field("datetime")) is None
    assert convert("0000-00-00", _field("date", nullable=False)) == "0000-00-00"


def test_temporal_formats():
    assert convert("2020-05-06 10:11:12", _field("date")) == "2020-05-06"
    assert convert("2020-05-06 10:11:12", _field("datetime")) == "2020-05-06 10:11:12"
    assert convert(date(2020, 5, 6), _field("datetime")) == "2020-05-06 00:00:00"
    assert convert(datetime(2020, 5, 6, 10, 11, 12), _field("time")) == "10:11:12"
    assert convert("10:11:12", _field("time")) == "10:11:12"
    assert convert(time(1, 2, 3), _field("time")) == "01:02:03"


def test_durations_keep_hours_past_a_day():
    assert convert(timedelta(hours=26, minutes=1), _field("time")) == "26:01:00"
    assert format_duration(timedelta(seconds=-90)) == "-00:01:30"


def test_aware_values_are_moved_to_the_zone():
    paris = timezone(timedelta(hours=1))
    value = datetime(2020, 1, 1, 1, 0, tzinfo=paris)
    assert convert(value, _field("datetime")) == "2020-01-01 00:00:00"
    assert convert(value, _field("datetime"), zone=paris) == "2020-01-01 01:00:00"


def test_epoch_seconds():
    assert convert(0, _field("datetime")) == "1970-01-01 00:00:00"
    assert convert(86400, _field("date")) == "1970-01-02"


def test_parse_timestamp():
    assert parse_timestamp("2020-01-02T03:04:05") == datetime(2020, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert parse_timestamp(b"2020-01-02") == datetime(2020, 1, 2, tzinfo=UTC)
    assert parse_timestamp("0000-00-00") is None
    with pytest.raises(ValueError):
        parse_timestamp(True)
    with pytest.raises(ValueError):
        parse_timestamp([2020])


def test_table_fields_are_accepted():
    assert convert("3", TableField("count", FieldType.INTEGER, False)) == 3
