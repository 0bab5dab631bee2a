"""Conversion of raw source values to their staging file representation."""
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Any, Optional, Union

from bulkimport.core.exceptions import ConfigError, DataError
from bulkimport.domain.models import (
    CalculatedField, FieldType, ImportField, STRING_TYPES, TableField, TEMPORAL_TYPES
)

UTC = timezone.utc

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# First day of the Gregorian calendar; earlier dates are not stored as such
DATE_FLOOR = datetime(1582, 10, 15, tzinfo=UTC)

TEMPORAL_FORMATS = {
    FieldType.DATE: '%Y-%m-%d',
    FieldType.DATETIME: '%Y-%m-%d %H:%M:%S',
    FieldType.TIME: '%H:%M:%S',
}

ZERO_DATES = {
    FieldType.DATE: '0000-00-00',
    FieldType.DATETIME: '0000-00-00 00:00:00',
}

_TRUE_WORDS = ('true', 'yes', 'on')
_FALSE_WORDS = ('false', 'no', 'off', '')

AnyField = Union[ImportField, CalculatedField, TableField]

def parse_timestamp(value: Any, zone: tzinfo = UTC) -> Optional[datetime]:
    """Interpret a raw value as an instant in the given zone.

    Naive values are read as being in `zone`. Numbers are seconds since the
    epoch. Strings use ISO 8601; a bare time of day is placed on 1970-01-01.

    Returns:
        An aware datetime, or None for the zero-date strings of the server

    Raises:
        ValueError: If the value is not a recognised temporal form
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=zone)
        return value.astimezone(zone)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=zone)
    if isinstance(value, time):
        return datetime.combine(date(1970, 1, 1), value.replace(tzinfo=None), tzinfo=zone)
    if isinstance(value, bool):
        raise ValueError("a boolean is not a timestamp")
    if isinstance(value, (int, float, Decimal)):
        return (EPOCH + timedelta(seconds=float(value))).astimezone(zone)
    if isinstance(value, bytes):
        value = value.decode('utf-8')
    if isinstance(value, str):
        text = value.strip()
        if text.startswith('0000-00-00'):
            return None
        try:
            return parse_timestamp(datetime.fromisoformat(text), zone)
        except ValueError:
            return parse_timestamp(time.fromisoformat(text), zone)
    raise ValueError(f"unsupported temporal value of type {type(value).__name__}")

def format_duration(value: timedelta) -> str:
    """Format a duration as a TIME literal, keeping hours past 24."""
    total = int(value.total_seconds())
    sign = '-' if total < 0 else ''
    hours, rest = divmod(abs(total), 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"

def _to_integer(value: Any) -> int:
    if isinstance(value, bytes):
        value = value.decode('utf-8')
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return int(float(text))
    return int(value)

def _to_boolean(value: Any) -> int:
    if isinstance(value, bytes):
        value = value.decode('utf-8')
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_WORDS:
            return 1
        if text in _FALSE_WORDS:
            return 0
        return 1 if _to_integer(text) else 0
    return 1 if value else 0

def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        # Undecodable bytes survive as lone surrogates and are restored on write
        return bytes(value).decode('utf-8', 'surrogateescape')
    if isinstance(value, bool):
        return '1' if value else ''
    return str(value)

def _to_temporal(value: Any, field_type: FieldType, nullable: bool, zone: tzinfo) -> Optional[str]:
    if field_type == FieldType.TIME:
        if isinstance(value, timedelta):
            return format_duration(value)
        moment = parse_timestamp(value, zone)
        if moment is None:
            raise ValueError("zero date has no time of day")
        return moment.strftime(TEMPORAL_FORMATS[field_type])

    moment = parse_timestamp(value, zone)
    if moment is None or moment < DATE_FLOOR:
        if nullable:
            return None
        return ZERO_DATES[field_type]
    return moment.strftime(TEMPORAL_FORMATS[field_type])

def field_name(field: AnyField) -> str:
    return getattr(field, 'target_name', None) or getattr(field, 'name', '')

def convert(value: Any, field: AnyField, zone: tzinfo = UTC) -> Any:
    """Convert a raw source value according to the field definition.

    Args:
        value: Raw value read from the source row
        field: Plain, calculated or table field giving type and nullability
        zone: Zone used to read naive temporal values

    Returns:
        The staging value, None for SQL NULL

    Raises:
        DataError: If the value is null for a non-nullable field or malformed
        ConfigError: If the field type is not supported
    """
    name = field_name(field)

    if value is None:
        if field.nullable:
            return None
        raise DataError(f'Field "{name}" can not be nullable but data return is null.', field_name=name, value=value)

    try:
        field_type = FieldType(field.type)
    except ValueError:
        raise ConfigError(f'Unsupported type "{field.type}" for field "{name}"')

    try:
        if field_type == FieldType.INTEGER:
            return _to_integer(value)
        if field_type == FieldType.BOOLEAN:
            return _to_boolean(value)
        if field_type == FieldType.FLOAT:
            return float(value)
        if field_type in STRING_TYPES:
            return _to_text(value)
        if field_type in TEMPORAL_TYPES:
            return _to_temporal(value, field_type, field.nullable, zone)
    except (TypeError, ValueError, OverflowError, UnicodeDecodeError) as e:
        raise DataError(
            f'Value {value!r} of field "{name}" can not be converted to {field_type.value}: {str(e)}',
            field_name=name,
            value=value
        ) from e

    raise ConfigError(f'Unsupported type "{field_type.value}" for field "{name}"')
