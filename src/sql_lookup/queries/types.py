"""
Column and key data types.

``DataType`` is the closed set of value types a query key or result column
can have. Each member owns a codec that knows the four things the adapter
ever does with a value of that type:

================  =====================================================
``parse_key``     request key string -> typed key (``"42"`` -> ``42``)
``bind``          typed bind parameter for the statement
``render_key``    typed key -> canonical ``object_id`` string
``extract``       raw driver value -> output string (or None for NULL)
================  =====================================================

Adding a type means adding a member and a codec; nothing else branches on
the type.

Examples:
    >>> DataType.resolve("number")
    <DataType.NUMBER: 'NUMBER'>
    >>> DataType.NUMBER.codec.parse_key("42")
    42
    >>> DataType.TIMESTAMP.codec.extract(datetime(2024, 1, 2, 3, 4, 5))
    '2024-01-02T03:04:05'

Tags:
    data-types, codecs, type-coercion, sql-lookup
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from sqlalchemy import BigInteger, DateTime, String, bindparam
from sqlalchemy.sql.elements import BindParameter

from sql_lookup.core.errors import ResultError

KEY_PARAM = "key"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


def format_local_datetime(value: datetime) -> str:
    """Render ``value`` as ``yyyy-MM-ddTHH:mm[:ss[.SSS|.SSSSSS]]``.

    Examples:
        >>> format_local_datetime(datetime(2023, 6, 1, 12, 0))
        '2023-06-01T12:00'
        >>> format_local_datetime(datetime(2023, 6, 1, 12, 0, 0, 500000))
        '2023-06-01T12:00:00.500'
    """
    text = f"{value.date().isoformat()}T{value.hour:02d}:{value.minute:02d}"
    if value.second or value.microsecond:
        text += f":{value.second:02d}"
    if value.microsecond:
        fraction = value.microsecond
        text += f".{fraction // 1000:03d}" if fraction % 1000 == 0 else f".{fraction:06d}"
    return text


class _Codec:
    """Per-type behaviour. Subclasses set ``python_type`` and ``sql_type``."""

    python_type: type
    sql_type: Any

    def parse_key(self, raw: str) -> Any:
        """Parse a request key; raises ValueError when it does not fit the type."""
        raise NotImplementedError

    def check(self, key: Any) -> bool:
        return isinstance(key, self.python_type)

    def bind(self, key: Any) -> BindParameter:
        return bindparam(KEY_PARAM, value=key, type_=self.sql_type)

    def render_key(self, key: Any) -> str:
        return str(key)

    def extract(self, value: Any) -> str | None:
        if value is None:
            return None
        return self._extract(value)

    def _extract(self, value: Any) -> str:
        raise NotImplementedError


class TextCodec(_Codec):
    python_type = str
    sql_type = String()

    def parse_key(self, raw: str) -> str:
        return raw

    def _extract(self, value: Any) -> str:
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ResultError(f"Cannot decode bytes value as text: {e}", cause=e) from e
        return str(value)


class NumberCodec(_Codec):
    """Signed 64-bit integers, rendered in decimal."""

    python_type = int
    sql_type = BigInteger()

    def parse_key(self, raw: str) -> int:
        text = raw.strip()
        if not _INTEGER_RE.fullmatch(text):
            raise ValueError(f"{raw!r} is not a decimal integer")
        value = int(text)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise ValueError(f"{raw} is outside the signed 64-bit range")
        return value

    def check(self, key: Any) -> bool:
        return (
            isinstance(key, int)
            and not isinstance(key, bool)
            and _INT64_MIN <= key <= _INT64_MAX
        )

    # NULL is handled by extract and stays None; it is never read as 0.
    def _extract(self, value: Any) -> str:
        try:
            if isinstance(value, (int, float, Decimal)):
                return str(int(value))
            return str(int(Decimal(str(value).strip())))
        except (ValueError, ArithmeticError, InvalidOperation) as e:
            raise ResultError(f"Cannot read {value!r} as a number", cause=e) from e


class TimestampCodec(_Codec):
    """Local date-times, rendered ISO-8601 without an offset.

    Seconds are omitted when they and the fraction are zero; a fraction is
    printed as milliseconds when that is exact, otherwise as microseconds.
    """

    python_type = datetime
    sql_type = DateTime()

    def parse_key(self, raw: str) -> datetime:
        return datetime.fromisoformat(raw.strip())

    def render_key(self, key: datetime) -> str:
        return format_local_datetime(key)

    def _extract(self, value: Any) -> str:
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value.strip())
            except ValueError as e:
                raise ResultError(f"Cannot read {value!r} as a timestamp", cause=e) from e
        elif isinstance(value, date) and not isinstance(value, datetime):
            value = datetime.combine(value, datetime.min.time())
        elif not isinstance(value, datetime):
            raise ResultError(f"Cannot read {type(value).__name__} value as a timestamp")

        if value.tzinfo is not None:
            value = value.astimezone().replace(tzinfo=None)
        return format_local_datetime(value)


class DataType(str, Enum):
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    TIMESTAMP = "TIMESTAMP"

    @property
    def codec(self) -> _Codec:
        return _CODECS[self]

    @classmethod
    def resolve(cls, name: str | None) -> DataType | None:
        """Case-insensitive lookup; None for unknown or missing names."""
        if name is None:
            return None
        try:
            return cls(name.strip().upper())
        except ValueError:
            return None


_CODECS: dict[DataType, _Codec] = {
    DataType.TEXT: TextCodec(),
    DataType.NUMBER: NumberCodec(),
    DataType.TIMESTAMP: TimestampCodec(),
}


__all__ = ["DataType", "KEY_PARAM", "TextCodec", "NumberCodec", "TimestampCodec", "format_local_datetime"]
