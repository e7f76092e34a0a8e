"""Tests for DataType codecs."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import BigInteger, DateTime, String

from sql_lookup.core.errors import ResultError
from sql_lookup.queries.types import KEY_PARAM, DataType


class TestResolve:
    """Tests for DataType.resolve."""

    @pytest.mark.parametrize(("name", "expected"), [
        ("text", DataType.TEXT),
        ("Number", DataType.NUMBER),
        (" TIMESTAMP ", DataType.TIMESTAMP),
    ])
    def test_case_insensitive(self, name, expected):
        assert DataType.resolve(name) is expected

    @pytest.mark.parametrize("name", [None, "string", "BLOB", ""])
    def test_unknown(self, name):
        assert DataType.resolve(name) is None


class TestKeyParsing:
    """Tests for parse_key and check."""

    def test_text_key_verbatim(self):
        assert DataType.TEXT.codec.parse_key(" alice ") == " alice "

    def test_number_key(self):
        assert DataType.NUMBER.codec.parse_key("42") == 42
        assert DataType.NUMBER.codec.parse_key("-7") == -7
        assert DataType.NUMBER.codec.parse_key("+42") == 42
        assert DataType.NUMBER.codec.parse_key(" 042 ") == 42

    @pytest.mark.parametrize("raw", ["abc", "4.2", "", str(2**63), "4_2", "\u0664\u0662", "0x2a", "--1"])
    def test_number_key_rejected(self, raw):
        with pytest.raises(ValueError):
            DataType.NUMBER.codec.parse_key(raw)

    def test_timestamp_key(self):
        assert DataType.TIMESTAMP.codec.parse_key("2024-05-06T07:08:09") == datetime(2024, 5, 6, 7, 8, 9)

    def test_timestamp_key_rejected(self):
        with pytest.raises(ValueError):
            DataType.TIMESTAMP.codec.parse_key("yesterday")

    def test_number_check(self):
        codec = DataType.NUMBER.codec
        assert codec.check(42)
        assert not codec.check(True)
        assert not codec.check("42")
        assert not codec.check(2**63)

    def test_text_and_timestamp_check(self):
        assert DataType.TEXT.codec.check("x")
        assert not DataType.TEXT.codec.check(1)
        assert DataType.TIMESTAMP.codec.check(datetime(2024, 1, 1))
        assert not DataType.TIMESTAMP.codec.check("2024-01-01")


class TestBindAndRender:
    """Tests for bind and render_key."""

    @pytest.mark.parametrize(("data_type", "sql_type"), [
        (DataType.TEXT, String),
        (DataType.NUMBER, BigInteger),
        (DataType.TIMESTAMP, DateTime),
    ])
    def test_bind_types(self, data_type, sql_type):
        key = {DataType.TEXT: "x", DataType.NUMBER: 1, DataType.TIMESTAMP: datetime(2024, 1, 1)}[data_type]
        param = data_type.codec.bind(key)
        assert param.key == KEY_PARAM
        assert param.value == key
        assert isinstance(param.type, sql_type)

    def test_render_keys(self):
        assert DataType.NUMBER.codec.render_key(42) == "42"
        assert DataType.TEXT.codec.render_key("alice") == "alice"
        assert DataType.TIMESTAMP.codec.render_key(datetime(2024, 5, 6, 7, 8, 9)) == "2024-05-06T07:08:09"

    @pytest.mark.parametrize(("value", "expected"), [
        (datetime(2023, 6, 1, 12, 0), "2023-06-01T12:00"),
        (datetime(2023, 6, 1, 12, 0, 7), "2023-06-01T12:00:07"),
        (datetime(2023, 6, 1, 12, 0, 0, 500000), "2023-06-01T12:00:00.500"),
        (datetime(2023, 6, 1, 12, 0, 1, 1000), "2023-06-01T12:00:01.001"),
        (datetime(2023, 6, 1, 12, 0, 0, 123456), "2023-06-01T12:00:00.123456"),
    ])
    def test_render_timestamp_shapes(self, value, expected):
        """Seconds only when needed; fractions in millisecond or microsecond groups."""
        assert DataType.TIMESTAMP.codec.render_key(value) == expected
        assert DataType.TIMESTAMP.codec.extract(value) == expected


class TestExtract:
    """Tests for extract."""

    @pytest.mark.parametrize("data_type", list(DataType))
    def test_null_is_none(self, data_type):
        assert data_type.codec.extract(None) is None

    def test_text(self):
        codec = DataType.TEXT.codec
        assert codec.extract("A") == "A"
        assert codec.extract(42) == "42"
        assert codec.extract(b"caf\xc3\xa9") == "café"

    def test_text_bad_bytes(self):
        with pytest.raises(ResultError):
            DataType.TEXT.codec.extract(b"\xff\xfe")

    @pytest.mark.parametrize(("raw", "expected"), [
        (42, "42"),
        (Decimal("10.75"), "10"),
        (10.75, "10"),
        ("17", "17"),
        (Decimal("-3"), "-3"),
    ])
    def test_number(self, raw, expected):
        assert DataType.NUMBER.codec.extract(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", float("nan")])
    def test_number_rejected(self, raw):
        with pytest.raises(ResultError):
            DataType.NUMBER.codec.extract(raw)

    def test_timestamp_datetime(self):
        assert DataType.TIMESTAMP.codec.extract(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"

    def test_timestamp_string(self):
        """SQLite hands back stored strings."""
        assert DataType.TIMESTAMP.codec.extract("2024-01-02 03:04:05.000000") == "2024-01-02T03:04:05"

    def test_timestamp_date(self):
        assert DataType.TIMESTAMP.codec.extract(date(2024, 1, 2)) == "2024-01-02T00:00"

    def test_timestamp_aware_has_no_offset(self):
        value = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=2)))
        rendered = DataType.TIMESTAMP.codec.extract(value)
        assert "+" not in rendered
        assert datetime.fromisoformat(rendered).tzinfo is None

    @pytest.mark.parametrize("raw", ["not a date", 12])
    def test_timestamp_rejected(self, raw):
        with pytest.raises(ResultError):
            DataType.TIMESTAMP.codec.extract(raw)
