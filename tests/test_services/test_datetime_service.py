"""Tests for datetime parsing service."""

from datetime import datetime, timedelta, timezone

import pytest

from spacc.services.datetime_service import (
    format_iso,
    format_report_stamp,
    milliseconds_between,
    now_utc,
    parse_datetime,
    parse_optional_datetime,
)


class TestDatetimeParsing:
    def test_parse_zulu_format(self) -> None:
        result = parse_datetime("2026-02-02T22:21:29Z")
        assert result.year == 2026
        assert result.month == 2
        assert result.day == 2
        assert result.hour == 22
        assert result.minute == 21
        assert result.utcoffset() == timedelta(0)

    def test_parse_fractional_offset_format(self) -> None:
        result = parse_datetime("2026-02-02T22:21:29.975+00:00")
        assert result.second == 29

    def test_parse_date_only(self) -> None:
        result = parse_datetime("2026-02-02")
        assert result.year == 2026
        assert result.hour == 0
        assert result.minute == 0

    def test_parse_datetime_object(self) -> None:
        dt = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_datetime(dt) == dt

    def test_parse_datetime_naive_adds_tz(self) -> None:
        result = parse_datetime(datetime(2026, 1, 1, 12, 0), default_tz="UTC")
        assert result.tzinfo is not None

    def test_empty_value_rejected(self) -> None:
        with pytest.raises(ValueError, match="Empty"):
            parse_datetime("  ")

    def test_garbage_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_datetime("not a date")


class TestOptionalDatetime:
    def test_none_and_empty(self) -> None:
        assert parse_optional_datetime(None) is None
        assert parse_optional_datetime("") is None

    def test_unparseable_is_none(self) -> None:
        assert parse_optional_datetime("yesterday-ish") is None

    def test_valid_value(self) -> None:
        result = parse_optional_datetime("2026-01-01T00:00:00Z")
        assert result is not None
        assert result.year == 2026


class TestFormatting:
    def test_milliseconds_between_is_absolute(self) -> None:
        first = parse_datetime("2026-01-01T00:00:00Z")
        second = parse_datetime("2026-01-01T00:00:05Z")
        assert milliseconds_between(first, second) == 5000
        assert milliseconds_between(second, first) == 5000

    def test_report_stamp(self) -> None:
        dt = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        assert format_report_stamp(dt) == "20260304T050607"

    def test_report_stamp_converts_to_utc(self) -> None:
        dt = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone(timedelta(hours=2)))
        assert format_report_stamp(dt) == "20260304T030607"

    def test_format_iso_naive_is_utc(self) -> None:
        assert format_iso(datetime(2026, 1, 1)) == "2026-01-01T00:00:00+00:00"

    def test_now_utc(self) -> None:
        assert now_utc().tzinfo is not None
