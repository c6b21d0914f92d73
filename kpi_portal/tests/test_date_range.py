"""
Pytest test module for reporting window normalization.

Covers kpi_portal.services.date_range:
- Day alignment of from/to in the reporting timezone
- Defaults (week-to-date) relative to a pinned "now"
- Idempotence of normalization
- Rejection of unparseable and inverted windows
- Day counting, month helpers and date formatting
"""

from datetime import date, datetime, timezone

import pytest

from kpi_portal.core.errors import InvalidDateError, ValidationError
from kpi_portal.services.date_range import (
    DateRange,
    days_between,
    days_in_current_month,
    format_date,
    normalize_date_range,
    range_info,
    start_of_month,
    start_of_week,
)


TZ = "Europe/Bucharest"
NOW = datetime(2026, 3, 18, 10, 0, tzinfo=timezone.utc)


class TestNormalizeDateRange:

    def test_bounds_fall_on_day_start_and_end(self) -> None:
        window = normalize_date_range("2026-03-02", "2026-03-08", tz=TZ, now=NOW)

        assert window.from_.isoformat() == "2026-03-02T00:00:00+02:00"
        assert window.to.isoformat() == "2026-03-08T23:59:59.999000+02:00"
        assert window.from_ <= window.to

    def test_single_day_window(self) -> None:
        window = normalize_date_range("2026-03-02", "2026-03-02", tz=TZ, now=NOW)

        assert window.first_day == window.last_day == date(2026, 3, 2)
        assert days_between(window) == 1

    def test_defaults_to_week_to_date(self) -> None:
        window = normalize_date_range(tz=TZ, now=NOW)

        # 2026-03-18 is a Wednesday
        assert window.first_day == date(2026, 3, 16)
        assert window.last_day == date(2026, 3, 18)

    def test_missing_from_uses_monday_of_current_week(self) -> None:
        window = normalize_date_range(None, "2026-03-20", tz=TZ, now=NOW)

        assert window.first_day == date(2026, 3, 16)
        assert window.last_day == date(2026, 3, 20)

    def test_to_before_this_week_reports_its_own_week(self) -> None:
        # Wednesday 2026-03-11 is before this week's Monday (03-16)
        window = normalize_date_range(None, "2026-03-11", tz=TZ, now=NOW)

        assert (window.first_day, window.last_day) == (date(2026, 3, 9), date(2026, 3, 11))

    def test_timestamps_are_read_in_reporting_timezone(self) -> None:
        # 22:30 UTC on March 1st is already March 2nd in Bucharest
        window = normalize_date_range("2026-03-01T22:30:00Z", "2026-03-02T10:00:00Z", tz=TZ, now=NOW)

        assert window.first_day == date(2026, 3, 2)
        assert window.last_day == date(2026, 3, 2)

    def test_normalization_is_idempotent(self) -> None:
        once = normalize_date_range("2026-03-02", "2026-03-08", tz=TZ, now=NOW)
        twice = normalize_date_range(once.from_, once.to, tz=TZ, now=NOW)

        assert twice == once

    def test_dst_transition_keeps_local_day_bounds(self) -> None:
        # Bucharest moves to summer time on 2026-03-29
        window = normalize_date_range("2026-03-29", "2026-03-29", tz=TZ, now=NOW)

        assert window.from_.utcoffset().total_seconds() == 2 * 3600
        assert window.to.utcoffset().total_seconds() == 3 * 3600

    def test_unparseable_date_raises_invalid_date(self) -> None:
        with pytest.raises(InvalidDateError) as exc_info:
            normalize_date_range("not-a-date", "2026-03-08", tz=TZ, now=NOW)

        assert exc_info.value.code == "INVALID_DATE"
        assert exc_info.value.details["field"] == "from"

    def test_invalid_date_is_a_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            normalize_date_range("2026-02-30", None, tz=TZ, now=NOW)

    def test_from_after_to_raises(self) -> None:
        with pytest.raises(ValidationError):
            normalize_date_range("2026-03-09", "2026-03-08", tz=TZ, now=NOW)


class TestDateRange:

    def test_contains_dates_and_instants(self) -> None:
        window = normalize_date_range("2026-03-02", "2026-03-08", tz=TZ, now=NOW)

        assert window.contains(date(2026, 3, 2))
        assert window.contains(date(2026, 3, 8))
        assert not window.contains(date(2026, 3, 9))
        # 21:59 UTC on the 8th is 23:59 local
        assert window.contains(datetime(2026, 3, 8, 21, 59, tzinfo=timezone.utc))
        assert not window.contains(datetime(2026, 3, 8, 22, 0, tzinfo=timezone.utc))
        assert not window.contains(None)

    def test_range_info(self) -> None:
        window = normalize_date_range("2026-03-02", "2026-03-08", tz=TZ, now=NOW)

        assert range_info(window) == {"from": "2026-03-02", "to": "2026-03-08", "tz": TZ}


class TestDateHelpers:

    def test_start_of_week(self) -> None:
        assert start_of_week(date(2026, 3, 18)) == date(2026, 3, 16)
        assert start_of_week(date(2026, 3, 16)) == date(2026, 3, 16)
        assert start_of_week(date(2026, 3, 22)) == date(2026, 3, 16)

    def test_days_between_is_inclusive(self) -> None:
        window = normalize_date_range("2026-02-01", "2026-02-28", tz=TZ, now=NOW)

        assert days_between(window) == 28

    def test_days_in_current_month(self) -> None:
        assert days_in_current_month(NOW, TZ) == 31
        assert days_in_current_month(datetime(2026, 2, 10, tzinfo=timezone.utc), TZ) == 28
        # 23:30 UTC on Jan 31st is already February locally
        assert days_in_current_month(datetime(2026, 1, 31, 23, 30, tzinfo=timezone.utc), TZ) == 28

    def test_start_of_month(self) -> None:
        start = start_of_month(NOW, TZ)

        assert start.isoformat() == "2026-03-01T00:00:00+02:00"

    def test_format_date_converts_instants(self) -> None:
        assert format_date(datetime(2026, 3, 1, 23, 0, tzinfo=timezone.utc), TZ) == "2026-03-02"
        assert format_date(date(2026, 3, 1), TZ) == "2026-03-01"

    def test_daterange_is_hashable_value(self) -> None:
        a = normalize_date_range("2026-03-02", "2026-03-08", tz=TZ, now=NOW)
        b = DateRange(from_=a.from_, to=a.to, tz=TZ)

        assert a == b
        assert len({a, b}) == 1
