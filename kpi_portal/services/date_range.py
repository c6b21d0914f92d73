"""
Reporting window normalization for the KPI Portal backend.

Every summary endpoint accepts optional `from` / `to` query values. This
module turns them into a canonical, inclusive, day-aligned window in the
reporting timezone:

- `to` missing   -> today (in the reporting timezone)
- `from` missing -> Monday of the current ISO week (week-to-date)
- `from` is widened to 00:00:00.000 of its day, `to` to 23:59:59.999

Normalizing an already-normalized window returns the same window.

Key Functions:
- normalize_date_range: Canonicalize optional from/to inputs into a DateRange
- days_between: Inclusive day count of a window
- days_in_current_month: Day count of the calendar month containing `now`
- start_of_month: First instant of the month containing `now`
- format_date: YYYY-MM-DD in the reporting timezone
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional, Union

from zoneinfo import ZoneInfo

from kpi_portal.core.errors import InvalidDateError, ValidationError


DEFAULT_TIMEZONE = "Europe/Bucharest"

DAY_START = time(0, 0, 0, 0)
DAY_END = time(23, 59, 59, 999000)

DateInput = Union[str, date, datetime, None]


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive reporting window.

    Attributes:
        from_: First instant of the first day (00:00:00.000, reporting tz).
        to: Last instant of the last day (23:59:59.999, reporting tz).
        tz: IANA name of the reporting timezone.
    """
    from_: datetime
    to: datetime
    tz: str = DEFAULT_TIMEZONE

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.tz)

    @property
    def first_day(self) -> date:
        return self.from_.date()

    @property
    def last_day(self) -> date:
        return self.to.date()

    def contains(self, value: Union[date, datetime, None]) -> bool:
        """
        Whether a calendar date or an instant falls inside the window.

        Dates compare against the window's calendar days; datetimes compare
        as instants (naive datetimes are read in the reporting timezone).
        """
        if value is None:
            return False
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=self.tzinfo)
            return self.from_ <= value <= self.to
        return self.first_day <= value <= self.last_day


def _now(tz: ZoneInfo, now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def _parse_day(value: DateInput, tz: ZoneInfo, field: str) -> date:
    """Resolve a date/timestamp input to a calendar day in the reporting timezone."""
    if isinstance(value, datetime):
        return (value.replace(tzinfo=tz) if value.tzinfo is None else value.astimezone(tz)).date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidDateError(str(value), field=field)

    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise InvalidDateError(value, field=field) from exc

    if parsed.tzinfo is None:
        return parsed.date()
    return parsed.astimezone(tz).date()


def start_of_week(day: date) -> date:
    """Monday of the ISO week containing `day`."""
    return day - timedelta(days=day.weekday())


def normalize_date_range(
    from_: DateInput = None,
    to: DateInput = None,
    tz: str = DEFAULT_TIMEZONE,
    now: Optional[datetime] = None,
) -> DateRange:
    """
    Canonicalize optional from/to inputs into an inclusive day-aligned window.

    Args:
        from_: ISO date or timestamp (string, date or datetime). Defaults to
            the Monday of the current week, or of the week containing `to`
            when `to` falls before it.
        to: ISO date or timestamp. Defaults to today.
        tz: Reporting timezone name.
        now: Reference instant for the defaults (current time when omitted).

    Returns:
        DateRange with from_ at the first day's start and to at the last day's end.

    Raises:
        InvalidDateError: If from_ or to cannot be parsed.
        ValidationError: If from_ falls after to.

    Example:
        >>> r = normalize_date_range("2026-03-02", "2026-03-02")
        >>> r.from_.isoformat()
        '2026-03-02T00:00:00+02:00'
        >>> r.to.isoformat()
        '2026-03-02T23:59:59.999000+02:00'
    """
    zone = ZoneInfo(tz)
    current = _now(zone, now)

    last_day = _parse_day(to, zone, "to") if to is not None else current.date()
    if from_ is not None:
        first_day = _parse_day(from_, zone, "from")
    else:
        # A `to` before this Monday reports that week to date instead
        first_day = start_of_week(min(current.date(), last_day))

    if first_day > last_day:
        raise ValidationError(
            f"'from' ({first_day.isoformat()}) must not be after 'to' ({last_day.isoformat()})",
            field="from",
        )

    return DateRange(
        from_=datetime.combine(first_day, DAY_START, tzinfo=zone),
        to=datetime.combine(last_day, DAY_END, tzinfo=zone),
        tz=tz,
    )


def days_between(date_range: DateRange) -> int:
    """Inclusive number of calendar days covered by the window (always >= 1)."""
    return (date_range.last_day - date_range.first_day).days + 1


def days_in_current_month(now: Optional[datetime] = None, tz: str = DEFAULT_TIMEZONE) -> int:
    """Day count of the calendar month containing `now` in the reporting timezone."""
    current = _now(ZoneInfo(tz), now)
    return calendar.monthrange(current.year, current.month)[1]


def start_of_month(now: Optional[datetime] = None, tz: str = DEFAULT_TIMEZONE) -> datetime:
    zone = ZoneInfo(tz)
    current = _now(zone, now)
    return datetime.combine(current.date().replace(day=1), DAY_START, tzinfo=zone)


def format_date(value: Union[date, datetime], tz: str = DEFAULT_TIMEZONE) -> str:
    """YYYY-MM-DD, with instants converted to the reporting timezone first."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(tz))
        return value.date().isoformat()
    return value.isoformat()


def range_info(date_range: DateRange) -> Dict[str, Any]:
    """The `{from, to, tz}` block echoed in summary responses."""
    return {
        "from": format_date(date_range.from_, date_range.tz),
        "to": format_date(date_range.to, date_range.tz),
        "tz": date_range.tz,
    }
