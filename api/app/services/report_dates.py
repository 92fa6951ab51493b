"""Date-range resolution for report query parameters.

All datetimes are naive UTC, matching how the board store keeps timestamps.
Reports pick one of two policies for bad input:

- ``LENIENT``: missing or unparseable bounds fall back to the trailing default
  window; an inverted range falls back to the whole default window.
- ``STRICT``: missing, unparseable or inverted bounds raise ``InvalidDateRange``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterator

from app.services.report_errors import InvalidDateRange

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DAY = timedelta(days=1)


class RangePolicy(str, Enum):
    LENIENT = "lenient"
    STRICT = "strict"


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime
    days: int
    is_default: bool = False

    def contains(self, value: datetime | None) -> bool:
        return value is not None and self.start <= value <= self.end


def utc_now() -> datetime:
    return datetime.utcnow()


def parse_date_only(raw: str | None) -> date | None:
    cleaned = (raw or "").strip()
    if not _DATE_ONLY.match(cleaned):
        return None
    try:
        return date.fromisoformat(cleaned)
    except ValueError:
        return None


def start_of_day(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def end_of_day(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.max)


def span_days(start: datetime, end: datetime) -> int:
    return (end.date() - start.date()).days + 1


def default_window(default_days: int, today: date | None = None) -> DateRange:
    anchor = today or utc_now().date()
    end = end_of_day(anchor)
    start = start_of_day(anchor - timedelta(days=max(1, default_days) - 1))
    return DateRange(start=start, end=end, days=span_days(start, end), is_default=True)


def resolve_date_range(
    raw_from: str | None,
    raw_to: str | None,
    *,
    default_days: int = 30,
    policy: RangePolicy = RangePolicy.LENIENT,
    today: date | None = None,
) -> DateRange:
    parsed_from = parse_date_only(raw_from)
    parsed_to = parse_date_only(raw_to)

    if policy == RangePolicy.STRICT:
        if parsed_from is None or parsed_to is None or parsed_to < parsed_from:
            raise InvalidDateRange()
        start, end = start_of_day(parsed_from), end_of_day(parsed_to)
        return DateRange(start=start, end=end, days=span_days(start, end))

    fallback = default_window(default_days, today)
    start = start_of_day(parsed_from) if parsed_from else fallback.start
    end = end_of_day(parsed_to) if parsed_to else fallback.end
    if end < start:
        return fallback
    return DateRange(
        start=start,
        end=end,
        days=span_days(start, end),
        is_default=parsed_from is None and parsed_to is None,
    )


def clamp_range(value: DateRange, max_days: int = 180) -> DateRange:
    if value.days <= max_days:
        return value
    start = start_of_day(value.end.date() - timedelta(days=max_days - 1))
    return DateRange(start=start, end=value.end, days=max_days, is_default=value.is_default)


PROJECT_DEFAULT_DAYS = 14
PROJECT_MAX_DAYS = 180


def resolve_project_range(
    raw_from: str | None,
    raw_to: str | None,
    *,
    today: date | None = None,
) -> DateRange:
    """Project report filters: per-bound defaults, strict parsing, clamped span."""
    fallback = default_window(PROJECT_DEFAULT_DAYS, today)
    from_value = raw_from if raw_from is not None else fallback.start.date().isoformat()
    to_value = raw_to if raw_to is not None else fallback.end.date().isoformat()
    parsed_from = parse_date_only(from_value)
    parsed_to = parse_date_only(to_value)
    if parsed_from is None or parsed_to is None:
        raise InvalidDateRange("from and to must be ISO date strings")
    if parsed_to < parsed_from:
        raise InvalidDateRange("to date must be on or after from date")
    start, end = start_of_day(parsed_from), end_of_day(parsed_to)
    return clamp_range(DateRange(start=start, end=end, days=span_days(start, end)), PROJECT_MAX_DAYS)


def iter_days(start: datetime | date, end: datetime | date) -> Iterator[date]:
    current = start.date() if isinstance(start, datetime) else start
    last = end.date() if isinstance(end, datetime) else end
    while current <= last:
        yield current
        current = current + DAY


def weekday_dates(start: datetime | date, end: datetime | date) -> set[str]:
    return {day.isoformat() for day in iter_days(start, end) if day.weekday() < 5}


def week_start(value: datetime | date) -> date:
    """Monday on or before ``value``."""
    day = value.date() if isinstance(value, datetime) else value
    return day - timedelta(days=day.weekday())


def iso_z(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def iso_day(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    day = value.date() if isinstance(value, datetime) else value
    return day.isoformat()
