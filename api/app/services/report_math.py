"""Pure numeric reducers shared by the report services."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Protocol, Sequence

from app.services.report_dates import end_of_day, iter_days, start_of_day, week_start

HOURS_PER_DAY = 24.0
SECONDS_PER_DAY = 86400.0
DAILY_BUCKET_MAX_DAYS = 14


class CompletionLike(Protocol):
    done_at: datetime
    story_points: int


@dataclass(frozen=True)
class Bucket:
    label: str
    min_hours: float
    max_hours: float
    count: int = 0


@dataclass(frozen=True)
class ThroughputBucket:
    period_start: str
    issues_done: int
    points_done: int


CYCLE_TIME_BUCKETS: tuple[Bucket, ...] = (
    Bucket("0-1d", 0.0, 24.0),
    Bucket("1-3d", 24.0, 72.0),
    Bucket("3-7d", 72.0, 168.0),
    Bucket("7-14d", 168.0, 336.0),
    Bucket("14d+", 336.0, math.inf),
)


def _round(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def round1(value: float) -> float:
    return _round(value, 1)


def round2(value: float) -> float:
    return _round(value, 2)


def round_int(value: float) -> int:
    return int(_round(value, 0))


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def percentile(values: Iterable[float], p: float) -> float:
    """Linear-interpolated percentile; ``p`` in 0..100. Empty input yields 0.0."""
    ordered = sorted(float(v) for v in values)
    if not ordered:
        return 0.0
    index = (p / 100.0) * (len(ordered) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return ordered[lower]
    weight = index - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


def optional_percentile(values: Sequence[float], p: float) -> float | None:
    if not values:
        return None
    return percentile(values, p)


def median(values: Iterable[float]) -> float | None:
    ordered = sorted(float(v) for v in values)
    if not ordered:
        return None
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def mean(values: Iterable[float]) -> float | None:
    items = [float(v) for v in values]
    if not items:
        return None
    return sum(items) / len(items)


def population_stddev(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    avg = sum(values) / len(values)
    return math.sqrt(sum((v - avg) ** 2 for v in values) / len(values))


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


def bucketize_hours(hours: Iterable[float]) -> list[Bucket]:
    """Histogram over ``CYCLE_TIME_BUCKETS``; negatives land in the first bucket."""
    counts = [0] * len(CYCLE_TIME_BUCKETS)
    for value in hours:
        clamped = max(0.0, float(value))
        for index, bucket in enumerate(CYCLE_TIME_BUCKETS):
            if bucket.min_hours <= clamped < bucket.max_hours:
                counts[index] += 1
                break
    return [
        Bucket(bucket.label, bucket.min_hours, bucket.max_hours, counts[index])
        for index, bucket in enumerate(CYCLE_TIME_BUCKETS)
    ]


def _summed(completions: Iterable[CompletionLike], start: datetime, end: datetime) -> tuple[int, int]:
    issues = 0
    points = 0
    for completion in completions:
        if start <= completion.done_at <= end:
            issues += 1
            points += completion.story_points
    return issues, points


def daily_throughput(completions: Sequence[CompletionLike], start: datetime, end: datetime) -> list[ThroughputBucket]:
    out: list[ThroughputBucket] = []
    for day in iter_days(start, end):
        issues, points = _summed(completions, start_of_day(day), end_of_day(day))
        out.append(ThroughputBucket(period_start=day.isoformat(), issues_done=issues, points_done=points))
    return out


def weekly_throughput(completions: Sequence[CompletionLike], start: datetime, end: datetime) -> list[ThroughputBucket]:
    out: list[ThroughputBucket] = []
    cursor: date = week_start(start)
    last = end.date()
    while cursor <= last:
        period_end = end_of_day(cursor + timedelta(days=6))
        issues, points = _summed(completions, start_of_day(cursor), period_end)
        out.append(ThroughputBucket(period_start=cursor.isoformat(), issues_done=issues, points_done=points))
        cursor = cursor + timedelta(days=7)
    return out


def throughput_trend(completions: Sequence[CompletionLike], start: datetime, end: datetime) -> list[ThroughputBucket]:
    span_days = (end.date() - start.date()).days + 1
    if span_days <= DAILY_BUCKET_MAX_DAYS:
        return daily_throughput(completions, start, end)
    return weekly_throughput(completions, start, end)


def volatility_score(counts: Iterable[int]) -> tuple[float, int]:
    """Return ``(volatility, stability_score)`` over the non-zero counts."""
    observed = [float(c) for c in counts if c]
    if not observed:
        return 0.0, 0
    avg = sum(observed) / len(observed)
    volatility = 0.0 if avg == 0 else population_stddev(observed) / avg
    stability = int(clamp(round_int(100 * (1 - min(volatility, 1.0))), 0, 100))
    return volatility, stability


def completion_ratio(completed: float, planned: float) -> float | None:
    if planned <= 0:
        return None
    return round2(completed / planned)


def safe_rate(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator
