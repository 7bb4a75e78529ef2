"""
Bucketing and Statistics

Collapses dense series into fixed-width UTC buckets (median per bucket) and
computes per-series aggregate statistics.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Sequence
import math

from vitaltrend.models.observations import Point, Series, Stats

# Series longer than this are bucketed daily in auto mode
AUTO_BUCKET_THRESHOLD = 200

SECONDS_PER_DAY = 86400.0


class Frequency(str, Enum):
    """Bucketing frequency."""
    AUTO = "auto"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


def median(values: Sequence[float]) -> float:
    """Middle value; mean of the two middle values for an even count."""
    if not values:
        raise ValueError("median of empty sequence")
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def bucket_start(timestamp: datetime, frequency: Frequency) -> datetime:
    """Floor a UTC timestamp to the start of its bucket."""
    if frequency == Frequency.HOURLY:
        return timestamp.replace(minute=0, second=0, microsecond=0)
    day = timestamp.replace(hour=0, minute=0, second=0, microsecond=0)
    if frequency == Frequency.DAILY:
        return day
    if frequency == Frequency.WEEKLY:
        # Monday is 0; weeks start on Sunday
        return day - timedelta(days=(day.weekday() + 1) % 7)
    raise ValueError(f"no bucket width for frequency {frequency.value}")


def resolve_frequency(series: Series, frequency: Frequency | str) -> Frequency | None:
    """Concrete frequency for a series, or None for no bucketing."""
    frequency = Frequency(frequency)
    if frequency == Frequency.AUTO:
        return Frequency.DAILY if len(series.points) > AUTO_BUCKET_THRESHOLD else None
    return frequency


def bucket_series(series: Series, frequency: Frequency | str = Frequency.AUTO) -> Series:
    """
    Return a new Series with one median point per non-empty bucket.

    The input series is returned unchanged when no bucketing applies.
    """
    resolved = resolve_frequency(series, frequency)
    if resolved is None:
        return series

    buckets: dict[datetime, list[float]] = {}
    for point in series.points:
        buckets.setdefault(bucket_start(point.timestamp, resolved), []).append(point.value)

    return Series(
        code=series.code,
        display=series.display,
        unit=series.unit,
        points=[Point(timestamp=ts, value=median(vals)) for ts, vals in sorted(buckets.items())],
    )


def compute_stats(series: Series) -> Stats:
    """
    Aggregate statistics for a non-empty, time-sorted series.

    std is the sample standard deviation (n - 1); slope is the least-squares
    slope of value against elapsed days since the first point. Both are 0
    for fewer than two points, and the z-score of the latest value is 0
    when std is 0.
    """
    points = series.points
    n = len(points)
    if n == 0:
        raise ValueError(f"cannot compute stats for empty series {series.code}")

    values = [p.value for p in points]
    mean = sum(values) / n
    std = math.sqrt(sum((v - mean) ** 2 for v in values) / (n - 1)) if n > 1 else 0.0

    latest = points[-1]
    zscore = (latest.value - mean) / std if std > 0 else 0.0

    return Stats(
        code=series.code,
        count=n,
        mean=mean,
        median=median(values),
        std=std,
        min=min(values),
        max=max(values),
        slope_per_day=slope_per_day(points),
        latest_value=latest.value,
        latest_at=latest.timestamp,
        zscore_of_latest=zscore,
    )


def slope_per_day(points: Sequence[Point]) -> float:
    """Ordinary least-squares slope in value units per day."""
    n = len(points)
    if n < 2:
        return 0.0
    origin = points[0].timestamp
    xs = [(p.timestamp - origin).total_seconds() / SECONDS_PER_DAY for p in points]
    ys = [p.value for p in points]
    x_mean = sum(xs) / n
    y_mean = sum(ys) / n
    denominator = sum((x - x_mean) ** 2 for x in xs)
    if denominator == 0:
        return 0.0
    numerator = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, ys))
    return numerator / denominator
