"""
VitalTrend Trend Analytics

Series normalization, bucketing, statistics and safety flags.
"""

from vitaltrend.trends.engine import TrendEngine
from vitaltrend.trends.aggregate import (
    Frequency,
    AUTO_BUCKET_THRESHOLD,
    bucket_series,
    bucket_start,
    compute_stats,
    median,
)
from vitaltrend.trends.flags import evaluate_flags
from vitaltrend.trends.normalize import (
    NormalizedObservation,
    normalize_record,
    normalize_records,
    build_series,
)

__all__ = [
    "TrendEngine",
    "Frequency",
    "AUTO_BUCKET_THRESHOLD",
    "bucket_series",
    "bucket_start",
    "compute_stats",
    "median",
    "evaluate_flags",
    "NormalizedObservation",
    "normalize_record",
    "normalize_records",
    "build_series",
]
