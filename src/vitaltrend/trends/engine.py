"""
Trend Engine

Normalize -> bucket -> statistics -> flags over one observation set.
"""

from typing import Any, Iterable

import structlog

from vitaltrend.models.observations import Series, Trends
from vitaltrend.trends.aggregate import Frequency, bucket_series, compute_stats
from vitaltrend.trends.flags import evaluate_flags
from vitaltrend.trends.normalize import build_series, normalize_records

logger = structlog.get_logger(__name__)


class TrendEngine:
    """
    Reduces raw observation records to per-code trends.

    Usage:
        engine = TrendEngine()
        trends = engine.run(bundle["entries"], codes={"http://loinc.org|8480-6"})
        for flag in trends.flags:
            print(flag.severity, flag.rule, flag.evidence)
    """

    def __init__(self, frequency: Frequency | str = Frequency.AUTO):
        self.frequency = Frequency(frequency)

    def series(
        self,
        records: Iterable[Any],
        codes: Iterable[str] | None = None,
    ) -> list[Series]:
        """Normalized, unbucketed series."""
        return build_series(normalize_records(records, codes))

    def run(
        self,
        records: Iterable[Any],
        codes: Iterable[str] | None = None,
        frequency: Frequency | str | None = None,
    ) -> Trends:
        records = list(records)
        frequency = Frequency(frequency) if frequency else self.frequency

        series = [bucket_series(s, frequency) for s in self.series(records, codes)]
        stats = [compute_stats(s) for s in series]
        flags = evaluate_flags(stats)

        logger.info(
            "Trend analysis complete",
            fetched=len(records),
            series=len(series),
            points=sum(len(s.points) for s in series),
            flags=len(flags),
            frequency=frequency.value,
        )

        return Trends(
            series=series,
            stats=stats,
            flags=flags,
            fetched_count=len(records),
        )
