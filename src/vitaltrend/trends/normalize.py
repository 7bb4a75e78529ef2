"""
Record Normalization

Reduces raw observation records to per-code series. A record without a
finite numeric value or a parseable timestamp is rejected and never reaches
a series; rejection is a returned value, not an exception.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable
import math

import structlog

from vitaltrend.models.observations import ObservationRecord, Point, Series
from vitaltrend.models.params import LOINC_SYSTEM, code_forms
from vitaltrend.models.results import Failure, Success
from vitaltrend.models.timestamps import parse_instant

logger = structlog.get_logger(__name__)

UNKNOWN_CODE = "unknown"


@dataclass
class NormalizedObservation:
    """A record that survived normalization, with its raw origin."""
    code: str
    timestamp: datetime
    value: float
    display: str | None
    unit: str | None
    record: ObservationRecord


def numeric_value(record: ObservationRecord) -> float | None:
    """`value`, else `valueQuantity.value`, as a finite float."""
    raw = record.value
    if raw is None and record.value_quantity:
        raw = record.value_quantity.get("value")
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip()
    elif not isinstance(raw, (int, float)):
        return None
    try:
        value = float(raw)
    except (ValueError, OverflowError):
        # Integers beyond float range overflow
        return None
    return value if math.isfinite(value) else None


def record_timestamp(record: ObservationRecord) -> datetime | None:
    """First present of `when`, `effectiveDateTime`, `issued`, parsed."""
    for candidate in (record.when, record.effective_date_time, record.issued):
        if candidate is not None:
            return parse_instant(candidate)
    return None


def record_code(record: ObservationRecord) -> str:
    """Canonical code of a record."""
    code = record.code
    if code and code.system and code.code:
        return f"{code.system}|{code.code}"
    if record.loinc:
        return f"{LOINC_SYSTEM}|{record.loinc}"
    if code and code.code:
        return code.code
    return UNKNOWN_CODE


def record_unit(record: ObservationRecord) -> str | None:
    if record.unit:
        return record.unit
    if record.value_quantity:
        unit = record.value_quantity.get("unit")
        if isinstance(unit, str):
            return unit
    return None


def normalize_record(raw: Any) -> Success[NormalizedObservation] | Failure:
    """Normalize one raw record or reject it with a reason."""
    try:
        record = ObservationRecord.from_raw(raw)
    except ValueError as e:
        # pydantic ValidationError is a ValueError
        return Failure(reason="malformed record", error=e)

    value = numeric_value(record)
    if value is None:
        return Failure(reason="no finite numeric value")

    timestamp = record_timestamp(record)
    if timestamp is None:
        return Failure(reason="no parseable timestamp")

    return Success(NormalizedObservation(
        code=record_code(record),
        timestamp=timestamp,
        value=value,
        display=record.code.display if record.code else None,
        unit=record_unit(record),
        record=record,
    ))


def requested_code_filter(codes: Iterable[str] | None) -> set[str] | None:
    """All code forms accepted for a requested code set; None means no filter."""
    if not codes:
        return None
    accepted: set[str] = set()
    for code in codes:
        accepted |= code_forms(code)
    return accepted


def normalize_records(
    records: Iterable[Any],
    codes: Iterable[str] | None = None,
) -> list[NormalizedObservation]:
    """
    Normalize records, dropping rejects and codes outside the requested set.

    Order of the returned list follows the input.
    """
    accepted = requested_code_filter(codes)
    survivors = []
    rejected = 0

    for raw in records:
        result = normalize_record(raw)
        if isinstance(result, Failure):
            rejected += 1
            continue
        if accepted is not None and result.value.code not in accepted:
            continue
        survivors.append(result.value)

    if rejected:
        logger.debug("Dropped observation records", rejected=rejected)
    return survivors


def build_series(observations: Iterable[NormalizedObservation]) -> list[Series]:
    """
    Group observations into one Series per canonical code.

    Display and unit come from the first record seen for the code; series
    keep first-seen order and points are sorted ascending by timestamp.
    """
    grouped: dict[str, Series] = {}
    points: dict[str, list[Point]] = {}

    for obs in observations:
        if obs.code not in grouped:
            grouped[obs.code] = Series(code=obs.code, display=obs.display, unit=obs.unit)
            points[obs.code] = []
        points[obs.code].append(Point(timestamp=obs.timestamp, value=obs.value))

    return [
        Series(
            code=series.code,
            display=series.display,
            unit=series.unit,
            points=sorted(points[code], key=lambda p: p.timestamp),
        )
        for code, series in grouped.items()
    ]
