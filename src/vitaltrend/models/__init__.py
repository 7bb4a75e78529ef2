"""
VitalTrend Data Models
"""

from vitaltrend.models.params import (
    Params,
    merge_params,
    canonical_code,
    bare_code,
    code_forms,
    LOINC_SYSTEM,
    DEFAULT_COUNT,
    DEFAULT_MAX_ITEMS,
)
from vitaltrend.models.observations import (
    CodeRef,
    ObservationRecord,
    Point,
    Series,
    Stats,
    Severity,
    Flag,
    Trends,
)
from vitaltrend.models.results import Success, Failure, Result
from vitaltrend.models.state import Route, SessionState
from vitaltrend.models.timestamps import parse_instant, to_iso_instant

__all__ = [
    "Params",
    "merge_params",
    "canonical_code",
    "bare_code",
    "code_forms",
    "LOINC_SYSTEM",
    "DEFAULT_COUNT",
    "DEFAULT_MAX_ITEMS",
    "CodeRef",
    "ObservationRecord",
    "Point",
    "Series",
    "Stats",
    "Severity",
    "Flag",
    "Trends",
    "Success",
    "Failure",
    "Result",
    "Route",
    "SessionState",
    "parse_instant",
    "to_iso_instant",
]
