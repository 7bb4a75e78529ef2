"""
VitalTrend Intake

Free-text to structured query parameters.
"""

from vitaltrend.intake.parser import (
    IntakeParser,
    IntakeResult,
    CODE_SYNONYMS,
    parse_query,
    parse_date_phrase,
)

__all__ = [
    "IntakeParser",
    "IntakeResult",
    "CODE_SYNONYMS",
    "parse_query",
    "parse_date_phrase",
]
