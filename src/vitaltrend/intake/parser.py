"""
Intake Parser

Turns free query text into a structured `Params` record plus an advisory
route hint. Extraction is regex and table driven; anything that cannot be
parsed resolves to "not present", never to an error.

Examples:
    "patient abc-1 blood pressure since 2024-01-01"
        -> patientId=abc-1, codes={8480-6, 8462-4}, since=2024-01-01T00:00:00.000Z
    "pid: 42 heart rate after March 3, 2024 count=50"
        -> patientId=42, codes={8867-4}, since=2024-03-03T00:00:00.000Z, count=50
"""

from dataclasses import dataclass
from datetime import datetime, timezone
import re

import structlog
from dateutil import parser as date_parser

from vitaltrend.models.params import (
    Params,
    canonical_code,
    DEFAULT_COUNT,
    DEFAULT_MAX_ITEMS,
)
from vitaltrend.models.state import Route
from vitaltrend.models.timestamps import ensure_utc, to_iso_instant

logger = structlog.get_logger(__name__)


# =============================================================================
# Vocabulary
# =============================================================================

SYSTOLIC = "8480-6"
DIASTOLIC = "8462-4"
HEART_RATE = "8867-4"
SPO2 = "59408-5"
BODY_WEIGHT = "29463-7"
BODY_HEIGHT = "8302-2"
BODY_TEMPERATURE = "8310-5"
RESPIRATORY_RATE = "9279-1"
BMI = "39156-5"

# Matched as case-insensitive substrings of the whole query
CODE_SYNONYMS: dict[str, tuple[str, ...]] = {
    "blood pressure": (SYSTOLIC, DIASTOLIC),
    "bp": (SYSTOLIC, DIASTOLIC),
    "systolic": (SYSTOLIC,),
    "diastolic": (DIASTOLIC,),
    "heart rate": (HEART_RATE,),
    "pulse": (HEART_RATE,),
    "spo2": (SPO2,),
    "oxygen saturation": (SPO2,),
    "weight": (BODY_WEIGHT,),
    "height": (BODY_HEIGHT,),
    "temperature": (BODY_TEMPERATURE,),
    "respiratory rate": (RESPIRATORY_RATE,),
    "bmi": (BMI,),
}


# =============================================================================
# Patterns
# =============================================================================

_TOKEN = r"([a-z0-9\-._]+)"

PATIENT_PATTERNS = (
    re.compile(r"\bpatient(?:id)?\b[:\s-]*" + _TOKEN, re.IGNORECASE),
    re.compile(r"\bpid\b[:\s-]*" + _TOKEN, re.IGNORECASE),
)

# LOINC-style code; the lookarounds keep it from matching inside dates
LOINC_PATTERN = re.compile(r"(?<![\d-])(\d{1,6}-\d)(?!\d|-\d)")

_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?"
    r"|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)(?![a-z])\.?"
)
_ISO_DATE = (
    r"\d{4}[-/]\d{1,2}[-/]\d{1,2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?"
)
_MONTH_DATE = (
    rf"(?:\d{{1,2}}(?!\d)(?:st|nd|rd|th)?\s+{_MONTH}(?:,?\s+\d{{4}})?"
    rf"|{_MONTH}(?:\s+\d{{1,2}}(?!\d)(?:st|nd|rd|th)?)?(?:,?\s+\d{{4}})?)"
)
_DATE = rf"(?P<date>{_ISO_DATE}|{_MONTH_DATE})"

SINCE_PATTERN = re.compile(rf"\b(?:since|after)\s+(?:the\s+)?{_DATE}", re.IGNORECASE)
UNTIL_PATTERN = re.compile(rf"\b(?:until|through|before)\s+(?:the\s+)?{_DATE}", re.IGNORECASE)

COUNT_PATTERN = re.compile(r"\bcount\s*[:=]?\s*(\d+)", re.IGNORECASE)
MAX_ITEMS_PATTERN = re.compile(r"\bmax[\s_-]?items\s*[:=]?\s*(\d+)", re.IGNORECASE)


@dataclass
class IntakeResult:
    """Parsed parameters and the advisory route hint."""
    params: Params
    route_hint: Route


# =============================================================================
# Parser
# =============================================================================

class IntakeParser:
    """Regex and synonym-table extraction of query parameters."""

    def __init__(self, synonyms: dict[str, tuple[str, ...]] | None = None):
        self.synonyms = synonyms or CODE_SYNONYMS

    def parse(self, text: str | None) -> IntakeResult:
        text = text or ""

        patient_id = self.extract_patient_id(text)
        codes = self.extract_codes(text)
        since = self.extract_date(SINCE_PATTERN, text)
        until = self.extract_date(UNTIL_PATTERN, text)
        count = self.extract_int(COUNT_PATTERN, text) or DEFAULT_COUNT
        max_items = self.extract_int(MAX_ITEMS_PATTERN, text) or DEFAULT_MAX_ITEMS

        values = {"count": count, "max_items": max_items}
        if patient_id:
            values["patient_id"] = patient_id
        if codes:
            values["codes"] = codes
        if since:
            values["since"] = since
        if until:
            values["until"] = until
        params = Params(**values)

        if patient_id and codes:
            hint = Route.FETCH
        elif (since or until) and not codes:
            hint = Route.SUMMARIZE
        else:
            hint = Route.UNKNOWN

        logger.debug(
            "Intake parsed",
            patient_id=patient_id,
            codes=sorted(codes),
            since=since,
            until=until,
            route_hint=hint.value,
        )
        return IntakeResult(params=params, route_hint=hint)

    def extract_patient_id(self, text: str) -> str | None:
        for pattern in PATIENT_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1).rstrip(".-_") or None
        return None

    def extract_codes(self, text: str) -> set[str]:
        codes = {canonical_code(m) for m in LOINC_PATTERN.findall(text)}
        lowered = text.lower()
        for phrase, loinc_codes in self.synonyms.items():
            if phrase in lowered:
                codes.update(canonical_code(c) for c in loinc_codes)
        return codes

    def extract_date(self, pattern: re.Pattern, text: str) -> str | None:
        match = pattern.search(text)
        if not match:
            return None
        return parse_date_phrase(match.group("date"))

    def extract_int(self, pattern: re.Pattern, text: str) -> int | None:
        match = pattern.search(text)
        if not match:
            return None
        value = int(match.group(1))
        return value if value > 0 else None


def parse_date_phrase(phrase: str) -> str | None:
    """Permissively parse a date phrase to an ISO-8601 instant, or None."""
    phrase = phrase.strip().rstrip(".,")
    if re.match(r"\d{4}/", phrase):
        phrase = phrase.replace("/", "-")
    # Missing parts default to the first of the month/year, midnight
    default = datetime(datetime.now(timezone.utc).year, 1, 1)
    try:
        parsed = date_parser.parse(phrase, default=default, fuzzy=True)
    except (ValueError, OverflowError):
        logger.debug("Unparseable date phrase", phrase=phrase)
        return None
    return to_iso_instant(ensure_utc(parsed))


_default_parser = IntakeParser()


def parse_query(text: str | None) -> IntakeResult:
    """Parse with the default synonym table."""
    return _default_parser.parse(text)
