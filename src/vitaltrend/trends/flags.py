"""
Safety Flags

Deterministic threshold rules over series statistics. Flags are advisory
("suggest review"), never a diagnosis. Thresholds are fixed contracts.
"""

from typing import Iterable

from vitaltrend.models.observations import Flag, Severity, Stats
from vitaltrend.models.params import LOINC_SYSTEM, bare_code

SYSTOLIC_CODES = {"8480-6"}
DIASTOLIC_CODES = {"8462-4"}
HEART_RATE_CODES = {"8867-4"}
SPO2_CODES = {"59408-5", "2708-6"}

# Blood pressure (mmHg)
BP_CRISIS_SYSTOLIC = 180
BP_CRISIS_DIASTOLIC = 120
BP_HIGH_SYSTOLIC = 160
BP_HIGH_DIASTOLIC = 100
SYSTOLIC_SLOPE_PER_DAY = 2.0

# Heart rate (bpm)
HR_HIGH = 130
HR_LOW = 40

# SpO2 (%)
SPO2_CRITICAL = 90
SPO2_BORDERLINE = 93

RULE_BP_CRISIS = "Hypertensive crisis candidate"
RULE_BP_HIGH = "Very high blood pressure"
RULE_SYSTOLIC_RISING = "Systolic rising fast"
RULE_HR_RANGE = "HR out of nominal range"
RULE_SPO2_LOW = "Low SpO2"
RULE_SPO2_BORDERLINE = "Borderline SpO2"


def fmt(value: float) -> str:
    """Compact number formatting for evidence text."""
    return f"{value:g}"


def loinc_of(code: str) -> str | None:
    """LOINC code of a canonical or bare code; None for other systems."""
    if "|" not in code:
        return code
    if code.startswith(LOINC_SYSTEM + "|"):
        return bare_code(code)
    return None


def _find(stats: Iterable[Stats], loinc_codes: set[str]) -> Stats | None:
    for item in stats:
        if loinc_of(item.code) in loinc_codes:
            return item
    return None


def blood_pressure_flags(systolic: Stats | None, diastolic: Stats | None) -> list[Flag]:
    """
    Crisis/high rules on the latest readings.

    With both series present the rule fires on either component and the
    evidence cites both; otherwise each present series is judged alone.
    """
    if systolic and diastolic:
        sbp, dbp = systolic.latest_value, diastolic.latest_value
        evidence = f"latest systolic {fmt(sbp)} / diastolic {fmt(dbp)} mmHg"
        if sbp >= BP_CRISIS_SYSTOLIC or dbp >= BP_CRISIS_DIASTOLIC:
            return [Flag(systolic.code, Severity.CRIT, RULE_BP_CRISIS, evidence)]
        if sbp >= BP_HIGH_SYSTOLIC or dbp >= BP_HIGH_DIASTOLIC:
            return [Flag(systolic.code, Severity.WARN, RULE_BP_HIGH, evidence)]
        return []

    flags = []
    for item, label, crisis, high in (
        (systolic, "systolic", BP_CRISIS_SYSTOLIC, BP_HIGH_SYSTOLIC),
        (diastolic, "diastolic", BP_CRISIS_DIASTOLIC, BP_HIGH_DIASTOLIC),
    ):
        if item is None:
            continue
        evidence = f"latest {label} {fmt(item.latest_value)} mmHg"
        if item.latest_value >= crisis:
            flags.append(Flag(item.code, Severity.CRIT, RULE_BP_CRISIS, evidence))
        elif item.latest_value >= high:
            flags.append(Flag(item.code, Severity.WARN, RULE_BP_HIGH, evidence))
    return flags


def systolic_trend_flags(systolic: Stats | None) -> list[Flag]:
    if systolic is None or systolic.slope_per_day < SYSTOLIC_SLOPE_PER_DAY:
        return []
    evidence = (
        f"systolic slope {systolic.slope_per_day:+.2f} mmHg/day "
        f"over {systolic.count} points"
    )
    return [Flag(systolic.code, Severity.INFO, RULE_SYSTOLIC_RISING, evidence)]


def heart_rate_flags(heart_rate: Stats | None) -> list[Flag]:
    if heart_rate is None:
        return []
    value = heart_rate.latest_value
    if value > HR_HIGH or value < HR_LOW:
        evidence = f"latest heart rate {fmt(value)} bpm (nominal {HR_LOW}-{HR_HIGH})"
        return [Flag(heart_rate.code, Severity.WARN, RULE_HR_RANGE, evidence)]
    return []


def spo2_flags(spo2: Stats | None) -> list[Flag]:
    if spo2 is None:
        return []
    value = spo2.latest_value
    evidence = f"latest SpO2 {fmt(value)}%"
    if value < SPO2_CRITICAL:
        return [Flag(spo2.code, Severity.CRIT, RULE_SPO2_LOW, evidence)]
    if value < SPO2_BORDERLINE:
        return [Flag(spo2.code, Severity.WARN, RULE_SPO2_BORDERLINE, evidence)]
    return []


def evaluate_flags(stats: list[Stats]) -> list[Flag]:
    """All rule flags for a set of series statistics."""
    systolic = _find(stats, SYSTOLIC_CODES)
    diastolic = _find(stats, DIASTOLIC_CODES)

    flags: list[Flag] = []
    flags.extend(blood_pressure_flags(systolic, diastolic))
    flags.extend(systolic_trend_flags(systolic))
    flags.extend(heart_rate_flags(_find(stats, HEART_RATE_CODES)))
    flags.extend(spo2_flags(_find(stats, SPO2_CODES)))
    return flags
