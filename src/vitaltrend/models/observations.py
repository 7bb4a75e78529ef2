"""
Observation and Trend Models

Raw observation records as returned by retrieval, and the series, statistics
and flags derived from them by the trend engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from vitaltrend.models.timestamps import to_iso_instant


# =============================================================================
# Raw Records
# =============================================================================

class CodeRef(BaseModel):
    """Code identity of a raw record."""
    model_config = ConfigDict(extra="ignore")

    system: str | None = None
    code: str | None = None
    display: str | None = None


class ObservationRecord(BaseModel):
    """
    A raw observation as returned by the retrieval collaborator.

    Every field is optional and loosely typed; interpreting the record is the
    job of `vitaltrend.trends.normalize`, which rejects rather than raises.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    status: str | None = None
    category: Any = None

    value: Any = None
    unit: str | None = None
    value_quantity: dict[str, Any] | None = Field(default=None, alias="valueQuantity")

    code: CodeRef | None = None
    loinc: str | None = None

    when: Any = None
    effective_date_time: Any = Field(default=None, alias="effectiveDateTime")
    issued: Any = None

    @classmethod
    def from_raw(cls, raw: Any) -> "ObservationRecord":
        """Build from an untyped item, dropping fields of the wrong shape."""
        if isinstance(raw, ObservationRecord):
            return raw
        if not isinstance(raw, dict):
            return cls()
        data = dict(raw)
        code = data.get("code")
        if isinstance(code, str):
            data["code"] = {"code": code}
        elif isinstance(code, dict):
            data["code"] = {
                k: v for k, v in code.items()
                if k in ("system", "code", "display") and isinstance(v, str)
            }
        else:
            data.pop("code", None)
        if not isinstance(data.get("valueQuantity"), dict):
            data.pop("valueQuantity", None)
        for key in ("id", "status", "unit", "loinc"):
            if key in data and data[key] is not None and not isinstance(data[key], str):
                data[key] = str(data[key])
        return cls.model_validate(data)


# =============================================================================
# Series
# =============================================================================

@dataclass(frozen=True)
class Point:
    """A single timestamped value, owned by one Series."""
    timestamp: datetime
    value: float

    def to_dict(self) -> dict:
        return {"t": to_iso_instant(self.timestamp), "v": self.value}


@dataclass
class Series:
    """Ordered time-value history for one canonical code."""
    code: str
    display: str | None = None
    unit: str | None = None
    points: list[Point] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "display": self.display,
            "unit": self.unit,
            "points": [p.to_dict() for p in self.points],
        }


@dataclass
class Stats:
    """Aggregate statistics for one Series."""
    code: str
    count: int
    mean: float
    median: float
    std: float
    min: float
    max: float
    slope_per_day: float
    latest_value: float
    latest_at: datetime
    zscore_of_latest: float

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "count": self.count,
            "mean": self.mean,
            "median": self.median,
            "std": self.std,
            "min": self.min,
            "max": self.max,
            "slopePerDay": self.slope_per_day,
            "latestValue": self.latest_value,
            "latestAt": to_iso_instant(self.latest_at),
            "zscoreOfLatest": self.zscore_of_latest,
        }


# =============================================================================
# Flags
# =============================================================================

class Severity(str, Enum):
    """Flag severity levels."""
    INFO = "info"
    WARN = "warn"
    CRIT = "crit"


@dataclass
class Flag:
    """A rule-triggered advisory annotation."""
    code: str
    severity: Severity
    rule: str
    evidence: str

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "rule": self.rule,
            "evidence": self.evidence,
        }


@dataclass
class Trends:
    """Complete output of one trend engine run; series and stats pair by code."""
    series: list[Series] = field(default_factory=list)
    stats: list[Stats] = field(default_factory=list)
    flags: list[Flag] = field(default_factory=list)
    fetched_count: int = 0

    @property
    def point_count(self) -> int:
        return sum(len(s.points) for s in self.series)

    @property
    def is_empty(self) -> bool:
        return self.point_count == 0

    def to_dict(self) -> dict:
        return {
            "series": [s.to_dict() for s in self.series],
            "stats": [s.to_dict() for s in self.stats],
            "flags": [f.to_dict() for f in self.flags],
            "fetchedCount": self.fetched_count,
        }
