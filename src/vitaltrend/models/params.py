"""
Query Parameters

The structured parameter record produced by intake, patched by the router and
consumed by retrieval. Codes are canonicalized to `<system>|<code>`.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vitaltrend.models.timestamps import parse_instant, to_iso_instant

LOINC_SYSTEM = "http://loinc.org"

DEFAULT_COUNT = 100
DEFAULT_MAX_ITEMS = 200


def canonical_code(code: str) -> str:
    """Normalize a code to `<system>|<code>`; bare codes are LOINC."""
    code = code.strip()
    if "|" in code:
        system, _, value = code.partition("|")
        return f"{system.strip()}|{value.strip()}"
    return f"{LOINC_SYSTEM}|{code}"


def bare_code(code: str) -> str:
    """The code part of a canonical code."""
    return code.rpartition("|")[2]


def code_forms(code: str) -> set[str]:
    """Bare and LOINC-prefixed forms a requested code may match."""
    canonical = canonical_code(code)
    bare = bare_code(canonical)
    return {canonical, bare, f"{LOINC_SYSTEM}|{bare}"}


class Params(BaseModel):
    """
    Query parameters.

    Every field is optional; "not present" is None. Serialized with the
    camelCase aliases used by the retrieval and routing collaborators.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    patient_id: str | None = Field(default=None, alias="patientId")
    codes: set[str] | None = None
    since: str | None = None
    until: str | None = None
    count: int | None = Field(default=None, ge=1)
    max_items: int | None = Field(default=None, alias="maxItems", ge=1)

    @field_validator("patient_id", mode="before")
    @classmethod
    def _strip_patient_id(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("codes", mode="before")
    @classmethod
    def _canonicalize_codes(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split(",")
        return {canonical_code(c) for c in value if isinstance(c, str) and c.strip()}

    @field_validator("since", "until", mode="before")
    @classmethod
    def _normalize_instant(cls, value):
        if value is None:
            return None
        instant = parse_instant(value)
        if instant is None:
            raise ValueError(f"not an ISO-8601 instant: {value!r}")
        return to_iso_instant(instant)

    @property
    def has_patient_and_codes(self) -> bool:
        return bool(self.patient_id) and bool(self.codes)

    def present_fields(self) -> set[str]:
        """Field names holding an explicit value."""
        return {
            name for name in self.model_fields_set
            if getattr(self, name) is not None
        }

    def since_datetime(self) -> datetime | None:
        return parse_instant(self.since)

    def until_datetime(self) -> datetime | None:
        return parse_instant(self.until)

    def to_public_dict(self) -> dict:
        """camelCase dict of present fields, codes sorted."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        if "codes" in data:
            data["codes"] = sorted(data["codes"])
        return data


def merge_params(base: Params | None, patch: "Params | dict | None") -> Params:
    """
    Merge `patch` over `base`.

    A field is overridden only when the patch carries an explicit value;
    omitted or null fields never erase what `base` holds. Neither input is
    modified.
    """
    base = base or Params()
    if patch is None:
        return base.model_copy(deep=True)
    if isinstance(patch, dict):
        patch = Params.model_validate(patch)

    updates = {name: getattr(patch, name) for name in patch.present_fields()}
    if "codes" in updates:
        updates["codes"] = set(updates["codes"])
    return base.model_copy(update=updates, deep=True)
