"""
Observation Retrieval

FHIR-style observation search used by the fetch stage:
- Request/response models for the search contract
- FHIR R4 client (httpx) with paging and panel expansion
- In-memory client for local development and tests

Failures (non-success status, transport errors) raise `RetrievalError` and
are not caught by the pipeline.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from vitaltrend.models.observations import ObservationRecord
from vitaltrend.models.params import Params, code_forms
from vitaltrend.models.timestamps import parse_instant, to_iso_instant
from vitaltrend.trends.normalize import record_code, record_timestamp

logger = structlog.get_logger(__name__)

# Hard page-size ceiling of the search contract
MAX_COUNT = 200


class RetrievalError(Exception):
    """The retrieval collaborator failed; terminates the run."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# Search Contract
# =============================================================================

class ObservationSearchRequest(BaseModel):
    """Observation search request."""
    model_config = ConfigDict(populate_by_name=True)

    patient_id: str = Field(alias="patientId")
    code: str | None = None  # comma-joined canonical codes
    since: str | None = None
    until: str | None = None
    count: int | None = Field(default=None, ge=1, le=MAX_COUNT)
    max_items: int | None = Field(default=None, alias="maxItems", ge=1)

    @classmethod
    def from_params(
        cls,
        params: Params,
        max_count: int = MAX_COUNT,
        max_items_cap: int | None = None,
    ) -> "ObservationSearchRequest":
        if not params.patient_id:
            raise ValueError("observation search requires a patient id")
        count = min(params.count, max_count, MAX_COUNT) if params.count else None
        max_items = params.max_items
        if max_items and max_items_cap:
            max_items = min(max_items, max_items_cap)
        return cls(
            patient_id=params.patient_id,
            code=",".join(sorted(params.codes)) if params.codes else None,
            since=params.since,
            until=params.until,
            count=count,
            max_items=max_items,
        )

    @property
    def codes(self) -> list[str]:
        return [c for c in (self.code or "").split(",") if c]


class ObservationSearchResponse(BaseModel):
    """Observation search response."""
    model_config = ConfigDict(populate_by_name=True)

    items: list[dict[str, Any]] = Field(default_factory=list)
    total_returned: int = Field(default=0, alias="totalReturned")


class ObservationSearchClient(ABC):
    """Abstract retrieval collaborator."""

    @abstractmethod
    async def search(self, request: ObservationSearchRequest) -> ObservationSearchResponse:
        """Search observations for one patient."""
        pass

    async def aclose(self) -> None:
        """Release resources held by the client."""
        return None


# =============================================================================
# FHIR R4
# =============================================================================

def _first_coding(concept: Any) -> dict[str, Any]:
    if not isinstance(concept, dict):
        return {}
    codings = concept.get("coding") or []
    coding = codings[0] if codings and isinstance(codings[0], dict) else {}
    return {
        "system": coding.get("system"),
        "code": coding.get("code"),
        "display": coding.get("display") or concept.get("text"),
    }


def _category_label(categories: Any) -> str | None:
    if not isinstance(categories, list) or not categories:
        return None
    coding = _first_coding(categories[0])
    return coding.get("code") or coding.get("display")


def flatten_observation(resource: dict[str, Any]) -> list[dict[str, Any]]:
    """
    Flatten a FHIR Observation into observation record dicts.

    Panels with `component[]` (e.g. blood pressure 85354-9) yield one record
    per component so each measured code forms its own series.
    """
    effective = (
        resource.get("effectiveDateTime")
        or resource.get("effectiveInstant")
        or (resource.get("effectivePeriod") or {}).get("start")
    )
    base = {
        "id": resource.get("id"),
        "status": resource.get("status"),
        "category": _category_label(resource.get("category")),
        "effectiveDateTime": effective,
        "issued": resource.get("issued"),
    }

    records = []
    quantity = resource.get("valueQuantity")
    if isinstance(quantity, dict):
        records.append({
            **base,
            "code": _first_coding(resource.get("code")),
            "valueQuantity": {"value": quantity.get("value"), "unit": quantity.get("unit")},
            "unit": quantity.get("unit"),
        })

    for index, component in enumerate(resource.get("component") or []):
        quantity = component.get("valueQuantity") if isinstance(component, dict) else None
        if not isinstance(quantity, dict):
            continue
        records.append({
            **base,
            "id": f"{base['id']}:{index}" if base["id"] else None,
            "code": _first_coding(component.get("code")),
            "valueQuantity": {"value": quantity.get("value"), "unit": quantity.get("unit")},
            "unit": quantity.get("unit"),
        })

    return records


class FHIRObservationClient(ObservationSearchClient):
    """
    FHIR R4 observation search.

    Usage:
        client = FHIRObservationClient("https://fhir.example.org/R4")
        response = await client.search(ObservationSearchRequest(
            patientId="abc-1", code="http://loinc.org|8480-6", count=50,
        ))
        await client.aclose()
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/fhir+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def _query(self, request: ObservationSearchRequest) -> dict[str, Any]:
        query: dict[str, Any] = {"patient": request.patient_id, "_sort": "date"}
        if request.code:
            query["code"] = request.code
        dates = []
        if request.since:
            dates.append(f"ge{request.since}")
        if request.until:
            dates.append(f"le{request.until}")
        if dates:
            query["date"] = dates
        if request.count:
            query["_count"] = request.count
        return query

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.error("FHIR request failed", error=str(e))
            raise RetrievalError(f"FHIR request failed: {e}") from e

        if response.status_code >= 400:
            logger.error("FHIR search failed", status_code=response.status_code)
            raise RetrievalError(
                f"FHIR search failed: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise RetrievalError("FHIR search returned invalid JSON") from e

    async def search(self, request: ObservationSearchRequest) -> ObservationSearchResponse:
        items: list[dict[str, Any]] = []
        bundle = await self._get("/Observation", params=self._query(request))
        pages = 1

        while True:
            for entry in bundle.get("entry") or []:
                resource = entry.get("resource") if isinstance(entry, dict) else None
                if isinstance(resource, dict) and resource.get("resourceType") == "Observation":
                    items.extend(flatten_observation(resource))

            if request.max_items and len(items) >= request.max_items:
                items = items[:request.max_items]
                break
            next_url = next(
                (link.get("url") for link in bundle.get("link") or []
                 if link.get("relation") == "next"),
                None,
            )
            if not next_url:
                break
            bundle = await self._get(next_url)
            pages += 1

        logger.info(
            "FHIR observation search complete",
            patient_id=request.patient_id,
            items=len(items),
            pages=pages,
        )
        return ObservationSearchResponse(items=items, total_returned=len(items))

    async def aclose(self) -> None:
        await self._client.aclose()


# =============================================================================
# In-Memory
# =============================================================================

class InMemoryObservationClient(ObservationSearchClient):
    """
    Serves observation records from memory.

    Records are keyed by patient id and filtered like a FHIR search: code in
    bare or canonical form, inclusive since/until bounds.
    """

    def __init__(self, records: dict[str, list[dict[str, Any]]] | None = None):
        self.records = records or {}
        self.requests: list[ObservationSearchRequest] = []

    async def search(self, request: ObservationSearchRequest) -> ObservationSearchResponse:
        self.requests.append(request)
        accepted: set[str] = set()
        for code in request.codes:
            accepted |= code_forms(code)
        since = parse_instant(request.since)
        until = parse_instant(request.until)

        items = []
        for raw in self.records.get(request.patient_id, []):
            record = ObservationRecord.from_raw(raw)
            if accepted and record_code(record) not in accepted:
                continue
            if since or until:
                timestamp = record_timestamp(record)
                if timestamp is None:
                    continue
                if since and timestamp < since:
                    continue
                if until and timestamp > until:
                    continue
            items.append(raw)
            if request.max_items and len(items) >= request.max_items:
                break

        return ObservationSearchResponse(items=items, total_returned=len(items))


def demo_records(
    days: int = 7,
    start: datetime | None = None,
) -> list[dict[str, Any]]:
    """Twice-daily blood pressure, heart rate and SpO2 readings."""
    start = start or datetime(2024, 1, 1, 8, tzinfo=timezone.utc)
    vitals = (
        ("8480-6", "Systolic blood pressure", "mm[Hg]", 128.0, 3.0),
        ("8462-4", "Diastolic blood pressure", "mm[Hg]", 82.0, 1.0),
        ("8867-4", "Heart rate", "/min", 74.0, 0.5),
        ("59408-5", "Oxygen saturation", "%", 97.0, -0.3),
    )
    records = []
    for step in range(days * 2):
        when = start + timedelta(hours=12 * step)
        for code, display, unit, base, drift in vitals:
            records.append({
                "id": f"obs-{code}-{step}",
                "status": "final",
                "category": "vital-signs",
                "code": {"system": "http://loinc.org", "code": code, "display": display},
                "valueQuantity": {"value": round(base + drift * step / 2, 1), "unit": unit},
                "effectiveDateTime": to_iso_instant(when),
            })
    return records


def build_demo_client(patient_ids: Iterable[str] = ("demo-1",)) -> InMemoryObservationClient:
    return InMemoryObservationClient({pid: demo_records() for pid in patient_ids})
