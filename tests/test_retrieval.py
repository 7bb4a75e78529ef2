"""
Tests for observation retrieval clients and the client registry.
"""

import httpx
import pytest

from vitaltrend.integrations.fhir import (
    FHIRObservationClient,
    InMemoryObservationClient,
    ObservationSearchRequest,
    RetrievalError,
    build_demo_client,
    flatten_observation,
)
from vitaltrend.integrations.registry import ClientRegistry
from vitaltrend.models.params import Params

from conftest import daily_series

BASE_URL = "http://fhir.test/fhir"

BP_PANEL = {
    "resourceType": "Observation",
    "id": "bp-1",
    "status": "final",
    "category": [{"coding": [{"code": "vital-signs"}]}],
    "code": {"coding": [{"system": "http://loinc.org", "code": "85354-9"}]},
    "effectiveDateTime": "2024-01-01T08:00:00Z",
    "component": [
        {
            "code": {"coding": [{"system": "http://loinc.org", "code": "8480-6", "display": "Systolic"}]},
            "valueQuantity": {"value": 142, "unit": "mm[Hg]"},
        },
        {
            "code": {"coding": [{"system": "http://loinc.org", "code": "8462-4", "display": "Diastolic"}]},
            "valueQuantity": {"value": 91, "unit": "mm[Hg]"},
        },
    ],
}


def heart_rate(resource_id: str, value: float) -> dict:
    return {
        "resourceType": "Observation",
        "id": resource_id,
        "status": "final",
        "code": {"coding": [{"system": "http://loinc.org", "code": "8867-4", "display": "Heart rate"}]},
        "valueQuantity": {"value": value, "unit": "/min"},
        "effectiveDateTime": "2024-01-01T08:00:00Z",
    }


def bundle(*resources, next_url: str | None = None) -> dict:
    data = {
        "resourceType": "Bundle",
        "type": "searchset",
        "entry": [{"resource": r} for r in resources],
    }
    if next_url:
        data["link"] = [{"relation": "next", "url": next_url}]
    return data


class TestFlattenObservation:
    """Test FHIR resource flattening."""

    def test_components_expanded(self):
        records = flatten_observation(BP_PANEL)

        assert [r["code"]["code"] for r in records] == ["8480-6", "8462-4"]
        assert [r["id"] for r in records] == ["bp-1:0", "bp-1:1"]
        assert records[0]["valueQuantity"] == {"value": 142, "unit": "mm[Hg]"}
        assert records[0]["category"] == "vital-signs"
        assert records[0]["effectiveDateTime"] == "2024-01-01T08:00:00Z"

    def test_simple_value(self):
        records = flatten_observation(heart_rate("hr-1", 77))

        assert len(records) == 1
        assert records[0]["code"]["display"] == "Heart rate"
        assert records[0]["unit"] == "/min"

    def test_no_quantity(self):
        resource = {"resourceType": "Observation", "id": "x", "valueString": "normal"}
        assert flatten_observation(resource) == []


class TestFHIRObservationClient:
    """Test FHIR search over a mock transport."""

    @pytest.mark.asyncio
    async def test_search_query_and_paging(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=bundle(heart_rate("hr-2", 80)))
            return httpx.Response(200, json=bundle(
                BP_PANEL, heart_rate("hr-1", 77),
                next_url=f"{BASE_URL}/Observation?page=2",
            ))

        client = FHIRObservationClient(BASE_URL, token="secret", transport=httpx.MockTransport(handler))
        request = ObservationSearchRequest.from_params(Params(
            patient_id="abc-1",
            codes=["8480-6", "8867-4"],
            since="2024-01-01",
            until="2024-02-01",
            count=50,
        ))
        response = await client.search(request)
        await client.aclose()

        assert response.total_returned == 4
        assert [item["id"] for item in response.items] == ["bp-1:0", "bp-1:1", "hr-1", "hr-2"]

        first = seen[0]
        assert first.url.path == "/fhir/Observation"
        assert first.url.params["patient"] == "abc-1"
        assert first.url.params["code"] == "http://loinc.org|8480-6,http://loinc.org|8867-4"
        assert first.url.params.get_list("date") == [
            "ge2024-01-01T00:00:00.000Z",
            "le2024-02-01T00:00:00.000Z",
        ]
        assert first.url.params["_count"] == "50"
        assert first.headers["Authorization"] == "Bearer secret"
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_max_items_stops_paging(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=bundle(
                heart_rate("a", 1), heart_rate("b", 2), heart_rate("c", 3),
                next_url=f"{BASE_URL}/Observation?page=2",
            ))

        client = FHIRObservationClient(BASE_URL, transport=httpx.MockTransport(handler))
        response = await client.search(ObservationSearchRequest(patientId="abc-1", maxItems=2))

        assert response.total_returned == 2
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        client = FHIRObservationClient(
            BASE_URL,
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )
        with pytest.raises(RetrievalError) as exc_info:
            await client.search(ObservationSearchRequest(patientId="abc-1"))

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = FHIRObservationClient(BASE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(RetrievalError):
            await client.search(ObservationSearchRequest(patientId="abc-1"))


class TestSearchRequest:
    """Test request construction from params."""

    def test_requires_patient(self):
        with pytest.raises(ValueError):
            ObservationSearchRequest.from_params(Params(codes=["8480-6"]))

    def test_caps(self):
        request = ObservationSearchRequest.from_params(
            Params(patient_id="p1", count=150, max_items=900),
            max_count=100,
            max_items_cap=500,
        )

        assert request.count == 100
        assert request.max_items == 500

    def test_serialized_with_aliases(self):
        request = ObservationSearchRequest.from_params(Params(patient_id="p1", max_items=5))
        data = request.model_dump(by_alias=True, exclude_none=True)

        assert data == {"patientId": "p1", "maxItems": 5}


class TestInMemoryClient:
    """Test the in-memory retrieval collaborator."""

    @pytest.mark.asyncio
    async def test_filters(self):
        records = daily_series("8480-6", [120, 125, 130]) + daily_series("8867-4", [70, 71, 72])
        client = InMemoryObservationClient({"p1": records})
        response = await client.search(ObservationSearchRequest(
            patientId="p1",
            code="8480-6",
            since="2024-01-02T00:00:00.000Z",
        ))

        assert [item["valueQuantity"]["value"] for item in response.items] == [125, 130]
        assert client.requests[0].patient_id == "p1"

    @pytest.mark.asyncio
    async def test_unknown_patient(self):
        response = await InMemoryObservationClient().search(ObservationSearchRequest(patientId="nobody"))
        assert response.items == []

    @pytest.mark.asyncio
    async def test_demo_client(self):
        client = build_demo_client(["demo-1"])
        response = await client.search(ObservationSearchRequest(patientId="demo-1", maxItems=10))

        assert response.total_returned == 10
        assert response.items[0]["effectiveDateTime"] == "2024-01-01T08:00:00.000Z"


class TestClientRegistry:
    """Test per-thread client caching."""

    def test_one_client_per_thread(self):
        created = []

        def factory(thread_id):
            client = InMemoryObservationClient()
            created.append(thread_id)
            return client

        registry = ClientRegistry(factory)
        first = registry.get("t1")

        assert registry.get("t1") is first
        assert registry.get("t2") is not first
        assert created == ["t1", "t2"]
        assert "t1" in registry
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_release_and_close(self):
        registry = ClientRegistry(lambda thread_id: InMemoryObservationClient())
        registry.get("t1")
        registry.get("t2")

        await registry.release("t1")
        assert "t1" not in registry

        await registry.aclose()
        assert len(registry) == 0

    def test_default_factory_uses_demo_data(self):
        registry = ClientRegistry()
        assert isinstance(registry.get("t1"), InMemoryObservationClient)
