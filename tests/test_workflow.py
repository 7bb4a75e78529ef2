from unittest.mock import AsyncMock, MagicMock

import pytest
from langgraph.checkpoint.memory import MemorySaver

from vitaltrend.agents.composer import NO_DATA_MESSAGE
from vitaltrend.agents.workflow import (
    DEFAULT_TRANSITIONS,
    TransitionTableError,
    VitalsWorkflow,
    validate_transitions,
)
from vitaltrend.integrations.fhir import (
    InMemoryObservationClient,
    ObservationSearchClient,
    RetrievalError,
)
from vitaltrend.integrations.registry import ClientRegistry
from vitaltrend.models.state import Route
from vitaltrend.observability.logging import REDACTED_KEYS

from conftest import T0, observation

FULL_TRACE = ["intake", "route", "fetch", "analyze", "compose"]


class UnavailableClient(ObservationSearchClient):
    async def search(self, request):
        raise RetrievalError("FHIR search failed: 503", status_code=503)


@pytest.mark.asyncio
async def test_fetch_query_end_to_end(registry, memory_client, failing_llm):
    wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)
    result = await wf.run("patient abc-1 blood pressure since 2024-01-01")

    assert result.route == Route.FETCH
    assert result.trace == FULL_TRACE
    assert "Hypertensive crisis candidate" in result.summary
    assert "185" in result.summary and "80" in result.summary
    assert result.trends.fetched_count == 6

    request = memory_client.requests[0]
    assert request.patient_id == "abc-1"
    assert request.since == "2024-01-01T00:00:00.000Z"
    assert request.count == 100
    assert request.max_items == 200


@pytest.mark.asyncio
async def test_default_mock_llm_adds_narrative(registry):
    wf = VitalsWorkflow(registry=registry)
    result = await wf.run("patient abc-1 blood pressure")

    assert result.route == Route.FETCH
    assert result.summary.startswith("Trend overview")
    assert "Coverage: 6 points across 2 codes" in result.summary


@pytest.mark.asyncio
async def test_metrics_query_renders_table(registry, scripted_llm):
    wf = VitalsWorkflow(registry=registry, llm_client=scripted_llm)
    result = await wf.run("show metrics for patient abc-1 blood pressure")

    assert result.route == Route.METRICS
    assert result.summary.startswith("| Timestamp | Code |")
    scripted_llm.generate_structured.assert_not_called()


@pytest.mark.asyncio
async def test_thread_reuses_held_bundle(registry, memory_client, failing_llm):
    wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)
    first = await wf.run("patient abc-1 blood pressure", thread_id="t-1")
    second = await wf.run("summarize", thread_id="t-1")

    assert first.thread_id == second.thread_id == "t-1"
    assert second.route == Route.SUMMARIZE
    assert second.trace == ["intake", "route", "analyze", "compose"]
    assert second.summary.startswith("Coverage: 6 points")
    assert len(memory_client.requests) == 1


@pytest.mark.asyncio
async def test_alert_route_reuses_bundle_for_same_patient(registry, memory_client, scripted_llm):
    wf = VitalsWorkflow(registry=registry, llm_client=scripted_llm)
    scripted_llm.generate_structured.return_value = {
        "route": "fetch", "rationale": "r", "params_patch": {}, "missing": [],
    }
    await wf.run("patient abc-1 blood pressure", thread_id="t-2")

    scripted_llm.generate_structured.return_value = {
        "route": "alert", "rationale": "safety", "params_patch": {}, "missing": [],
    }
    result = await wf.run("any alerts for patient abc-1?", thread_id="t-2")

    assert result.route == Route.ALERT
    assert result.trace == FULL_TRACE
    assert "[CRIT]" in result.summary
    assert len(memory_client.requests) == 1


@pytest.mark.asyncio
async def test_held_bundle_not_shared_across_patients(registry, failing_llm):
    wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)
    await wf.run("patient abc-1 blood pressure", thread_id="t-3")
    result = await wf.run("summarize patient other-9", thread_id="t-3")

    assert result.route == Route.SUMMARIZE
    assert result.summary == NO_DATA_MESSAGE


@pytest.mark.asyncio
async def test_threads_are_isolated(registry, failing_llm):
    wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)
    await wf.run("patient abc-1 blood pressure", thread_id="t-4")
    result = await wf.run("summarize", thread_id="t-5")

    assert result.summary == NO_DATA_MESSAGE


@pytest.mark.asyncio
async def test_caller_params_override_parsed(registry, memory_client, failing_llm):
    wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)
    result = await wf.run(
        "patient someone-else heart rate",
        params={"patientId": "abc-1", "codes": ["8480-6"], "count": 10},
    )

    assert result.route == Route.FETCH
    request = memory_client.requests[0]
    assert request.patient_id == "abc-1"
    assert request.code == "http://loinc.org|8480-6"
    assert request.count == 10
    assert [s.code for s in result.trends.series] == ["http://loinc.org|8480-6"]


@pytest.mark.asyncio
async def test_unknown_route_lists_missing_fields(registry, memory_client, scripted_llm):
    scripted_llm.generate_structured.return_value = {
        "route": "fetch", "rationale": "r", "params_patch": {}, "missing": [],
    }
    wf = VitalsWorkflow(registry=registry, llm_client=scripted_llm)
    result = await wf.run("how are my vitals?")

    assert result.route == Route.UNKNOWN
    assert result.trace == ["intake", "route", "analyze", "compose"]
    assert result.summary == NO_DATA_MESSAGE + " To retrieve data, provide: patientId, codes."
    assert memory_client.requests == []


@pytest.mark.asyncio
async def test_non_numeric_records_yield_no_data(failing_llm):
    client = InMemoryObservationClient({"abc-1": [
        observation("8480-6", "pending", T0),
        observation("8462-4", None, T0),
    ]})
    wf = VitalsWorkflow(registry=ClientRegistry(lambda thread_id: client), llm_client=failing_llm)
    result = await wf.run("patient abc-1 blood pressure")

    assert result.summary == NO_DATA_MESSAGE
    assert result.trends.is_empty
    assert result.trends.fetched_count == 2


@pytest.mark.asyncio
async def test_retrieval_error_propagates(failing_llm):
    wf = VitalsWorkflow(
        registry=ClientRegistry(lambda thread_id: UnavailableClient()),
        llm_client=failing_llm,
    )
    with pytest.raises(RetrievalError):
        await wf.run("patient abc-1 blood pressure")


@pytest.mark.asyncio
async def test_result_to_dict(registry, failing_llm):
    wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)
    data = (await wf.run("patient abc-1 heart rate blood pressure", thread_id="t-6")).to_dict()

    assert data["route"] == "fetch"
    assert data["thread_id"] == "t-6"
    assert data["params"]["patientId"] == "abc-1"
    assert data["trends"]["fetchedCount"] == 6
    assert data["chart"] is None


class TestTransitionTable:
    """Test transition table validation."""

    def test_default_table_is_complete(self):
        assert set(validate_transitions(DEFAULT_TRANSITIONS)) == set(Route)

    def test_missing_route_rejected(self):
        table = {k: v for k, v in DEFAULT_TRANSITIONS.items() if k != Route.ALERT}
        with pytest.raises(TransitionTableError, match="alert"):
            VitalsWorkflow(registry=ClientRegistry(), transitions=table)

    def test_unknown_stage_rejected(self):
        table = {**DEFAULT_TRANSITIONS, Route.UNKNOWN: "compose"}
        with pytest.raises(TransitionTableError):
            validate_transitions(table)

    def test_error_is_value_error(self):
        assert issubclass(TransitionTableError, ValueError)

    @pytest.mark.asyncio
    async def test_custom_table(self, registry, memory_client, failing_llm):
        table = {**DEFAULT_TRANSITIONS, Route.FETCH: "analyze"}
        wf = VitalsWorkflow(registry=registry, llm_client=failing_llm, transitions=table)
        result = await wf.run("patient abc-1 blood pressure")

        assert result.route == Route.FETCH
        assert "fetch" not in result.trace
        assert memory_client.requests == []

    def test_describe(self):
        definition = VitalsWorkflow(registry=ClientRegistry()).describe()

        assert definition["framework"] == "LangGraph"
        route_edges = [e for e in definition["edges"] if e["from"] == "route"]
        assert {e["label"] for e in route_edges} == {r.value for r in Route}


class TestCollaborators:
    """Test that injected collaborators are kept."""

    def test_empty_registry_is_used(self):
        registry = ClientRegistry()
        assert len(registry) == 0

        wf = VitalsWorkflow(registry=registry)

        assert wf.registry is registry

    def test_checkpointer_is_used(self):
        checkpointer = MemorySaver()
        wf = VitalsWorkflow(registry=ClientRegistry(), checkpointer=checkpointer)

        assert wf.checkpointer is checkpointer

    @pytest.mark.asyncio
    async def test_injected_empty_registry_serves_fetch(self, memory_client, failing_llm):
        registry = ClientRegistry(lambda thread_id: memory_client)
        wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)

        result = await wf.run("patient abc-1 blood pressure", thread_id="t-7")

        assert result.trends.fetched_count == 6
        assert "t-7" in registry


class TestClientRelease:
    """Test client lifetime per thread."""

    @pytest.mark.asyncio
    async def test_generated_threads_release_clients(self, registry, failing_llm):
        wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)

        for _ in range(5):
            await wf.run("patient abc-1 blood pressure")

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_named_thread_keeps_client(self, registry, failing_llm):
        wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)

        await wf.run("patient abc-1 blood pressure", thread_id="t-8")

        assert "t-8" in registry

    @pytest.mark.asyncio
    async def test_client_released_on_retrieval_error(self, failing_llm):
        client = UnavailableClient()
        client.aclose = AsyncMock()
        registry = ClientRegistry(lambda thread_id: client)
        wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)

        with pytest.raises(RetrievalError):
            await wf.run("patient abc-1 blood pressure")

        assert len(registry) == 0
        client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_query_text_not_logged(registry, failing_llm, monkeypatch):
    import vitaltrend.agents.workflow as workflow_mod

    mock_logger = MagicMock()
    monkeypatch.setattr(workflow_mod, "logger", mock_logger)
    wf = VitalsWorkflow(registry=registry, llm_client=failing_llm)

    await wf.run("patient secret-77 blood pressure")

    for call in mock_logger.method_calls:
        fields = {k: v for k, v in call.kwargs.items() if k not in REDACTED_KEYS}
        assert "secret-77" not in repr((call.args, fields))
    run_calls = [c for c in mock_logger.info.call_args_list if c.args[0] == "Running vitals workflow"]
    assert run_calls[0].kwargs["query_length"] == len("patient secret-77 blood pressure")
