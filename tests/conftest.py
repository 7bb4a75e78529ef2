"""
Shared fixtures for VitalTrend tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

import vitaltrend.llm.client as llm_client_mod
from vitaltrend.integrations.fhir import InMemoryObservationClient
from vitaltrend.integrations.registry import ClientRegistry
from vitaltrend.llm.client import BaseLLMClient

LOINC = "http://loinc.org"
T0 = datetime(2024, 1, 1, 8, tzinfo=timezone.utc)


def observation(
    code: str,
    value,
    when,
    display: str | None = None,
    unit: str | None = None,
    **extra,
) -> dict:
    """Raw observation record dict as returned by retrieval."""
    if isinstance(when, datetime):
        when = when.isoformat()
    record = {
        "code": {"system": LOINC, "code": code},
        "valueQuantity": {"value": value, "unit": unit},
        "effectiveDateTime": when,
        "status": "final",
        "category": "vital-signs",
    }
    if display:
        record["code"]["display"] = display
    record.update(extra)
    return record


def daily_series(code: str, values, start: datetime = T0, **kwargs) -> list[dict]:
    return [
        observation(code, v, start + timedelta(days=i), id=f"{code}-{i}", **kwargs)
        for i, v in enumerate(values)
    ]


@pytest.fixture(autouse=True)
def reset_llm_singleton():
    # Ensure each test gets a fresh MockLLMClient from get_llm_client()
    llm_client_mod._llm_client = None
    yield
    llm_client_mod._llm_client = None


@pytest.fixture
def scripted_llm():
    """LLM double; set return values per test."""
    llm = AsyncMock(spec=BaseLLMClient)
    llm.generate.return_value = "Blood pressure is trending upward."
    llm.generate_structured.return_value = {
        "route": "summarize",
        "rationale": "summary requested",
        "params_patch": {},
        "missing": [],
    }
    return llm


@pytest.fixture
def failing_llm():
    llm = AsyncMock(spec=BaseLLMClient)
    llm.generate.side_effect = RuntimeError("model offline")
    llm.generate_structured.side_effect = RuntimeError("model offline")
    return llm


@pytest.fixture
def bp_records():
    """Systolic/diastolic for patient abc-1, latest reading 185/80."""
    return (
        daily_series("8480-6", [150, 165, 185], display="Systolic blood pressure", unit="mm[Hg]")
        + daily_series("8462-4", [85, 82, 80], display="Diastolic blood pressure", unit="mm[Hg]")
    )


@pytest.fixture
def memory_client(bp_records):
    return InMemoryObservationClient({"abc-1": bp_records})


@pytest.fixture
def registry(memory_client):
    return ClientRegistry(lambda thread_id: memory_client)
