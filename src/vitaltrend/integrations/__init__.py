"""
VitalTrend Integrations

Observation retrieval clients and the per-thread client registry.
"""

from vitaltrend.integrations.fhir import (
    RetrievalError,
    ObservationSearchRequest,
    ObservationSearchResponse,
    ObservationSearchClient,
    FHIRObservationClient,
    InMemoryObservationClient,
    flatten_observation,
    demo_records,
    build_demo_client,
)
from vitaltrend.integrations.registry import ClientRegistry, default_client_factory

__all__ = [
    "RetrievalError",
    "ObservationSearchRequest",
    "ObservationSearchResponse",
    "ObservationSearchClient",
    "FHIRObservationClient",
    "InMemoryObservationClient",
    "flatten_observation",
    "demo_records",
    "build_demo_client",
    "ClientRegistry",
    "default_client_factory",
]
