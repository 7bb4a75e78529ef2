"""
VitalTrend Agents

- Router: route selection with deterministic fallback
- OutputComposer: metrics table and trend summary rendering
- VitalsWorkflow: LangGraph pipeline over a session state
"""

from vitaltrend.agents.router import (
    Router,
    RouteDecision,
    RoutingOutcome,
    ROUTE_DECISION_SCHEMA,
    fallback_route,
    missing_for_fetch,
)
from vitaltrend.agents.composer import (
    Chart,
    ChartRenderer,
    ComposedOutput,
    OutputComposer,
    NO_DATA_MESSAGE,
)
from vitaltrend.agents.workflow import (
    VitalsWorkflow,
    PipelineResult,
    TransitionTableError,
    DEFAULT_TRANSITIONS,
    validate_transitions,
)

__all__ = [
    "Router",
    "RouteDecision",
    "RoutingOutcome",
    "ROUTE_DECISION_SCHEMA",
    "fallback_route",
    "missing_for_fetch",
    "Chart",
    "ChartRenderer",
    "ComposedOutput",
    "OutputComposer",
    "NO_DATA_MESSAGE",
    "VitalsWorkflow",
    "PipelineResult",
    "TransitionTableError",
    "DEFAULT_TRANSITIONS",
    "validate_transitions",
]
