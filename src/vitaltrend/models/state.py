"""
Session State

The aggregate threaded through every orchestration stage. Nodes return
partial updates; LangGraph applies them to a fresh state value so no stage
mutates what a predecessor returned.
"""

from enum import Enum
from typing import Any, TypedDict

from vitaltrend.models.observations import Trends
from vitaltrend.models.params import Params


class Route(str, Enum):
    """Terminal classification driving orchestration."""
    FETCH = "fetch"
    METRICS = "metrics"
    SUMMARIZE = "summarize"
    ALERT = "alert"
    UNKNOWN = "unknown"


class SessionState(TypedDict, total=False):
    """
    State for one pipeline invocation.

    `bundle` holds `{"entries": [raw observation dicts], "patientId": ...}`
    once retrieval has run; it survives across invocations of the same
    thread and is reused by routes that do not fetch. `trends` is set by the
    analyze stage.
    """
    # Input
    query: str
    thread_id: str

    # Working parameters
    params: Params
    route_hint: Route | None
    route: Route | None
    rationale: str | None

    # Data
    bundle: dict[str, Any] | None
    trends: Trends | None

    # Output
    summary: str | None
    chart: Any

    # Executed node names for this invocation, in order
    trace: list[str]
