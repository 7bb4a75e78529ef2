"""
Vital-Sign Query Workflow

LangGraph orchestration of one query:

```
    START -> intake -> route --(transition table)--> fetch -> analyze -> compose -> END
                                       \\------------------------^
```

The edge leaving `route` is chosen from an explicit `Route -> stage` table
that is checked for exhaustiveness when the workflow is built. Every node
returns a partial update, so no stage mutates the state it was given.
Checkpoints are keyed by thread id; a retrieved bundle therefore stays
available to later queries of the same thread.
"""

from dataclasses import dataclass, field
from typing import Any
import uuid

import structlog
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph

from vitaltrend.agents.composer import Chart, ChartRenderer, OutputComposer
from vitaltrend.agents.router import Router
from vitaltrend.config import get_settings
from vitaltrend.integrations.fhir import ObservationSearchRequest, RetrievalError
from vitaltrend.integrations.registry import ClientRegistry
from vitaltrend.intake.parser import IntakeParser
from vitaltrend.llm.client import BaseLLMClient, LLMClient, get_llm_client
from vitaltrend.models.observations import Trends
from vitaltrend.models.params import Params, merge_params
from vitaltrend.models.state import Route, SessionState
from vitaltrend.trends.engine import TrendEngine

logger = structlog.get_logger(__name__)


STAGES = ("intake", "route", "fetch", "analyze", "compose")

# Stages reachable from `route`
ROUTABLE_STAGES = ("fetch", "analyze")

DEFAULT_TRANSITIONS: dict[Route, str] = {
    Route.FETCH: "fetch",
    Route.METRICS: "fetch",
    Route.ALERT: "fetch",
    Route.SUMMARIZE: "analyze",
    Route.UNKNOWN: "analyze",
}


class TransitionTableError(ValueError):
    """The route transition table is incomplete or names an unknown stage."""


def validate_transitions(table: dict[Route, str]) -> dict[Route, str]:
    missing = [route.value for route in Route if route not in table]
    if missing:
        raise TransitionTableError(f"No transition for routes: {', '.join(missing)}")
    unknown = sorted({stage for stage in table.values() if stage not in ROUTABLE_STAGES})
    if unknown:
        raise TransitionTableError(f"Unknown stages in transition table: {', '.join(unknown)}")
    return dict(table)


@dataclass
class PipelineResult:
    """Output of one pipeline invocation."""
    summary: str
    route: Route
    thread_id: str
    params: Params
    trends: Trends | None = None
    chart: Chart | None = None
    trace: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "route": self.route.value,
            "thread_id": self.thread_id,
            "params": self.params.to_public_dict(),
            "trends": self.trends.to_dict() if self.trends else None,
            "chart": self.chart.to_dict() if self.chart else None,
            "trace": self.trace,
        }


class VitalsWorkflow:
    """
    Query pipeline: intake -> route -> fetch -> analyze -> compose.

    Usage:
        workflow = VitalsWorkflow(registry=ClientRegistry())
        result = await workflow.run("patient abc-1 blood pressure since 2024-01-01")
        print(result.summary)
    """

    def __init__(
        self,
        registry: ClientRegistry | None = None,
        llm_client: BaseLLMClient | LLMClient | None = None,
        intake: IntakeParser | None = None,
        engine: TrendEngine | None = None,
        composer: OutputComposer | None = None,
        chart_renderer: ChartRenderer | None = None,
        transitions: dict[Route, str] | None = None,
        checkpointer: Any = None,
    ):
        settings = get_settings()
        self.settings = settings
        # Explicit None checks: an empty registry is falsy
        self.registry = registry if registry is not None else ClientRegistry()
        self.llm = llm_client if llm_client is not None else get_llm_client()
        self.intake = intake if intake is not None else IntakeParser()
        self.router = Router(self.llm)
        self.engine = engine if engine is not None else TrendEngine(settings.trends.frequency)
        if composer is None:
            composer = OutputComposer(
                llm_client=self.llm,
                narrative_enabled=settings.llm.narrative_enabled,
                chart_renderer=chart_renderer,
            )
        self.composer = composer
        self.transitions = validate_transitions(
            transitions if transitions is not None else DEFAULT_TRANSITIONS
        )
        self.checkpointer = checkpointer if checkpointer is not None else MemorySaver()

        self.graph = self._build_graph()
        self.compiled = self.graph.compile(checkpointer=self.checkpointer)

    def _build_graph(self) -> StateGraph:
        workflow = StateGraph(SessionState)

        workflow.add_node("intake", self._intake_node)
        workflow.add_node("route", self._route_node)
        workflow.add_node("fetch", self._fetch_node)
        workflow.add_node("analyze", self._analyze_node)
        workflow.add_node("compose", self._compose_node)

        workflow.set_entry_point("intake")
        workflow.add_edge("intake", "route")
        workflow.add_conditional_edges(
            "route",
            self._next_stage,
            {stage: stage for stage in set(self.transitions.values())},
        )
        workflow.add_edge("fetch", "analyze")
        workflow.add_edge("analyze", "compose")
        workflow.add_edge("compose", END)

        return workflow

    def _next_stage(self, state: SessionState) -> str:
        return self.transitions[state["route"]]

    @staticmethod
    def _trace(state: SessionState, node: str) -> list[str]:
        return [*state.get("trace", []), node]

    @staticmethod
    def _held_bundle(state: SessionState) -> dict[str, Any] | None:
        """The thread's bundle, if it belongs to the patient in params."""
        bundle = state.get("bundle")
        if not bundle:
            return None
        patient_id = state["params"].patient_id
        if patient_id and bundle.get("patientId") != patient_id:
            return None
        return bundle

    # =========================================================================
    # Nodes
    # =========================================================================

    async def _intake_node(self, state: SessionState) -> dict:
        parsed = self.intake.parse(state.get("query", ""))
        params = merge_params(parsed.params, state.get("params"))
        logger.info(
            "Intake complete",
            thread_id=state.get("thread_id"),
            route_hint=parsed.route_hint.value,
            patient_id=params.patient_id,
            codes=len(params.codes or ()),
        )
        return {
            "params": params,
            "route_hint": parsed.route_hint,
            "trace": self._trace(state, "intake"),
        }

    async def _route_node(self, state: SessionState) -> dict:
        outcome = await self.router.decide(state.get("query", ""), state["params"])
        return {
            "route": outcome.route,
            "params": outcome.params,
            "rationale": outcome.rationale,
            "trace": self._trace(state, "route"),
        }

    async def _fetch_node(self, state: SessionState) -> dict:
        params = state["params"]
        route = state["route"]
        held = self._held_bundle(state)

        if not params.patient_id or (route != Route.FETCH and held is not None):
            logger.info("Reusing held observations", route=route.value,
                        held=held is not None)
            return {"bundle": held, "trace": self._trace(state, "fetch")}

        request = ObservationSearchRequest.from_params(
            params,
            max_count=self.settings.retrieval.max_count,
            max_items_cap=self.settings.retrieval.max_items_cap,
        )
        client = self.registry.get(state["thread_id"])
        response = await client.search(request)

        logger.info(
            "Observations retrieved",
            thread_id=state["thread_id"],
            patient_id=params.patient_id,
            returned=response.total_returned,
        )
        return {
            "bundle": {
                "entries": response.items,
                "patientId": params.patient_id,
                "totalReturned": response.total_returned,
            },
            "trace": self._trace(state, "fetch"),
        }

    async def _analyze_node(self, state: SessionState) -> dict:
        bundle = self._held_bundle(state)
        entries = bundle.get("entries", []) if bundle else []
        trends = self.engine.run(entries, codes=state["params"].codes)
        return {"trends": trends, "trace": self._trace(state, "analyze")}

    async def _compose_node(self, state: SessionState) -> dict:
        bundle = self._held_bundle(state)
        output = await self.composer.compose(
            route=state["route"],
            trends=state.get("trends"),
            entries=bundle.get("entries", []) if bundle else [],
            params=state["params"],
        )
        logger.info(
            "Output composed",
            thread_id=state.get("thread_id"),
            route=state["route"].value,
            chart=output.chart is not None,
        )
        return {
            "summary": output.summary,
            "chart": output.chart,
            "trace": self._trace(state, "compose"),
        }

    # =========================================================================
    # Invocation
    # =========================================================================

    async def run(
        self,
        query: str,
        params: Params | dict | None = None,
        thread_id: str | None = None,
    ) -> PipelineResult:
        """
        Execute the pipeline for one query.

        Args:
            query: Natural-language question
            params: Caller parameters; present fields override parsed ones
            thread_id: Session key for checkpoints and cached clients

        Raises:
            RetrievalError: the retrieval collaborator failed
        """
        # A generated thread releases its client after the run; checkpoints stay
        generated = not thread_id
        thread_id = thread_id or str(uuid.uuid4())
        if isinstance(params, dict):
            params = Params.model_validate(params)

        initial_state: SessionState = {
            "query": query,
            "thread_id": thread_id,
            "params": params or Params(),
            "route_hint": None,
            "route": None,
            "rationale": None,
            "trends": None,
            "summary": None,
            "chart": None,
            "trace": [],
        }
        config = {"configurable": {"thread_id": thread_id}}

        logger.info("Running vitals workflow", query_length=len(query), thread_id=thread_id)
        try:
            final_state = await self.compiled.ainvoke(initial_state, config)
        except RetrievalError as e:
            logger.error("Vitals workflow aborted", thread_id=thread_id, error=str(e))
            raise
        finally:
            if generated:
                await self.registry.release(thread_id)

        return PipelineResult(
            summary=final_state["summary"],
            route=final_state["route"],
            thread_id=thread_id,
            params=final_state["params"],
            trends=final_state.get("trends"),
            chart=final_state.get("chart"),
            trace=final_state.get("trace", []),
        )

    def describe(self) -> dict:
        """Workflow graph definition for visualization."""
        return {
            "name": "Vital-Sign Trend Workflow",
            "framework": "LangGraph",
            "nodes": [
                {"id": "start", "label": "START", "type": "entry"},
                {"id": "intake", "label": "Intake\n(Parse Params)", "type": "processor"},
                {"id": "route", "label": "Router\n(Route + Patch)", "type": "router"},
                {"id": "fetch", "label": "Fetch\n(Observation Search)", "type": "tool"},
                {"id": "analyze", "label": "Analyze\n(Trend Engine)", "type": "processor"},
                {"id": "compose", "label": "Compose\n(Table / Summary)", "type": "processor"},
                {"id": "end", "label": "END", "type": "exit"},
            ],
            "edges": [
                {"from": "start", "to": "intake"},
                {"from": "intake", "to": "route"},
                *[
                    {"from": "route", "to": stage, "label": route.value}
                    for route, stage in self.transitions.items()
                ],
                {"from": "fetch", "to": "analyze"},
                {"from": "analyze", "to": "compose"},
                {"from": "compose", "to": "end"},
            ],
        }
