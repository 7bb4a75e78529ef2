"""
Query Router

Decides the next route for a session and proposes a minimal parameter patch.

Decision order:
1. Pre-check: queries mentioning "metrics" or "table" go to `metrics`.
2. Classification by the text-generation collaborator, validated against a
   fixed schema.
3. Deterministic post-processing: a `fetch` proposal with missing required
   fields is downgraded to `unknown`; the patch is merged override-only.
4. Any classification failure selects the deterministic fallback: `fetch`
   when patient id and codes are present, else `summarize`.
"""

from dataclasses import dataclass
from typing import Literal
import json

import structlog
from pydantic import BaseModel, ConfigDict

from vitaltrend.llm.client import BaseLLMClient, LLMClient
from vitaltrend.models.params import Params, merge_params
from vitaltrend.models.results import Failure, Success
from vitaltrend.models.state import Route

logger = structlog.get_logger(__name__)


ROUTER_SYSTEM_PROMPT = """You route questions about a patient's vital-sign history.

Rules:
- Never invent identifiers, codes or dates. Only use values present in the query or current params.
- Classify the route:
  fetch: retrieve observations (needs patientId and at least one code)
  metrics: tabular listing of observations
  summarize: narrative trend summary of data already held
  alert: safety review of threshold flags
  unknown: the request cannot be served as asked
- Propose the minimal safe params_patch: only fields you can read directly from the query.
- List required fields that are still missing (patientId, codes) in `missing`."""

PARAMS_PATCH_SCHEMA = {
    "type": "object",
    "properties": {
        "patientId": {"type": "string"},
        "codes": {"type": "array", "items": {"type": "string"}},
        "since": {"type": "string", "format": "date-time"},
        "until": {"type": "string", "format": "date-time"},
        "count": {"type": "integer", "minimum": 1},
        "maxItems": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}

ROUTE_DECISION_SCHEMA = {
    "type": "object",
    "properties": {
        "route": {"type": "string", "enum": [r.value for r in Route]},
        "rationale": {"type": "string"},
        "params_patch": PARAMS_PATCH_SCHEMA,
        "missing": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["route", "rationale", "params_patch", "missing"],
    "additionalProperties": False,
}

PRECHECK_KEYWORDS = ("metrics", "table")


class RouteDecision(BaseModel):
    """Structured classification returned by the text-generation collaborator."""
    model_config = ConfigDict(extra="forbid")

    route: Route
    rationale: str
    params_patch: Params
    missing: list[str]


@dataclass
class RoutingOutcome:
    """The router's answer for one session step."""
    route: Route
    params: Params
    rationale: str
    source: Literal["precheck", "model", "fallback"]


def missing_for_fetch(params: Params) -> list[str]:
    """Required fetch fields absent from params."""
    missing = []
    if not params.patient_id:
        missing.append("patientId")
    if not params.codes:
        missing.append("codes")
    return missing


def fallback_route(params: Params) -> Route:
    """Deterministic route used when classification is unavailable."""
    return Route.FETCH if params.has_patient_and_codes else Route.SUMMARIZE


class Router:
    """
    Route selection with a mandatory deterministic fallback.

    The collaborator is called at most once per decision and its failures
    never propagate out of `decide`.
    """

    def __init__(self, llm_client: BaseLLMClient | LLMClient | None = None):
        self.llm = llm_client

    async def decide(self, query: str, params: Params) -> RoutingOutcome:
        query = query or ""

        lowered = query.lower()
        if any(keyword in lowered for keyword in PRECHECK_KEYWORDS):
            logger.info("Route selected by pre-check", route=Route.METRICS.value)
            return RoutingOutcome(
                route=Route.METRICS,
                params=params,
                rationale="query asks for metrics or a table",
                source="precheck",
            )

        result = await self.classify(query, params)

        if isinstance(result, Success):
            decision: RouteDecision = result.value
            merged = merge_params(params, decision.params_patch)
            route = decision.route
            if route == Route.FETCH:
                # Downgrade on the model's missing list and also on merged params
                # that still lack patient id or codes
                missing = set(decision.missing) | set(missing_for_fetch(merged))
                if missing:
                    logger.info("Fetch downgraded", missing=sorted(missing))
                    route = Route.UNKNOWN
            logger.info("Route selected by classifier", route=route.value)
            return RoutingOutcome(
                route=route,
                params=merged,
                rationale=decision.rationale,
                source="model",
            )

        route = fallback_route(params)
        logger.warning("Route classification failed, using fallback",
                       reason=result.reason, route=route.value)
        return RoutingOutcome(
            route=route,
            params=params,
            rationale=f"fallback: {result.reason}",
            source="fallback",
        )

    async def classify(self, query: str, params: Params) -> Success[RouteDecision] | Failure:
        """Call the collaborator; every failure becomes a `Failure` value."""
        if self.llm is None:
            return Failure(reason="no text-generation client configured")

        prompt = json.dumps({"query": query, "params": params.to_public_dict()}, indent=2)
        try:
            raw = await self.llm.generate_structured(
                prompt=prompt,
                schema=ROUTE_DECISION_SCHEMA,
                system_prompt=ROUTER_SYSTEM_PROMPT,
            )
            return Success(RouteDecision.model_validate(raw))
        except Exception as e:
            return Failure(reason=f"{type(e).__name__}: {e}", error=e)
