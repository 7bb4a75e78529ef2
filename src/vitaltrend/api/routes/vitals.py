"""
Vital-Sign Query Routes

Natural-language vital-sign queries over the LangGraph pipeline.
"""

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field
import structlog

from vitaltrend.agents.workflow import VitalsWorkflow
from vitaltrend.integrations.fhir import RetrievalError
from vitaltrend.models.params import Params

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/vitals", tags=["Vitals"])


# =============================================================================
# Request/Response Models
# =============================================================================

class QueryRequest(BaseModel):
    """A question about a patient's vital signs."""
    query: str = Field(..., description="Natural language query")
    params: Params | None = Field(default=None, description="Explicit parameters; override parsed ones")
    thread_id: str | None = Field(default=None, description="Session to continue")


class ChartPayload(BaseModel):
    kind: str
    bytes: str
    caption: str


class QueryResponse(BaseModel):
    """Pipeline answer."""
    summary: str
    route: str
    thread_id: str
    params: dict = Field(default_factory=dict)
    trends: dict | None = None
    chart: ChartPayload | None = None
    trace: list[str] = Field(default_factory=list)


def get_workflow(request: Request) -> VitalsWorkflow:
    """The application's pipeline, built on first use."""
    workflow = getattr(request.app.state, "workflow", None)
    if workflow is None:
        workflow = VitalsWorkflow()
        request.app.state.workflow = workflow
    return workflow


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/query", response_model=QueryResponse)
async def run_query(body: QueryRequest, request: Request):
    """
    Answer a vital-sign question.

    **Example Queries:**
    - "patient abc-1 blood pressure since 2024-01-01" -> fetch and summarize
    - "show metrics table for patient abc-1 heart rate" -> recent observations table
    - "summarize" -> summary of data already held by the thread

    Pass the returned `thread_id` to continue the same session.
    """
    workflow = get_workflow(request)
    try:
        result = await workflow.run(body.query, params=body.params, thread_id=body.thread_id)
    except RetrievalError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Observation retrieval failed: {e}",
        )
    return QueryResponse(**result.to_dict())


@router.get("/workflow")
async def get_workflow_definition(request: Request):
    """Pipeline graph definition for visualization."""
    return get_workflow(request).describe()
