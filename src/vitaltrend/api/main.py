"""
VitalTrend API Main Application

FastAPI application serving the vital-sign query pipeline.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vitaltrend.agents.workflow import VitalsWorkflow
from vitaltrend.api.routes.vitals import router as vitals_router
from vitaltrend.config import get_settings
from vitaltrend.observability.logging import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    settings = get_settings()
    configure_logging(settings.app.log_level, json_output=settings.app.log_json)

    # Startup
    logger.info(
        "Starting VitalTrend API",
        env=settings.app.env,
        llm_provider=settings.llm.llm_provider,
        retrieval_provider=settings.retrieval.provider,
    )
    if getattr(app.state, "workflow", None) is None:
        app.state.workflow = VitalsWorkflow()

    yield

    # Shutdown
    logger.info("Shutting down VitalTrend API")
    await app.state.workflow.registry.aclose()


app = FastAPI(
    title="VitalTrend API",
    description="Natural-language vital-sign trend analysis",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "VitalTrend API",
        "version": "0.1.0",
        "description": "Natural-language vital-sign trend analysis",
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Liveness plus the configured collaborators."""
    settings = get_settings()
    workflow = getattr(request.app.state, "workflow", None)
    return {
        "status": "healthy",
        "llm_provider": settings.llm.llm_provider,
        "retrieval_provider": settings.retrieval.provider,
        "active_threads": len(workflow.registry) if workflow else 0,
    }


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "detail": str(exc) if get_settings().app.debug else None,
        },
    )


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(vitals_router, prefix="/v1")


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "vitaltrend.api.main:app",
        host=settings.app.api_host,
        port=settings.app.api_port,
    )
