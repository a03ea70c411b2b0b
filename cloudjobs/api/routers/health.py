"""
Health router.

- GET /api/health - Job store and queue reachability (not authenticated)
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...orchestrator.service import JobOrchestrator
from .._services_state import get_orchestrator
from ..schemas.health import HealthResponse, HealthServices

router = APIRouter()


@router.get("", response_model=HealthResponse, responses={500: {"model": HealthResponse}})
def health_check(
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """200 when both stores answer, 500 otherwise."""
    services = orchestrator.health()
    healthy = all(services.values())

    response = HealthResponse(
        status="ok" if healthy else "error",
        services=HealthServices(**services),
    )
    return JSONResponse(status_code=200 if healthy else 500, content=response.model_dump())
