"""
Queue router.

- GET /api/queue - Queue depth and job counts
"""

from fastapi import APIRouter, Depends

from ...orchestrator.service import JobOrchestrator
from .._services_state import get_orchestrator
from ..schemas.jobs import QueueStatusResponse

router = APIRouter()


@router.get("", response_model=QueueStatusResponse)
def queue_status(
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> QueueStatusResponse:
    """
    Current queue state.

    `active_workers` only counts workers spawned by a controller running
    inside this process (normally 0; the controller runs separately).
    """
    return QueueStatusResponse(**orchestrator.queue_status())
