"""
Jobs router.

- POST /api/jobs - Submit a job (validated against its kind's schema)
- GET /api/jobs - List jobs, newest first
- GET /api/jobs/{job_id} - Get job details
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ...orchestrator.entities import Job, JobStatus
from ...orchestrator.errors import JobNotFoundError, ValidationError
from ...orchestrator.service import JobOrchestrator
from .._services_state import get_orchestrator
from ..schemas.jobs import JobListResponse, JobResponse, JobSubmitResponse

router = APIRouter()


def _to_response(job: Job) -> JobResponse:
    return JobResponse(**job.to_dict())


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=JobSubmitResponse,
    responses={400: {"description": "Unknown job type or invalid payload"}},
)
async def submit_job(
    request: Request,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Submit a job.

    Body: `{"type": "<kind>", "payload": {...}}`. The job is stored as
    pending and enqueued; a worker picks it up on the next controller poll.
    """
    raw = await request.body()
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError("request", [{
            "loc": ["body"],
            "msg": f"Invalid JSON: {e}",
            "type": "json_invalid",
        }]) from e

    if not isinstance(body, dict) or not isinstance(body.get("type"), str):
        raise ValidationError("request", [{
            "loc": ["body", "type"],
            "msg": "Field required: job type string",
            "type": "missing",
        }])

    job = await run_in_threadpool(orchestrator.submit, body["type"], body.get("payload", {}))

    response = JobSubmitResponse(
        job_id=job.job_id,
        type=job.type,
        status=job.status.value,
        dedup_key=job.dedup_key,
    )
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=response.model_dump())


@router.get("", response_model=JobListResponse)
def list_jobs(
    status_filter: Optional[JobStatus] = Query(default=None, alias="status", description="Filter by status"),
    type_filter: Optional[str] = Query(default=None, alias="type", description="Filter by job kind"),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum jobs to return"),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobListResponse:
    """List jobs, newest first."""
    jobs = orchestrator.store.list_jobs(status=status_filter, job_type=type_filter, limit=limit)
    return JobListResponse(jobs=[_to_response(job) for job in jobs], total=len(jobs))


@router.get("/{job_id}", response_model=JobResponse, responses={404: {"description": "Job not found"}})
def get_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    """Get job details."""
    job = orchestrator.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return _to_response(job)
