"""
Job API schemas.

POST /api/jobs takes a raw object and validates the payload against the
job kind's own schema, so only responses are modeled here.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class JobSubmitResponse(BaseModel):
    """Response from job submission."""

    job_id: str = Field(..., description="Created job ID")
    type: str = Field(..., description="Job kind")
    status: str = Field(..., description="Initial job status (pending)")
    dedup_key: str = Field(..., description="Queue dedup key")


class JobResponse(BaseModel):
    """Response representing a Job."""

    job_id: str = Field(..., description="Unique job identifier")
    type: str = Field(..., description="Job kind (github.issue.fix / task.execute)")
    status: str = Field(..., description="Job status (pending/processing/completed/failed)")
    payload: dict = Field(default_factory=dict, description="Validated job payload")
    result: Optional[Any] = Field(default=None, description="Task result (completed only)")
    error: Optional[str] = Field(default=None, description="Failure cause (failed only)")
    correlation_token: Optional[str] = Field(default=None, description="Notification thread token")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")
    started_at: Optional[str] = Field(default=None, description="First start timestamp")
    completed_at: Optional[str] = Field(default=None, description="Terminal timestamp")


class JobListResponse(BaseModel):
    """Response from job list endpoint."""

    jobs: List[JobResponse] = Field(default_factory=list)
    total: int


class QueueCountsResponse(BaseModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    dead: int = 0


class QueueStatusResponse(BaseModel):
    """Queue depth, job counts per status and locally tracked workers."""

    queue: QueueCountsResponse
    jobs: dict[str, int] = Field(default_factory=dict)
    active_workers: int = 0
