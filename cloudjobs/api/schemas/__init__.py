"""API schemas."""

from .health import HealthResponse, HealthServices
from .jobs import (
    JobListResponse,
    JobResponse,
    JobSubmitResponse,
    QueueCountsResponse,
    QueueStatusResponse,
)

__all__ = [
    "HealthResponse",
    "HealthServices",
    "JobListResponse",
    "JobResponse",
    "JobSubmitResponse",
    "QueueCountsResponse",
    "QueueStatusResponse",
]
