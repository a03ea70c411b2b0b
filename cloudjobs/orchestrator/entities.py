"""
Orchestrator Domain Entities.

- Job: Durable record of one requested unit of work and its outcome
- QueueEntry: Ephemeral dispatch record owned by the Queue
- QueueCounts: Snapshot of queue depth used by the WorkerController
- WorkerHandle: Controller-local bookkeeping for a spawned worker process

Status values are lowercase strings so they can be returned by the API
and stored in SQLite unchanged.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid


class JobStatus(str, Enum):
    """
    Job status values.

    - PENDING: Created and queued, not yet picked up by a worker
    - PROCESSING: A worker holds the job's lease and runs the task
    - COMPLETED: Task finished successfully (result stored)
    - FAILED: Task failed and the queue gave up retrying (error stored)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class QueueEntryState(str, Enum):
    """
    Queue entry states.

    - WAITING: Deliverable once available_at has passed
    - ACTIVE: Leased by a worker until lease_expires_at
    - DEAD: Retry budget exhausted, never delivered again
    """

    WAITING = "waiting"
    ACTIVE = "active"
    DEAD = "dead"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: datetime) -> str:
    """Format a naive UTC datetime as a fixed-width ISO string with Z suffix."""
    return value.isoformat(timespec="microseconds") + "Z"


def from_iso(value: str) -> datetime:
    """Parse an ISO string produced by to_iso()."""
    return datetime.fromisoformat(value.rstrip("Z"))


def now_iso() -> str:
    """Get current time as ISO format string."""
    return to_iso(utcnow())


def dedup_key_for(job_type: str, job_id: str) -> str:
    """Deterministic queue dedup key for a job."""
    return f"{job_type}-{job_id}"


@dataclass
class Job:
    """
    Single unit of orchestrated work.

    Mutability rules:
    - job_id, type, payload, created_at: Immutable
    - status: Changed only through JobLifecycle
    - started_at, completed_at, correlation_token: Write-once
    - result: Only set on COMPLETED, error: Only set on FAILED
    """

    job_id: str
    type: str
    payload: dict
    status: JobStatus = JobStatus.PENDING
    result: Optional[Any] = None
    error: Optional[str] = None
    correlation_token: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def create(cls, job_type: str, payload: dict) -> "Job":
        """Create a new Job with generated ID and PENDING status."""
        return cls(
            job_id=generate_uuid(),
            type=job_type,
            payload=payload,
            status=JobStatus.PENDING,
        )

    @property
    def dedup_key(self) -> str:
        return dedup_key_for(self.type, self.job_id)

    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        """Convert job to an API-friendly dictionary."""
        return {
            "job_id": self.job_id,
            "type": self.type,
            "status": self.status.value,
            "payload": self.payload,
            "result": self.result,
            "error": self.error,
            "correlation_token": self.correlation_token,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass
class QueueEntry:
    """
    Dispatch record for one job.

    Owned by Queue. Deleted on successful acknowledgment, moved to DEAD
    after exhausting retries.
    """

    dedup_key: str
    job_type: str
    job_id: str
    payload: dict
    enqueued_at: str
    attempts: int = 0
    state: QueueEntryState = QueueEntryState.WAITING
    available_at: Optional[str] = None
    lease_token: Optional[str] = None
    lease_expires_at: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def is_dead(self) -> bool:
        return self.state == QueueEntryState.DEAD

    @property
    def is_redelivery(self) -> bool:
        """True when this delivery is a retry or follows an expired lease."""
        return self.attempts > 1


@dataclass(frozen=True)
class QueueCounts:
    """Queue depth snapshot."""

    waiting: int = 0
    active: int = 0
    delayed: int = 0
    dead: int = 0

    def to_dict(self) -> dict:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "delayed": self.delayed,
            "dead": self.dead,
        }


@dataclass
class WorkerHandle:
    """
    Bookkeeping for a spawned worker process.

    Owned by exactly one WorkerController. `process` is None while the
    spawn is still in progress (tentative handle).
    """

    worker_id: str
    spawned_at: str = field(default_factory=now_iso)
    process: Optional[Any] = None
