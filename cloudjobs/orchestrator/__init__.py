"""
Job orchestration core.

Components that depend only on the two SQLite stores are exported here.
The worker and the JobOrchestrator wiring pull in task runners and
notifiers, import them from their modules:

    from cloudjobs.orchestrator.service import JobOrchestrator
    from cloudjobs.orchestrator.worker import Worker
"""

from .entities import (
    Job,
    JobStatus,
    QueueCounts,
    QueueEntry,
    QueueEntryState,
    WorkerHandle,
)
from .errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidTransitionError,
    JobNotFoundError,
    LeaseLostError,
    NotificationError,
    OrchestratorError,
    TaskExecutionError,
    TransientInfrastructureError,
    UnknownKindError,
    ValidationError,
)
from .job_store import JobStore
from .queue import Queue
from .retry_policy import RetryPolicy
from .lifecycle import JobLifecycle, TransitionEvent
from .process import ProcessHandle, ProcessSupervisor, SubprocessSupervisor
from .controller import ControllerState, WorkerController
from .recovery import RecoveryManager

__all__ = [
    # Entities
    "Job",
    "JobStatus",
    "QueueCounts",
    "QueueEntry",
    "QueueEntryState",
    "WorkerHandle",
    # Errors
    "AuthenticationError",
    "ConfigurationError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "LeaseLostError",
    "NotificationError",
    "OrchestratorError",
    "TaskExecutionError",
    "TransientInfrastructureError",
    "UnknownKindError",
    "ValidationError",
    # Components
    "JobStore",
    "Queue",
    "RetryPolicy",
    "JobLifecycle",
    "TransitionEvent",
    "ProcessHandle",
    "ProcessSupervisor",
    "SubprocessSupervisor",
    "ControllerState",
    "WorkerController",
    "RecoveryManager",
]
