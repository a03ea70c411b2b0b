"""
Orchestrator exceptions.

Business errors (ValidationError, UnknownKindError, AuthenticationError)
are surfaced to callers and never retried. TaskExecutionError is retried
by the queue until the attempt ceiling. TransientInfrastructureError is
retried by the calling layer. NotificationError never propagates past
the notification bridge. ConfigurationError is never retried: the job
fails and the controller refuses to start.
"""

from typing import Any, Optional


class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""
    pass


class ValidationError(OrchestratorError):
    """
    Raised when a job payload or webhook body violates its schema.

    `details` carries the structured list of violations
    (field location, message, type) for the HTTP response.
    """

    def __init__(self, kind: str, details: Optional[list[dict[str, Any]]] = None):
        self.kind = kind
        self.details = details or []
        super().__init__(f"Invalid payload for {kind}: {len(self.details)} violation(s)")


class AuthenticationError(OrchestratorError):
    """
    Raised when a webhook signature is missing or does not match.

    `code` is the machine-readable error ("missing_signature" or
    "invalid_signature").
    """

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


class UnknownKindError(OrchestratorError):
    """Raised for an unsupported job kind."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown job type: {kind}")


class TaskExecutionError(OrchestratorError):
    """Raised by a task runner when the automation task fails."""
    pass


class TransientInfrastructureError(OrchestratorError):
    """Raised when the job store or queue backing store is unreachable."""
    pass


class NotificationError(OrchestratorError):
    """Raised by notifiers; always caught by the notification bridge."""
    pass


class ConfigurationError(OrchestratorError, ValueError):
    """Raised when settings cannot produce a working component (e.g. no task command)."""
    pass


class JobNotFoundError(OrchestratorError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidTransitionError(OrchestratorError):
    """
    Raised when a job status transition is not allowed.

    This indicates a queue-delivery bug (e.g. a second worker acting on
    the same job), so it is never silently ignored.
    """

    def __init__(self, job_id: str, from_status: str, to_status: str):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for job {job_id}: {from_status} -> {to_status}"
        )


class LeaseLostError(OrchestratorError):
    """
    Raised when acknowledging a queue entry whose lease is no longer held.

    Happens when the visibility timeout expired and the entry was
    reclaimed or redelivered to another worker.
    """

    def __init__(self, dedup_key: str, lease_token: str):
        self.dedup_key = dedup_key
        self.lease_token = lease_token
        super().__init__(f"Lease {lease_token} no longer held for {dedup_key}")
