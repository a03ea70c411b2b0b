"""
Job Lifecycle state machine.

    PENDING --start--> PROCESSING --complete--> COMPLETED
                          |   ^
                          |   +--start (redelivery, from PROCESSING or FAILED)
                          +--fail--> FAILED

Every transition is a single conditional update against the JobStore.
Anything else raises InvalidTransitionError: an illegal transition means
two workers acted on the same job, which must never pass silently.

Subscribers are notified after a transition is stored. A failing
subscriber is logged and does not undo the transition.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .entities import Job, JobStatus, now_iso
from .errors import InvalidTransitionError, JobNotFoundError
from .job_store import JobStore

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.PROCESSING}),
}


@dataclass(frozen=True)
class TransitionEvent:
    """A stored transition, delivered to lifecycle subscribers."""

    job: Job
    previous_status: JobStatus

    @property
    def status(self) -> JobStatus:
        return self.job.status


TransitionCallback = Callable[[TransitionEvent], None]


class JobLifecycle:
    """Sole writer of job status."""

    def __init__(self, store: JobStore):
        self.store = store
        self._subscribers: list[TransitionCallback] = []

    def subscribe(self, callback: TransitionCallback) -> None:
        """Register a callback invoked after every stored transition."""
        self._subscribers.append(callback)

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(
        self,
        job_id: str,
        correlation_token: Optional[str] = None,
        redelivery: bool = False,
    ) -> Job:
        """
        Mark a job as processing.

        On first delivery the job must be PENDING and started_at is set.
        On redelivery a job already PROCESSING stays PROCESSING and keeps
        its original started_at (a redelivered job that never got past
        PENDING is started normally). A FAILED job whose entry the queue
        delivers again re-enters PROCESSING with completed_at and error
        cleared.

        Args:
            job_id: Job to start
            correlation_token: Notification thread token, stored if not set yet
            redelivery: True when the queue delivered this job before

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If the job is not in a startable state
        """
        job = self.store.require_job(job_id)

        if redelivery and job.status in (JobStatus.PROCESSING, JobStatus.FAILED):
            expected = job.status
        else:
            expected = JobStatus.PENDING
            if job.status != JobStatus.PENDING:
                raise InvalidTransitionError(job_id, job.status.value, JobStatus.PROCESSING.value)

        return self._transition(
            job_id,
            expected,
            JobStatus.PROCESSING,
            started_at=now_iso(),
            correlation_token=correlation_token,
            reset_outcome=expected == JobStatus.FAILED,
        )

    def complete(self, job_id: str, result: Any = None) -> Job:
        """
        Mark a processing job as completed and store its result.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If the job is not PROCESSING
        """
        return self._transition(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
            completed_at=now_iso(),
            result=result if result is not None else {},
        )

    def fail(self, job_id: str, error: str) -> Job:
        """
        Mark a processing job as failed and store the error.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If the job is not PROCESSING
        """
        return self._transition(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.FAILED,
            completed_at=now_iso(),
            error=str(error),
        )

    def _transition(
        self,
        job_id: str,
        expected: JobStatus,
        target: JobStatus,
        **fields: Any,
    ) -> Job:
        if target not in ALLOWED_TRANSITIONS[expected]:
            raise InvalidTransitionError(job_id, expected.value, target.value)

        job = self.store.update_status(job_id, expected, target, **fields)
        if job is None:
            # Either job doesn't exist or its status changed underneath
            current = self.store.get_job(job_id)
            if current is None:
                raise JobNotFoundError(job_id)
            raise InvalidTransitionError(job_id, current.status.value, target.value)

        logger.info(f"[Lifecycle] Job {job_id}: {expected.value} -> {target.value}")
        self._notify(TransitionEvent(job=job, previous_status=expected))
        return job

    def _notify(self, event: TransitionEvent) -> None:
        for callback in self._subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    f"[Lifecycle] Subscriber error for job {event.job.job_id} "
                    f"({event.previous_status.value} -> {event.status.value}): {e}"
                )
