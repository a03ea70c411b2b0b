"""
Single-job worker.

One process, one job:
1. Lease the next deliverable queue entry (none -> exit 0)
2. Move the job to PROCESSING (announcing it on the first attempt)
3. Run the job kind's automation task
4. COMPLETED + acknowledge, or FAILED + report the failure to the queue
   (backoff and redelivery, or dead-letter at the attempt ceiling)
5. Exit

Exit code is 0 for every job outcome; only infrastructure errors
(store or queue unreachable) exit non-zero.

Run standalone:
    python -m cloudjobs.orchestrator.worker
"""

import logging
import os
import signal
import sys
import uuid
from enum import Enum
from typing import Callable, Optional

from ..notifications.bridge import NotificationBridge
from ..tasks import kinds
from ..tasks.runner import TaskRunner
from .entities import JobStatus, QueueEntry
from .errors import (
    ConfigurationError,
    LeaseLostError,
    TransientInfrastructureError,
    UnknownKindError,
    ValidationError,
)
from .job_store import JobStore
from .lifecycle import JobLifecycle
from .queue import Queue

logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_INFRASTRUCTURE_ERROR = 1
EXIT_UNEXPECTED_ERROR = 2


class WorkerOutcome(str, Enum):
    """What a single worker run did."""

    NO_WORK = "no_work"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"
    ALREADY_TERMINAL = "already_terminal"
    ORPHANED = "orphaned"
    LEASE_LOST = "lease_lost"


def generate_lease_token() -> str:
    return f"worker-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class Worker:
    """Drains at most one job from the queue."""

    def __init__(
        self,
        queue: Queue,
        store: JobStore,
        lifecycle: JobLifecycle,
        runner: Optional[TaskRunner] = None,
        bridge: Optional[NotificationBridge] = None,
        lease_token: Optional[str] = None,
        runner_factory: Optional[Callable[[], TaskRunner]] = None,
    ):
        """
        Args:
            runner: Task runner to use
            runner_factory: Builds the runner once a job is leased, so a
                misconfigured runner fails that job instead of the process
        """
        if runner is None and runner_factory is None:
            raise ValueError("Worker needs a runner or a runner_factory")
        self.queue = queue
        self.store = store
        self.lifecycle = lifecycle
        self.runner = runner
        self.runner_factory = runner_factory
        self.bridge = bridge or NotificationBridge()
        self.lease_token = lease_token or generate_lease_token()

    def run_once(self) -> WorkerOutcome:
        """
        Process a single job.

        Raises:
            TransientInfrastructureError: If the store or queue is unreachable
            InvalidTransitionError: If the job was moved by someone else
        """
        logger.info(f"[Worker] Looking for a job to process ({self.lease_token})...")
        entry = self.queue.acquire(self.lease_token)
        if entry is None:
            logger.info("[Worker] No jobs available, exiting...")
            return WorkerOutcome.NO_WORK

        job = self.store.get_job(entry.job_id)
        if job is None:
            logger.error(f"[Worker] Queue entry {entry.dedup_key} has no job record, dropping it")
            self._acknowledge(entry)
            return WorkerOutcome.ORPHANED

        if job.status == JobStatus.COMPLETED:
            # Delivered again after a crash between the transition and the ack
            logger.warning(f"[Worker] Job {job.job_id} is already completed, acknowledging")
            self._acknowledge(entry)
            return WorkerOutcome.ALREADY_TERMINAL

        logger.info(f"[Worker] Processing job {job.job_id} ({job.type}), attempt {entry.attempts}")

        # A FAILED job here is a retry: the queue delivered its entry again
        redelivery = job.status in (JobStatus.PROCESSING, JobStatus.FAILED)
        token = None
        if not redelivery and not job.correlation_token:
            token = self.bridge.announce_start(job)
        job = self.lifecycle.start(job.job_id, correlation_token=token, redelivery=redelivery)

        try:
            result = kinds.execute(job.type, job.job_id, job.payload, self._get_runner())
        except (UnknownKindError, ValidationError, ConfigurationError) as e:
            # Retrying cannot fix a bad kind, payload or runner setup
            logger.error(f"[Worker] Job {job.job_id} cannot run: {e}")
            self.lifecycle.fail(job.job_id, str(e))
            self._acknowledge(entry)
            return WorkerOutcome.FAILED
        except TransientInfrastructureError:
            raise
        except Exception as e:
            logger.error(f"[Worker] Job {job.job_id} failed: {e}")
            self.lifecycle.fail(job.job_id, str(e))
            return self._report_failure(entry, job.job_id, str(e))

        self.lifecycle.complete(job.job_id, result)
        self._acknowledge(entry)
        logger.info(f"[Worker] Job {job.job_id} completed successfully")
        return WorkerOutcome.COMPLETED

    def _report_failure(self, entry: QueueEntry, job_id: str, error: str) -> WorkerOutcome:
        """Hand a failed attempt back to the queue for backoff or dead-letter."""
        try:
            updated = self.queue.fail(entry, self.lease_token, error)
        except LeaseLostError as e:
            logger.warning(f"[Worker] {e}; job {job_id} left for the next delivery")
            return WorkerOutcome.LEASE_LOST

        if updated.is_dead:
            logger.info(f"[Worker] Job {job_id} will not be retried ({updated.attempts} attempts)")
            return WorkerOutcome.FAILED

        logger.info(
            f"[Worker] Job {job_id} will be retried at {updated.available_at} "
            f"(attempt {updated.attempts}/{self.queue.retry_policy.max_attempts})"
        )
        return WorkerOutcome.RETRY_SCHEDULED

    def _get_runner(self) -> TaskRunner:
        if self.runner is None:
            self.runner = self.runner_factory()
        return self.runner

    def _acknowledge(self, entry: QueueEntry) -> None:
        try:
            self.queue.complete(entry, self.lease_token)
        except LeaseLostError as e:
            logger.warning(f"[Worker] {e}")


def main() -> int:
    """Drain one job and return the process exit code."""
    from ..infra import get_settings, setup_logging
    from .service import JobOrchestrator

    settings = get_settings()
    settings.ensure_directories()
    setup_logging(settings.log_level, settings.log_dir, prefix="worker")

    def _shutdown(signum, frame):
        logger.info(f"[Worker] {signal.Signals(signum).name} -> shutting down gracefully...")
        sys.exit(EXIT_OK)

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    logger.info("[Worker] Single job worker started")
    try:
        orchestrator = JobOrchestrator.create(settings)
        outcome = orchestrator.build_worker().run_once()
    except TransientInfrastructureError as e:
        logger.error(f"[Worker] Infrastructure error: {e}")
        return EXIT_INFRASTRUCTURE_ERROR
    except Exception as e:
        logger.exception(f"[Worker] Error processing job: {e}")
        return EXIT_UNEXPECTED_ERROR

    logger.info(f"[Worker] Finished: {outcome.value}")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
