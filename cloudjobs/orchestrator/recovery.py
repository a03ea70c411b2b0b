"""
Recovery Manager.

Runs when the controller starts, and resolves dead-lettered entries
during normal operation:
- Pending jobs missing from the queue are enqueued again
- Expired leases are reclaimed
- Dead-lettered entries whose job is not terminal get the job failed

Recovery is idempotent: running it twice produces the same result,
because enqueue coalesces on the dedup key and terminal jobs are left
alone.
"""

import logging
from typing import Optional

from .entities import JobStatus, QueueEntry
from .errors import InvalidTransitionError, JobNotFoundError
from .job_store import JobStore
from .lifecycle import JobLifecycle
from .queue import Queue

logger = logging.getLogger(__name__)


DEAD_LETTER_ERROR = "Retry attempts exhausted"


class RecoveryManager:
    """Brings the job store and the queue back in agreement."""

    def __init__(self, store: JobStore, queue: Queue, lifecycle: JobLifecycle):
        self.store = store
        self.queue = queue
        self.lifecycle = lifecycle

    def recover_on_startup(self) -> dict:
        """
        Perform full recovery on controller startup.

        1. Re-enqueue pending jobs without a queue entry
        2. Reclaim expired leases
        3. Fail jobs whose queue entry is dead

        Returns:
            Recovery statistics
        """
        stats = {
            "pending_requeued": 0,
            "leases_dead_lettered": 0,
            "dead_letters_resolved": 0,
            "errors": [],
        }

        logger.info("[Recovery] Starting recovery...")

        try:
            stats["pending_requeued"] = self._requeue_pending_jobs()
        except Exception as e:
            logger.error(f"[Recovery] Error re-enqueueing pending jobs: {e}")
            stats["errors"].append(f"Pending jobs: {e}")

        try:
            dead = self.queue.reclaim_expired()
            stats["leases_dead_lettered"] = len(dead)
        except Exception as e:
            logger.error(f"[Recovery] Error reclaiming expired leases: {e}")
            stats["errors"].append(f"Leases: {e}")

        try:
            resolved = 0
            for entry in self.queue.list_dead(limit=1000):
                if self.resolve_dead_letter(entry):
                    resolved += 1
            stats["dead_letters_resolved"] = resolved
        except Exception as e:
            logger.error(f"[Recovery] Error resolving dead letters: {e}")
            stats["errors"].append(f"Dead letters: {e}")

        logger.info(
            f"[Recovery] Complete: "
            f"{stats['pending_requeued']} pending jobs re-enqueued, "
            f"{stats['leases_dead_lettered']} expired leases dead-lettered, "
            f"{stats['dead_letters_resolved']} dead letters resolved"
        )
        return stats

    def _requeue_pending_jobs(self) -> int:
        """
        Enqueue pending jobs that have no queue entry.

        Covers a crash between job creation and enqueue.
        """
        requeued = 0
        for job in self.store.list_pending_jobs():
            if self.queue.get(job.dedup_key) is not None:
                continue
            self.queue.enqueue(job.type, job.job_id, job.payload)
            logger.info(f"[Recovery] Re-enqueued pending job {job.job_id}")
            requeued += 1
        return requeued

    def resolve_dead_letter(self, entry: QueueEntry, error: Optional[str] = None) -> bool:
        """
        Move the job of a dead-lettered entry to FAILED.

        A job still PENDING (its worker died before starting it) is
        started first so it passes through the legal transitions.

        Returns:
            True if the job was failed by this call
        """
        reason = error or entry.last_error or DEAD_LETTER_ERROR
        job = self.store.get_job(entry.job_id)
        if job is None:
            logger.warning(f"[Recovery] Dead letter {entry.dedup_key} has no job record")
            return False
        if job.is_terminal():
            return False

        try:
            if job.status == JobStatus.PENDING:
                self.lifecycle.start(job.job_id)
            self.lifecycle.fail(job.job_id, reason)
        except (InvalidTransitionError, JobNotFoundError) as e:
            # Another process resolved the job first
            logger.warning(f"[Recovery] Could not fail job {job.job_id}: {e}")
            return False

        logger.info(f"[Recovery] Job {job.job_id} failed after dead letter: {reason}")
        return True
