"""
Notification bridge.

Best-effort glue between job state and the notifier. Nothing here may
fail a job: every notifier error is logged and swallowed.
"""

import logging
from typing import Optional

from ..orchestrator.entities import Job, JobStatus, from_iso
from ..orchestrator.errors import NotificationError
from ..orchestrator.lifecycle import TransitionEvent
from .slack import Notifier, NullNotifier

logger = logging.getLogger(__name__)


def job_duration_seconds(job: Job) -> float:
    """Seconds between started_at and completed_at (0 if unknown)."""
    if not job.started_at or not job.completed_at:
        return 0.0
    try:
        delta = from_iso(job.completed_at) - from_iso(job.started_at)
    except ValueError:
        return 0.0
    return max(delta.total_seconds(), 0.0)


class NotificationBridge:
    """Announces job progress through a Notifier without ever raising."""

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or NullNotifier()

    def announce_start(self, job: Job) -> Optional[str]:
        """
        Announce that a job started.

        Returns:
            Correlation token (Slack thread ts), or None on failure or
            when notifications are disabled
        """
        try:
            token = self.notifier.post_task_started(job)
        except NotificationError as e:
            logger.warning(f"[Notify] Start announcement failed for job {job.job_id}: {e}")
            return None
        except Exception as e:
            logger.error(f"[Notify] Unexpected error announcing job {job.job_id}: {e}")
            return None

        if token:
            logger.info(f"[Notify] Job {job.job_id} announced (thread {token})")
        return token

    def on_transition(self, event: TransitionEvent) -> None:
        """Lifecycle subscriber: report terminal outcomes into the job thread."""
        job = event.job
        if job.status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            return
        if not job.correlation_token:
            return

        try:
            self.notifier.post_task_completed(
                job.correlation_token,
                success=job.status == JobStatus.COMPLETED,
                duration_seconds=job_duration_seconds(job),
                job_id=job.job_id,
            )
        except NotificationError as e:
            logger.warning(f"[Notify] Completion message failed for job {job.job_id}: {e}")
        except Exception as e:
            logger.error(f"[Notify] Unexpected error reporting job {job.job_id}: {e}")

    def announce_pull_request(
        self,
        token: str,
        pr_number: int,
        pr_url: str,
        pr_title: str,
    ) -> bool:
        """
        Post one "pull request created" update into a job thread.

        Returns:
            True if the notifier accepted the message
        """
        text = f"🎉 Pull request created: <{pr_url}|PR #{pr_number}>\n*{pr_title}*"
        try:
            self.notifier.post_task_updated(token, text, "success")
        except NotificationError as e:
            logger.warning(f"[Notify] Pull request update failed for thread {token}: {e}")
            return False
        except Exception as e:
            logger.error(f"[Notify] Unexpected error posting pull request update: {e}")
            return False
        return True
