"""
Slack notifier.

Posts job progress into a Slack channel with chat.postMessage. The `ts`
of the "task started" message identifies the thread; later messages for
the same job are posted into that thread.

Every failure surfaces as NotificationError. Callers that must not fail
(the NotificationBridge) catch it.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx

from ..orchestrator.entities import Job
from ..orchestrator.errors import NotificationError
from ..tasks.kinds import GITHUB_ISSUE_FIX, TASK_EXECUTE

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"
SLACK_TIMEOUT_SECONDS = 10
SLACK_MAX_RETRIES = 2
SLACK_RETRY_BASE_DELAY = 1.0  # seconds

STATUS_EMOJI = {
    "info": "ℹ️",
    "success": "✅",
    "warning": "⚠️",
    "error": "❌",
}


class Notifier(Protocol):
    """Protocol for job notification sinks."""

    def post_task_started(self, job: Job) -> Optional[str]:
        """Announce a job start; returns the thread token if any."""
        ...

    def post_task_updated(self, thread_ts: str, text: str, status: str = "info") -> None:
        ...

    def post_task_completed(
        self,
        thread_ts: str,
        success: bool,
        duration_seconds: float,
        job_id: Optional[str] = None,
    ) -> None:
        ...


class NullNotifier:
    """Notifier used when Slack is not configured. Posts nothing."""

    def post_task_started(self, job: Job) -> Optional[str]:
        logger.debug(f"[Notify] Slack disabled, not announcing job {job.job_id}")
        return None

    def post_task_updated(self, thread_ts: str, text: str, status: str = "info") -> None:
        return None

    def post_task_completed(
        self,
        thread_ts: str,
        success: bool,
        duration_seconds: float,
        job_id: Optional[str] = None,
    ) -> None:
        return None


class SlackNotifier:
    """Slack Web API notifier."""

    def __init__(
        self,
        token: str,
        channel: str = "#roomote-control",
        client: Optional[httpx.Client] = None,
        max_retries: int = SLACK_MAX_RETRIES,
        retry_base_delay: float = SLACK_RETRY_BASE_DELAY,
    ):
        """
        Initialize Slack notifier.

        Args:
            token: Slack bot token
            channel: Default channel for messages
            client: httpx client (injected for testing)
            max_retries: Attempts per message on transport errors
            retry_base_delay: Base delay for exponential backoff between attempts
        """
        self.token = token
        self.channel = channel
        self._client = client or httpx.Client(timeout=SLACK_TIMEOUT_SECONDS)
        self.max_retries = max(1, max_retries)
        self.retry_base_delay = retry_base_delay

    def close(self) -> None:
        self._client.close()

    def post_message(
        self,
        text: str,
        blocks: Optional[list[dict[str, Any]]] = None,
        thread_ts: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> Optional[str]:
        """
        Post a message with chat.postMessage.

        Returns:
            Message ts (thread token)

        Raises:
            NotificationError: On HTTP, transport or Slack API errors
        """
        message: dict[str, Any] = {"channel": channel or self.channel, "text": text}
        if blocks:
            message["blocks"] = blocks
        if thread_ts:
            message["thread_ts"] = thread_ts

        last_error: Optional[str] = None
        for attempt in range(self.max_retries):
            try:
                response = self._client.post(
                    SLACK_POST_MESSAGE_URL,
                    json=message,
                    headers={
                        "Content-Type": "application/json",
                        "Authorization": f"Bearer {self.token}",
                    },
                )
            except httpx.TimeoutException:
                last_error = f"Timeout after {SLACK_TIMEOUT_SECONDS}s"
                logger.warning(f"[Slack] Timeout (attempt {attempt + 1}/{self.max_retries})")
            except httpx.RequestError as e:
                last_error = f"Request error: {e}"
                logger.warning(f"[Slack] Request error (attempt {attempt + 1}/{self.max_retries}): {e}")
            else:
                if response.status_code < 200 or response.status_code >= 300:
                    raise NotificationError(
                        f"Slack API failed: HTTP {response.status_code} {response.text[:200]}"
                    )
                try:
                    result = response.json()
                except ValueError as e:
                    raise NotificationError(f"Slack API returned invalid JSON: {e}") from e

                if not result.get("ok"):
                    raise NotificationError(f"Slack API error: {result.get('error', 'unknown')}")
                return result.get("ts")

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_base_delay * (2 ** attempt))

        raise NotificationError(f"Slack message failed after {self.max_retries} attempts: {last_error}")

    # =========================================================================
    # Job messages
    # =========================================================================

    def post_task_started(self, job: Job) -> Optional[str]:
        """Post the thread-starting message for a job."""
        if job.type == GITHUB_ISSUE_FIX:
            repo = job.payload.get("repo", "")
            issue = job.payload.get("issue")
            summary = (
                f"Creating a pull request for "
                f"<https://github.com/{repo}/issues/{issue}|GitHub Issue #{issue}>"
            )
        elif job.type == TASK_EXECUTE:
            prompt = str(job.payload.get("prompt", ""))
            summary = f"Running task: {prompt[:80]}{'...' if len(prompt) > 80 else ''}"
        else:
            raise NotificationError(f"Unknown job type: {job.type}")

        return self.post_message(
            text="🚀 Task Started",
            blocks=[
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"🚀 *Task Started*\n{summary}"},
                },
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": f"jobType: {job.type}, jobId: {job.job_id}"},
                    ],
                },
            ],
        )

    def post_task_updated(self, thread_ts: str, text: str, status: str = "info") -> None:
        """Post a status line into a job thread."""
        emoji = STATUS_EMOJI.get(status, STATUS_EMOJI["info"])
        self.post_message(text=f"{emoji} {text}", thread_ts=thread_ts)

    def post_task_completed(
        self,
        thread_ts: str,
        success: bool,
        duration_seconds: float,
        job_id: Optional[str] = None,
    ) -> None:
        """Post the final outcome into a job thread."""
        status = "✅ Completed" if success else "❌ Failed"
        duration_text = f"{round(duration_seconds)}s"
        now = datetime.now(timezone.utc)

        self.post_message(
            text=f"{status} Task finished in {duration_text}",
            blocks=[
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": f"*{status}*\n*Job ID:* {job_id or 'Unknown'}\n*Duration:* {duration_text}",
                    },
                },
                {
                    "type": "context",
                    "elements": [
                        {
                            "type": "mrkdwn",
                            "text": (
                                f"Finished at: <!date^{int(now.timestamp())}"
                                f"^{{date_short_pretty}} at {{time}}|{now.isoformat()}>"
                            ),
                        },
                    ],
                },
            ],
            thread_ts=thread_ts,
        )
