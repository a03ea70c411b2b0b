"""
GitHub webhook ingestion.

Pipeline for one delivery:
1. Signature header present (else 400 missing_signature)
2. HMAC-SHA256 of the raw body matches (else 401 invalid_signature)
3. Dispatch on X-GitHub-Event:
   - issues/opened: create and enqueue a github.issue.fix job
   - pull_request/opened: post "pull request created" into the thread
     of the job that fixed the referenced issue
   - anything else: acknowledged and ignored

Nothing is parsed and nothing is written before the signature checks
pass.
"""

import hashlib
import hmac
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from ..orchestrator.errors import AuthenticationError, ValidationError
from ..tasks.kinds import GITHUB_ISSUE_FIX, error_details
from .schemas import IssueWebhook, PullRequestWebhook

logger = logging.getLogger(__name__)


SIGNATURE_PREFIX = "sha256="
ISSUE_REFERENCE_PATTERN = re.compile(r"(?:fixes|closes|resolves)\s+#(\d+)", re.IGNORECASE)


@dataclass
class IngestOutcome:
    """HTTP status and JSON body for a webhook delivery."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 digest, as GitHub sends it (without prefix)."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Constant-time comparison of the received signature."""
    received = signature[len(SIGNATURE_PREFIX):] if signature.startswith(SIGNATURE_PREFIX) else signature
    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def find_issue_reference(title: str, body: Optional[str]) -> Optional[int]:
    """Issue number from "fixes #N" / "closes #N" / "resolves #N", title first."""
    for text in (title, body or ""):
        match = ISSUE_REFERENCE_PATTERN.search(text)
        if match:
            return int(match.group(1))
    return None


class WebhookIngestor:
    """Verifies GitHub deliveries and turns them into jobs or thread updates."""

    def __init__(self, orchestrator, secret: Optional[str]):
        """
        Args:
            orchestrator: JobOrchestrator (submit, store and bridge are used)
            secret: Shared webhook secret (GH_WEBHOOK_SECRET)
        """
        self.orchestrator = orchestrator
        self.secret = secret

    def ingest(
        self,
        raw_body: bytes,
        signature: Optional[str],
        event: Optional[str],
    ) -> IngestOutcome:
        """Handle one delivery. Never raises."""
        try:
            self._authenticate(raw_body, signature)

            if event == "issues":
                return self._handle_issue_event(raw_body)
            if event == "pull_request":
                return self._handle_pull_request_event(raw_body)

            logger.info(f"[Webhook] Ignoring event: {event}")
            return IngestOutcome(200, {"message": "event_ignored"})

        except AuthenticationError as e:
            status_code = 400 if e.code == "missing_signature" else 401
            logger.warning(f"[Webhook] Rejected delivery: {e.code}")
            return IngestOutcome(status_code, {"error": e.code})
        except ValidationError as e:
            logger.warning(f"[Webhook] Bad request: {e.details}")
            return IngestOutcome(400, {"error": "bad_request", "details": e.details})
        except Exception as e:
            logger.exception(f"[Webhook] GitHub webhook error: {e}")
            return IngestOutcome(500, {"error": "internal_server_error"})

    def _authenticate(self, raw_body: bytes, signature: Optional[str]) -> None:
        if not signature:
            raise AuthenticationError("missing_signature")
        if not self.secret:
            logger.error("[Webhook] GH_WEBHOOK_SECRET is not configured, rejecting delivery")
            raise AuthenticationError("invalid_signature")
        if not verify_signature(raw_body, signature, self.secret):
            raise AuthenticationError("invalid_signature")

    @staticmethod
    def _parse(raw_body: bytes, model, event: str):
        try:
            data = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError(event, [{
                "loc": ["body"],
                "msg": f"Invalid JSON: {e}",
                "type": "json_invalid",
            }]) from e
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(event, error_details(e)) from e

    def _handle_issue_event(self, raw_body: bytes) -> IngestOutcome:
        data = self._parse(raw_body, IssueWebhook, "issues")

        if data.action != "opened":
            return IngestOutcome(200, {"message": "action_ignored"})

        payload = {
            "repo": data.repository.full_name,
            "issue": data.issue.number,
            "title": data.issue.title,
            "body": data.issue.body or "",
            "labels": [label.name for label in data.issue.labels],
        }
        job = self.orchestrator.submit(GITHUB_ISSUE_FIX, payload)

        logger.info(
            f"[Webhook] Issue {payload['repo']}#{payload['issue']} opened -> job {job.job_id}"
        )
        return IngestOutcome(200, {
            "message": "job_enqueued",
            "job_id": job.job_id,
            "dedup_key": job.dedup_key,
        })

    def _handle_pull_request_event(self, raw_body: bytes) -> IngestOutcome:
        data = self._parse(raw_body, PullRequestWebhook, "pull_request")

        if data.action != "opened":
            return IngestOutcome(200, {"message": "action_ignored"})

        pr = data.pull_request
        issue_number = find_issue_reference(pr.title, pr.body)
        if issue_number is None:
            return IngestOutcome(200, {"message": "no_reference_found"})

        repo = data.repository.full_name
        job = self.orchestrator.store.find_latest_issue_job(GITHUB_ISSUE_FIX, repo, issue_number)
        if job is None or not job.correlation_token:
            logger.info(f"[Webhook] No job with a notification thread for {repo}#{issue_number}")
            return IngestOutcome(200, {"message": "no_match_found"})

        self.orchestrator.bridge.announce_pull_request(
            job.correlation_token,
            pr_number=pr.number,
            pr_url=pr.html_url,
            pr_title=pr.title,
        )
        logger.info(f"[Webhook] PR #{pr.number} linked to job {job.job_id}")
        return IngestOutcome(200, {"message": "notification_sent", "job_id": job.job_id})
