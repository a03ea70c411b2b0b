"""
Job kinds.

A job kind is a closed, named variant: its payload schema, the prompt
the automation task receives, and how the runner output becomes the
job result all live together here. Adding a kind means adding one
JobKind to JOB_KINDS.

Supported kinds:
- github.issue.fix: Fix a GitHub issue and open a pull request
- task.execute: Run a free-form prompt, optionally in a workspace
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..orchestrator.errors import UnknownKindError, ValidationError

logger = logging.getLogger(__name__)


GITHUB_ISSUE_FIX = "github.issue.fix"
TASK_EXECUTE = "task.execute"


# =============================================================================
# Payload schemas
# =============================================================================

class IssueFixPayload(BaseModel):
    """Payload of a github.issue.fix job."""

    model_config = ConfigDict(extra="forbid")

    repo: str = Field(..., min_length=1, description="Repository full name (owner/name)")
    issue: int = Field(..., ge=1, description="Issue number")
    title: str = Field(..., description="Issue title")
    body: str = Field(default="", description="Issue body")
    labels: Optional[List[str]] = Field(default=None, description="Issue label names")


class TaskExecutePayload(BaseModel):
    """Payload of a task.execute job."""

    model_config = ConfigDict(extra="forbid")

    prompt: str = Field(..., min_length=1, description="Instruction for the automation task")
    workspace: Optional[str] = Field(default=None, description="Working directory for the task")
    settings: Optional[dict[str, Any]] = Field(default=None, description="Runner-specific settings")


# =============================================================================
# Prompt builders
# =============================================================================

def build_issue_fix_prompt(payload: IssueFixPayload) -> str:
    """Prompt asking the agent to fix an issue and open a pull request."""
    labels = f"Labels: {', '.join(payload.labels)}" if payload.labels else ""

    return f"""
Fix the following GitHub issue:

Repository: {payload.repo}
Issue #{payload.issue}: {payload.title}

Description:
{payload.body}

{labels}

Please analyze the issue, understand what needs to be fixed, and implement a solution.

When you're finished, create a git branch to store your work and then submit a pull request using the "gh" command line tool:
gh pr create --title "Fixes #{payload.issue}\\n\\n[Your PR description here.]" --fill --template "pull_request_template.md"

Your job isn't done until you've created a pull request. Try to solve any git issues that arise while creating your branch and submitting your pull request.
""".strip()


def build_task_prompt(payload: TaskExecutePayload) -> str:
    return payload.prompt.strip()


# =============================================================================
# Registry
# =============================================================================

@dataclass(frozen=True)
class JobKind:
    """A supported job kind."""

    name: str
    payload_model: type[BaseModel]
    build_prompt: Callable[[Any], str]
    description: str = ""

    def parse(self, payload: Any) -> BaseModel:
        """
        Validate a raw payload.

        Raises:
            ValidationError: With pydantic's structured violations
        """
        if not isinstance(payload, dict):
            raise ValidationError(self.name, [{
                "loc": ["payload"],
                "msg": "Payload must be an object",
                "type": "dict_type",
            }])
        try:
            return self.payload_model.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(self.name, error_details(e)) from e

    def normalize(self, payload: Any) -> dict:
        """Validate and return the payload as stored on the job."""
        return self.parse(payload).model_dump(exclude_none=True)

    def workspace(self, model: BaseModel) -> Optional[str]:
        return getattr(model, "workspace", None)

    def runner_settings(self, model: BaseModel) -> Optional[dict]:
        return getattr(model, "settings", None)


JOB_KINDS: dict[str, JobKind] = {
    GITHUB_ISSUE_FIX: JobKind(
        name=GITHUB_ISSUE_FIX,
        payload_model=IssueFixPayload,
        build_prompt=build_issue_fix_prompt,
        description="Fix a GitHub issue and open a pull request",
    ),
    TASK_EXECUTE: JobKind(
        name=TASK_EXECUTE,
        payload_model=TaskExecutePayload,
        build_prompt=build_task_prompt,
        description="Run a free-form automation task",
    ),
}


def get_kind(name: str) -> JobKind:
    """
    Look up a job kind by name.

    Raises:
        UnknownKindError: If the kind is not supported
    """
    kind = JOB_KINDS.get(name)
    if kind is None:
        raise UnknownKindError(name)
    return kind


def validate_payload(kind_name: str, payload: Any) -> dict:
    """
    Validate a payload against its kind's schema.

    Raises:
        UnknownKindError: If the kind is not supported
        ValidationError: If the payload violates the schema
    """
    return get_kind(kind_name).normalize(payload)


def error_details(error: PydanticValidationError) -> list[dict[str, Any]]:
    """JSON-safe violation list from a pydantic ValidationError."""
    return [
        {
            "loc": [str(part) for part in detail.get("loc", ())],
            "msg": detail.get("msg", ""),
            "type": detail.get("type", ""),
        }
        for detail in error.errors()
    ]


def execute(job_type: str, job_id: str, payload: dict, runner) -> dict:
    """
    Run a job's automation task.

    Args:
        job_type: Job kind name
        job_id: Job ID (used by runners for per-job logs)
        payload: Stored job payload
        runner: TaskRunner implementation

    Returns:
        JSON-serializable job result

    Raises:
        UnknownKindError: If the kind is not supported
        ValidationError: If the stored payload no longer validates
        TaskExecutionError: If the task fails
    """
    kind = get_kind(job_type)
    model = kind.parse(payload)
    prompt = kind.build_prompt(model)

    logger.info(f"[Tasks] Running {job_type} for job {job_id}")
    output = runner.run(
        prompt,
        workspace=kind.workspace(model),
        settings=kind.runner_settings(model),
        job_id=job_id,
    )

    if job_type == GITHUB_ISSUE_FIX:
        return {"repo": model.repo, "issue": model.issue, "result": output}
    return output
