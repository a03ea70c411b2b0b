"""
Tasks module - job kinds and task runners.
"""

from .kinds import (
    GITHUB_ISSUE_FIX,
    JOB_KINDS,
    TASK_EXECUTE,
    IssueFixPayload,
    JobKind,
    TaskExecutePayload,
    get_kind,
    validate_payload,
)
from .runner import (
    AnthropicTaskRunner,
    SubprocessTaskRunner,
    TaskRunner,
    build_task_runner,
)

__all__ = [
    # kinds
    "GITHUB_ISSUE_FIX",
    "JOB_KINDS",
    "TASK_EXECUTE",
    "IssueFixPayload",
    "JobKind",
    "TaskExecutePayload",
    "get_kind",
    "validate_payload",
    # runners
    "AnthropicTaskRunner",
    "SubprocessTaskRunner",
    "TaskRunner",
    "build_task_runner",
]
