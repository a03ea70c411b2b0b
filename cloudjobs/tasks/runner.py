"""
Task runners.

A task runner executes one automation task for a job and returns a
JSON-serializable result dict. Any failure is raised as
TaskExecutionError so the worker can hand it to the queue's retry logic.

Runners:
- SubprocessTaskRunner: Runs a configured CLI command, prompt on stdin,
  combined output written to a per-job log file
- AnthropicTaskRunner: Sends the prompt to the Anthropic Messages API
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Optional, Protocol

import anthropic

from ..orchestrator.errors import ConfigurationError, TaskExecutionError

logger = logging.getLogger(__name__)


DEFAULT_TASK_TIMEOUT_SECONDS = 3600.0
DEFAULT_MAX_TOKENS = 8192

# Lines of log tail kept in the result / error message
LOG_TAIL_LINES = 20


class TaskRunner(Protocol):
    """Protocol for automation task runners."""

    def run(
        self,
        prompt: str,
        workspace: Optional[str] = None,
        settings: Optional[dict] = None,
        job_id: Optional[str] = None,
    ) -> dict:
        """
        Run one automation task to completion.

        Raises:
            TaskExecutionError: If the task fails
        """
        ...


def _read_log_tail(log_path: Path, lines: int = LOG_TAIL_LINES) -> str:
    """Read the last lines of a log file."""
    try:
        content = log_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return "\n".join(content.splitlines()[-lines:])


class SubprocessTaskRunner:
    """
    Runs the automation task as a child process.

    The prompt is written to the child's stdin; stdout and stderr go to
    <log_dir>/<job_id>.log. Exit code 0 means success.
    """

    def __init__(
        self,
        command: list[str],
        log_dir: Path,
        timeout: float = DEFAULT_TASK_TIMEOUT_SECONDS,
        cwd: Optional[Path] = None,
    ):
        """
        Initialize subprocess runner.

        Args:
            command: argv of the task command
            log_dir: Directory for per-job logs
            timeout: Seconds before the task is killed
            cwd: Default working directory when the job names no workspace
        """
        if not command:
            raise ConfigurationError("SubprocessTaskRunner requires a command (CLOUDJOBS_TASK_COMMAND)")
        self.command = list(command)
        self.log_dir = Path(log_dir)
        self.timeout = timeout
        self.cwd = cwd

    def run(
        self,
        prompt: str,
        workspace: Optional[str] = None,
        settings: Optional[dict] = None,
        job_id: Optional[str] = None,
    ) -> dict:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.log_dir / f"{job_id or 'task'}.log"
        cwd = workspace or self.cwd

        env = None
        if settings:
            env = dict(os.environ)
            env.update({str(k): str(v) for k, v in settings.items()})

        logger.info(f"[TaskRunner] Executing {' '.join(self.command)} (cwd={cwd}, log={log_path})")

        try:
            with open(log_path, "w") as log_file:
                completed = subprocess.run(
                    self.command,
                    input=prompt,
                    text=True,
                    cwd=cwd,
                    env=env,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=self.timeout,
                )
        except subprocess.TimeoutExpired as e:
            raise TaskExecutionError(f"Task timed out after {self.timeout}s") from e
        except OSError as e:
            raise TaskExecutionError(f"Failed to start task command: {e}") from e

        tail = _read_log_tail(log_path)
        if completed.returncode != 0:
            raise TaskExecutionError(
                f"Task exited with code {completed.returncode}"
                + (f": {tail.splitlines()[-1]}" if tail else "")
            )

        return {
            "exit_code": completed.returncode,
            "log_path": str(log_path),
            "output_tail": tail,
        }


class AnthropicTaskRunner:
    """Runs the task as a single Anthropic Messages API call."""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        client: Optional[Any] = None,
    ):
        if not api_key and client is None:
            raise ConfigurationError("AnthropicTaskRunner requires ANTHROPIC_API_KEY")
        self.model = model
        self.max_tokens = max_tokens
        self._client = client or anthropic.Anthropic(api_key=api_key)

    def run(
        self,
        prompt: str,
        workspace: Optional[str] = None,
        settings: Optional[dict] = None,
        job_id: Optional[str] = None,
    ) -> dict:
        settings = settings or {}
        model = settings.get("model", self.model)
        logger.info(f"[TaskRunner] Calling Anthropic model={model} for job {job_id}")

        try:
            message = self._client.messages.create(
                model=model,
                max_tokens=int(settings.get("max_tokens", self.max_tokens)),
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ]
            )
        except anthropic.APIError as e:
            logger.error(f"[TaskRunner] Anthropic API error for job {job_id}: {e}")
            raise TaskExecutionError(f"Anthropic API error: {e}") from e

        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )

        usage = None
        if getattr(message, "usage", None):
            usage = {
                "input_tokens": message.usage.input_tokens,
                "output_tokens": message.usage.output_tokens,
            }

        return {
            "model": model,
            "text": text,
            "stop_reason": getattr(message, "stop_reason", None),
            "usage": usage,
        }


def build_task_runner(settings) -> TaskRunner:
    """
    Build the task runner selected by CLOUDJOBS_TASK_RUNNER.

    Raises:
        ConfigurationError: On an unknown runner name or missing configuration
    """
    if settings.task_runner == "anthropic":
        return AnthropicTaskRunner(
            api_key=settings.anthropic_api_key or "",
            model=settings.claude_model,
        )
    if settings.task_runner == "subprocess":
        return SubprocessTaskRunner(
            command=settings.task_command,
            log_dir=settings.task_log_dir,
            timeout=settings.task_timeout,
        )
    raise ConfigurationError(f"Unknown task runner: {settings.task_runner}")
