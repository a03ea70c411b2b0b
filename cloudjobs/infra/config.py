"""
Runtime configuration for cloudjobs.

All settings come from environment variables, optionally loaded from a
`.env` file in the working directory. Every process (API server, worker
controller, worker) builds its own Settings via get_settings().

Directory structure (defaults):
data/
 ├── jobs.sqlite        # Job store
 └── queue.sqlite       # Work queue backing store
logs/
 ├── cloudjobs_YYYYMMDD_HHMMSS.log
 ├── worker.log          # Appended stdout/stderr of spawned workers
 └── tasks/              # Per-job task runner output

Environment Variables:
- CLOUDJOBS_DATA_DIR: Data directory (default: data)
- CLOUDJOBS_JOBS_DB / CLOUDJOBS_QUEUE_DB: Override database paths
- CLOUDJOBS_LOG_DIR: Log directory (default: logs)
- LOG_LEVEL: Logging level (default: INFO)
- CLOUDJOBS_POLL_INTERVAL: Controller poll period in seconds (default: 5)
- CLOUDJOBS_VISIBILITY_TIMEOUT: Lease duration in seconds (default: 4200,
  must exceed CLOUDJOBS_TASK_TIMEOUT)
- CLOUDJOBS_MAX_ATTEMPTS: Deliveries before dead-letter (default: 3)
- CLOUDJOBS_BACKOFF_BASE / _MULTIPLIER / _MAX: Retry backoff (2s, x2, 60s)
- GH_WEBHOOK_SECRET: Shared secret for GitHub webhook signatures
- SLACK_API_TOKEN / SLACK_CHANNEL: Slack notifications (disabled without token)
- API_AUTH_ENABLED / API_KEY: Optional X-API-Key protection of /api/jobs
- CLOUDJOBS_TASK_RUNNER: "subprocess" (default) or "anthropic"
- CLOUDJOBS_TASK_COMMAND: Command for the subprocess runner (prompt on stdin)
- CLOUDJOBS_TASK_TIMEOUT: Task runner timeout in seconds (default: 3600)
- ANTHROPIC_API_KEY / CLAUDE_MODEL: Anthropic runner credentials and model
"""

import logging
import os
import shlex
import sys
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ..orchestrator.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SLACK_CHANNEL = "#roomote-control"
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"


# =============================================================================
# Environment helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


def get_project_root() -> Path:
    """Project root (the directory containing the cloudjobs package)."""
    return Path(__file__).parent.parent.parent.resolve()


def default_worker_command() -> list[str]:
    """Command the controller uses to start a single-job worker."""
    return [sys.executable, "-m", "cloudjobs.orchestrator.worker"]


# =============================================================================
# Settings
# =============================================================================

@dataclass
class Settings:
    """Resolved runtime settings."""

    data_dir: Path
    jobs_db_path: Path
    queue_db_path: Path
    log_dir: Path
    log_level: str = "INFO"

    # Controller / queue
    poll_interval: float = 5.0
    visibility_timeout: float = 4200.0
    max_attempts: int = 3
    backoff_base: float = 2.0
    backoff_multiplier: float = 2.0
    backoff_max: float = 60.0
    worker_command: list[str] = field(default_factory=default_worker_command)

    # Webhooks and notifications
    github_webhook_secret: Optional[str] = None
    slack_api_token: Optional[str] = None
    slack_channel: str = DEFAULT_SLACK_CHANNEL

    # API authentication
    api_auth_enabled: bool = False
    api_key: str = ""

    # Task runner
    task_runner: str = "subprocess"
    task_command: list[str] = field(default_factory=list)
    task_timeout: float = 3600.0
    anthropic_api_key: Optional[str] = None
    claude_model: str = DEFAULT_CLAUDE_MODEL

    @property
    def worker_log_path(self) -> Path:
        """Durable sink for spawned worker output."""
        return self.log_dir / "worker.log"

    @property
    def task_log_dir(self) -> Path:
        """Directory for per-job task runner logs."""
        return self.log_dir / "tasks"

    def ensure_directories(self) -> None:
        """Create data and log directories if missing."""
        for directory in (self.data_dir, self.log_dir, self.task_log_dir,
                          self.jobs_db_path.parent, self.queue_db_path.parent):
            directory.mkdir(parents=True, exist_ok=True)

    def validate(self) -> None:
        """
        Reject settings that break queue delivery guarantees.

        A lease shorter than the task timeout expires under a task that is
        still running, and the entry is redelivered to a second worker.

        Raises:
            ConfigurationError: If visibility_timeout <= task_timeout
        """
        if self.visibility_timeout <= self.task_timeout:
            raise ConfigurationError(
                f"CLOUDJOBS_VISIBILITY_TIMEOUT ({self.visibility_timeout}s) must exceed "
                f"CLOUDJOBS_TASK_TIMEOUT ({self.task_timeout}s)"
            )

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            load_env_file: Load a .env file first (existing variables win)

        Returns:
            Settings instance

        Raises:
            ConfigurationError: If the lease would expire under a running task
        """
        if load_env_file:
            load_dotenv()

        root = get_project_root()
        data_dir = Path(os.getenv("CLOUDJOBS_DATA_DIR", str(root / "data")))
        log_dir = Path(os.getenv("CLOUDJOBS_LOG_DIR", str(root / "logs")))

        task_command = os.getenv("CLOUDJOBS_TASK_COMMAND", "")

        settings = cls(
            data_dir=data_dir,
            jobs_db_path=Path(os.getenv("CLOUDJOBS_JOBS_DB", str(data_dir / "jobs.sqlite"))),
            queue_db_path=Path(os.getenv("CLOUDJOBS_QUEUE_DB", str(data_dir / "queue.sqlite"))),
            log_dir=log_dir,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            poll_interval=_get_env_float("CLOUDJOBS_POLL_INTERVAL", 5.0),
            visibility_timeout=_get_env_float("CLOUDJOBS_VISIBILITY_TIMEOUT", 4200.0),
            max_attempts=_get_env_int("CLOUDJOBS_MAX_ATTEMPTS", 3),
            backoff_base=_get_env_float("CLOUDJOBS_BACKOFF_BASE", 2.0),
            backoff_multiplier=_get_env_float("CLOUDJOBS_BACKOFF_MULTIPLIER", 2.0),
            backoff_max=_get_env_float("CLOUDJOBS_BACKOFF_MAX", 60.0),
            github_webhook_secret=os.getenv("GH_WEBHOOK_SECRET") or None,
            slack_api_token=os.getenv("SLACK_API_TOKEN") or None,
            slack_channel=os.getenv("SLACK_CHANNEL", DEFAULT_SLACK_CHANNEL),
            api_auth_enabled=_get_env_bool("API_AUTH_ENABLED", False),
            api_key=os.getenv("API_KEY", ""),
            task_runner=os.getenv("CLOUDJOBS_TASK_RUNNER", "subprocess").lower(),
            task_command=shlex.split(task_command) if task_command else [],
            task_timeout=_get_env_float("CLOUDJOBS_TASK_TIMEOUT", 3600.0),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            claude_model=os.getenv("CLAUDE_MODEL", DEFAULT_CLAUDE_MODEL),
        )
        settings.validate()
        return settings


@lru_cache
def get_settings() -> Settings:
    """Get process-wide settings (resolved once)."""
    return Settings.from_env()
