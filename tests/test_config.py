"""Tests for environment-driven settings."""

import sys
from pathlib import Path

import pytest

from cloudjobs.infra.config import Settings, default_worker_command
from cloudjobs.orchestrator.errors import ConfigurationError


ENV_KEYS = [
    "CLOUDJOBS_DATA_DIR",
    "CLOUDJOBS_JOBS_DB",
    "CLOUDJOBS_QUEUE_DB",
    "CLOUDJOBS_LOG_DIR",
    "CLOUDJOBS_POLL_INTERVAL",
    "CLOUDJOBS_VISIBILITY_TIMEOUT",
    "CLOUDJOBS_MAX_ATTEMPTS",
    "CLOUDJOBS_TASK_RUNNER",
    "CLOUDJOBS_TASK_COMMAND",
    "CLOUDJOBS_TASK_TIMEOUT",
    "GH_WEBHOOK_SECRET",
    "SLACK_API_TOKEN",
    "SLACK_CHANNEL",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestFromEnv:

    def test_defaults(self, clean_env):
        settings = Settings.from_env(load_env_file=False)

        assert settings.poll_interval == 5.0
        assert settings.visibility_timeout == 4200.0
        assert settings.max_attempts == 3
        assert settings.slack_channel == "#roomote-control"
        assert settings.github_webhook_secret is None
        assert settings.slack_api_token is None
        assert settings.task_runner == "subprocess"
        assert settings.task_command == []
        assert settings.jobs_db_path == settings.data_dir / "jobs.sqlite"
        assert settings.queue_db_path == settings.data_dir / "queue.sqlite"

    def test_overrides(self, clean_env, tmp_path):
        clean_env.setenv("CLOUDJOBS_DATA_DIR", str(tmp_path / "data"))
        clean_env.setenv("CLOUDJOBS_POLL_INTERVAL", "0.5")
        clean_env.setenv("CLOUDJOBS_MAX_ATTEMPTS", "5")
        clean_env.setenv("CLOUDJOBS_TASK_COMMAND", "claude -p --output-format json")
        clean_env.setenv("CLOUDJOBS_TASK_RUNNER", "Anthropic")
        clean_env.setenv("GH_WEBHOOK_SECRET", "s3cret")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env(load_env_file=False)

        assert settings.data_dir == tmp_path / "data"
        assert settings.jobs_db_path == tmp_path / "data" / "jobs.sqlite"
        assert settings.poll_interval == 0.5
        assert settings.max_attempts == 5
        assert settings.task_command == ["claude", "-p", "--output-format", "json"]
        assert settings.task_runner == "anthropic"
        assert settings.github_webhook_secret == "s3cret"
        assert settings.log_level == "DEBUG"

    def test_invalid_numbers_fall_back(self, clean_env):
        clean_env.setenv("CLOUDJOBS_MAX_ATTEMPTS", "three")
        clean_env.setenv("CLOUDJOBS_VISIBILITY_TIMEOUT", "soon")

        settings = Settings.from_env(load_env_file=False)

        assert settings.max_attempts == 3
        assert settings.visibility_timeout == 4200.0

    def test_default_lease_outlives_task_timeout(self, clean_env):
        settings = Settings.from_env(load_env_file=False)

        assert settings.visibility_timeout > settings.task_timeout

    def test_lease_shorter_than_task_timeout_is_rejected(self, clean_env):
        clean_env.setenv("CLOUDJOBS_VISIBILITY_TIMEOUT", "1800")
        clean_env.setenv("CLOUDJOBS_TASK_TIMEOUT", "3600")

        with pytest.raises(ConfigurationError, match="must exceed"):
            Settings.from_env(load_env_file=False)

    def test_equal_lease_and_task_timeout_is_rejected(self, clean_env):
        clean_env.setenv("CLOUDJOBS_VISIBILITY_TIMEOUT", "600")
        clean_env.setenv("CLOUDJOBS_TASK_TIMEOUT", "600")

        with pytest.raises(ConfigurationError):
            Settings.from_env(load_env_file=False)

    def test_empty_secret_is_unset(self, clean_env):
        clean_env.setenv("GH_WEBHOOK_SECRET", "")

        assert Settings.from_env(load_env_file=False).github_webhook_secret is None


class TestPaths:

    def test_ensure_directories(self, tmp_path):
        settings = Settings(
            data_dir=tmp_path / "data",
            jobs_db_path=tmp_path / "data" / "jobs.sqlite",
            queue_db_path=tmp_path / "queue" / "queue.sqlite",
            log_dir=tmp_path / "logs",
        )

        settings.ensure_directories()

        assert (tmp_path / "data").is_dir()
        assert (tmp_path / "queue").is_dir()
        assert settings.task_log_dir.is_dir()
        assert settings.worker_log_path == tmp_path / "logs" / "worker.log"

    def test_default_worker_command_uses_current_interpreter(self):
        assert default_worker_command() == [sys.executable, "-m", "cloudjobs.orchestrator.worker"]
        assert Settings(Path("d"), Path("j"), Path("q"), Path("l")).worker_command[0] == sys.executable
