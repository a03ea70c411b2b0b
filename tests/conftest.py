"""
Pytest configuration and shared fixtures.

Fakes here replace every outside effect: no processes are spawned, no
network calls are made, and time in the queue only moves when a test
ticks the mock clock.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

import pytest

from cloudjobs.infra.config import Settings
from cloudjobs.orchestrator.entities import Job
from cloudjobs.orchestrator.errors import NotificationError, TaskExecutionError
from cloudjobs.orchestrator.process import ProcessHandle
from cloudjobs.orchestrator.service import JobOrchestrator


# Fixed time for deterministic tests
FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0)

WEBHOOK_SECRET = "test-webhook-secret"


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at fixed epoch
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: float = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)


class FakeTaskRunner:
    """
    Scripted task runner.

    Each call pops the next scripted outcome; an Exception instance is
    raised, anything else is returned. With nothing scripted the call
    succeeds with {"ok": True}.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self._outcomes: list = []

    def succeed_with(self, result: dict) -> None:
        self._outcomes.append(result)

    def fail_with(self, error: Exception) -> None:
        self._outcomes.append(error)

    def fail_times(self, n: int, message: str = "task crashed") -> None:
        for _ in range(n):
            self._outcomes.append(TaskExecutionError(message))

    def run(self, prompt, workspace=None, settings=None, job_id=None) -> dict:
        self.calls.append({
            "prompt": prompt,
            "workspace": workspace,
            "settings": settings,
            "job_id": job_id,
        })
        outcome = self._outcomes.pop(0) if self._outcomes else {"ok": True}
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingNotifier:
    """Notifier that records messages and hands out sequential thread tokens."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.started: list[Job] = []
        self.updates: list[tuple] = []
        self.completions: list[tuple] = []
        self._counter = 0

    def post_task_started(self, job: Job) -> Optional[str]:
        if self.fail:
            raise NotificationError("slack down")
        self.started.append(job)
        self._counter += 1
        return f"1700000000.{self._counter:06d}"

    def post_task_updated(self, thread_ts: str, text: str, status: str = "info") -> None:
        if self.fail:
            raise NotificationError("slack down")
        self.updates.append((thread_ts, text, status))

    def post_task_completed(self, thread_ts, success, duration_seconds, job_id=None) -> None:
        if self.fail:
            raise NotificationError("slack down")
        self.completions.append((thread_ts, success, job_id))


class FakeSupervisor:
    """
    Process supervisor that records spawns instead of starting processes.

    Tests end a "process" with finish(); spawn failures are simulated
    with fail_next_spawn().
    """

    def __init__(self):
        self.spawned: list[dict] = []
        self._next_pid = 1000
        self._fail_next: Optional[Exception] = None

    def fail_next_spawn(self, error: Exception = OSError("fork failed")) -> None:
        self._fail_next = error

    def spawn(self, command, env, log_path, on_exit) -> ProcessHandle:
        if self._fail_next is not None:
            error, self._fail_next = self._fail_next, None
            raise error
        self._next_pid += 1
        self.spawned.append({
            "pid": self._next_pid,
            "command": list(command),
            "log_path": str(log_path),
            "on_exit": on_exit,
            "exited": False,
        })
        return ProcessHandle(pid=self._next_pid, command=list(command), log_path=str(log_path))

    def finish(self, index: int = -1, exit_code: int = 0) -> None:
        """Simulate exit of a spawned process."""
        record = self.spawned[index]
        record["exited"] = True
        record["on_exit"](exit_code)

    @property
    def running(self) -> list[dict]:
        return [record for record in self.spawned if not record["exited"]]


# =============================================================================
# Environment
# =============================================================================


@pytest.fixture(autouse=True)
def reset_auth_env(monkeypatch):
    """Run every test with API key auth off unless it turns it on."""
    monkeypatch.setenv("API_AUTH_ENABLED", "false")
    monkeypatch.delenv("API_KEY", raising=False)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def mock_clock() -> MockClock:
    """Create a mock clock at fixed time."""
    return MockClock()


@pytest.fixture
def fake_runner() -> FakeTaskRunner:
    return FakeTaskRunner()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory."""
    data_dir = tmp_path / "data"
    settings = Settings(
        data_dir=data_dir,
        jobs_db_path=data_dir / "jobs.sqlite",
        queue_db_path=data_dir / "queue.sqlite",
        log_dir=tmp_path / "logs",
        poll_interval=0.05,
        visibility_timeout=60.0,
        task_timeout=30.0,
        max_attempts=3,
        github_webhook_secret=WEBHOOK_SECRET,
        worker_command=["python", "-m", "cloudjobs.orchestrator.worker"],
    )
    settings.ensure_directories()
    return settings


@pytest.fixture
def orchestrator(
    settings: Settings,
    supervisor: FakeSupervisor,
    notifier: RecordingNotifier,
    fake_runner: FakeTaskRunner,
    mock_clock: MockClock,
) -> JobOrchestrator:
    """Fully wired orchestrator with fake process, notifier and runner."""
    return JobOrchestrator.create(
        settings,
        supervisor=supervisor,
        notifier=notifier,
        runner=fake_runner,
        clock=mock_clock.now,
    )


# =============================================================================
# Job Factory Fixtures
# =============================================================================


def issue_payload(issue: int = 42, repo: str = "acme/widgets", **overrides) -> dict:
    payload = {
        "repo": repo,
        "issue": issue,
        "title": "Crash on empty input",
        "body": "Steps to reproduce: run with no args",
        "labels": ["bug"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def submit_issue_job(orchestrator: JobOrchestrator) -> Callable:
    """Factory fixture submitting github.issue.fix jobs."""

    def _submit(issue: int = 42, repo: str = "acme/widgets", **overrides) -> Job:
        return orchestrator.submit("github.issue.fix", issue_payload(issue, repo, **overrides))

    return _submit
