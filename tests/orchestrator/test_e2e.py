"""
End-to-end tests.

Submission through controller cycles to terminal job state. The
supervisor runs each "worker process" inline, so a whole worker life
(spawn, drain one job, exit) happens inside one controller cycle.
"""

import pytest

from cloudjobs.orchestrator.entities import JobStatus, QueueCounts
from cloudjobs.orchestrator.process import ProcessHandle
from cloudjobs.orchestrator.service import JobOrchestrator
from cloudjobs.orchestrator.worker import WorkerOutcome


class InlineSupervisor:
    """Runs a worker synchronously and reports its exit before spawn returns."""

    def __init__(self):
        self.orchestrator = None
        self.outcomes: list[WorkerOutcome] = []

    def spawn(self, command, env, log_path, on_exit) -> ProcessHandle:
        outcome = self.orchestrator.build_worker().run_once()
        self.outcomes.append(outcome)
        on_exit(0)
        return ProcessHandle(pid=len(self.outcomes), command=list(command), log_path=str(log_path))


@pytest.fixture
def inline_supervisor() -> InlineSupervisor:
    return InlineSupervisor()


@pytest.fixture
def e2e_orchestrator(settings, inline_supervisor, notifier, fake_runner, mock_clock) -> JobOrchestrator:
    orchestrator = JobOrchestrator.create(
        settings,
        supervisor=inline_supervisor,
        notifier=notifier,
        runner=fake_runner,
        clock=mock_clock.now,
    )
    inline_supervisor.orchestrator = orchestrator
    return orchestrator


class TestEndToEnd:

    def test_jobs_run_one_at_a_time(self, e2e_orchestrator, inline_supervisor, mock_clock):
        first = e2e_orchestrator.submit("task.execute", {"prompt": "one"})
        mock_clock.tick(1)
        second = e2e_orchestrator.submit("task.execute", {"prompt": "two"})

        e2e_orchestrator.controller.run_cycle()

        assert e2e_orchestrator.get_job(first.job_id).status == JobStatus.COMPLETED
        assert e2e_orchestrator.get_job(second.job_id).status == JobStatus.PENDING

        e2e_orchestrator.controller.run_cycle()

        assert e2e_orchestrator.get_job(second.job_id).status == JobStatus.COMPLETED
        assert e2e_orchestrator.controller.run_cycle() is None
        assert inline_supervisor.outcomes == [WorkerOutcome.COMPLETED, WorkerOutcome.COMPLETED]

    def test_exit_during_spawn_leaves_nothing_tracked(self, e2e_orchestrator):
        e2e_orchestrator.submit("task.execute", {"prompt": "one"})

        assert e2e_orchestrator.controller.run_cycle() is not None
        assert e2e_orchestrator.controller.active_workers == {}

    def test_retry_then_success(self, e2e_orchestrator, fake_runner, mock_clock, notifier):
        job = e2e_orchestrator.submit("task.execute", {"prompt": "flaky"})
        fake_runner.fail_times(1)

        e2e_orchestrator.controller.run_cycle()
        assert e2e_orchestrator.get_job(job.job_id).status == JobStatus.FAILED

        # Backoff not elapsed: nothing to spawn
        assert e2e_orchestrator.controller.run_cycle() is None

        mock_clock.tick(2)
        e2e_orchestrator.controller.run_cycle()

        assert e2e_orchestrator.get_job(job.job_id).status == JobStatus.COMPLETED
        assert len(notifier.started) == 1
        assert notifier.completions == [
            ("1700000000.000001", False, job.job_id),
            ("1700000000.000001", True, job.job_id),
        ]

    def test_permanent_failure_dead_letters(self, e2e_orchestrator, fake_runner, mock_clock):
        job = e2e_orchestrator.submit("task.execute", {"prompt": "broken"})
        fake_runner.fail_times(3, "always fails")

        for _ in range(3):
            e2e_orchestrator.controller.run_cycle()
            mock_clock.tick(60)

        stored = e2e_orchestrator.get_job(job.job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "always fails"
        assert e2e_orchestrator.queue.counts() == QueueCounts(dead=1)

    def test_duplicate_submissions_are_distinct_jobs(self, e2e_orchestrator):
        first = e2e_orchestrator.submit("task.execute", {"prompt": "same"})
        second = e2e_orchestrator.submit("task.execute", {"prompt": "same"})

        assert first.job_id != second.job_id
        assert e2e_orchestrator.queue.counts().waiting == 2

    def test_queue_status_and_health(self, e2e_orchestrator):
        e2e_orchestrator.submit("task.execute", {"prompt": "one"})

        status = e2e_orchestrator.queue_status()

        assert status["queue"] == {"waiting": 1, "active": 0, "delayed": 0, "dead": 0}
        assert status["jobs"]["pending"] == 1
        assert status["active_workers"] == 0
        assert e2e_orchestrator.health() == {"database": True, "queue": True}

    def test_start_runs_recovery_and_stop_closes_queue(self, e2e_orchestrator):
        stats = e2e_orchestrator.start(run_recovery=True)
        try:
            assert stats["errors"] == []
            assert e2e_orchestrator.is_running
        finally:
            e2e_orchestrator.stop(timeout=2.0)

        assert not e2e_orchestrator.is_running
        assert e2e_orchestrator.queue.closed
