"""
Recovery tests.

Start-up recovery brings the job store and the queue back in agreement
after a crash; running it twice must not change anything.
"""

from cloudjobs.orchestrator.entities import Job, JobStatus, QueueCounts
from cloudjobs.orchestrator.recovery import DEAD_LETTER_ERROR


def _dead_letter(orchestrator, job: Job, mock_clock) -> None:
    """Exhaust every delivery of a job's entry without touching the job."""
    queue = orchestrator.queue
    for attempt in range(1, queue.retry_policy.max_attempts + 1):
        entry = queue.acquire(f"token-{attempt}")
        assert entry.job_id == job.job_id
        queue.fail(entry, f"token-{attempt}", f"crash {attempt}")
        mock_clock.tick(60)


class TestPendingRequeue:

    def test_pending_job_without_entry_is_enqueued(self, orchestrator):
        # Crash between job creation and enqueue
        job = orchestrator.store.create_job(Job.create("task.execute", {"prompt": "hi"}))

        stats = orchestrator.recover()

        assert stats["pending_requeued"] == 1
        assert stats["errors"] == []
        assert orchestrator.queue.get(job.dedup_key) is not None

    def test_pending_job_with_entry_is_left_alone(self, orchestrator):
        orchestrator.submit("task.execute", {"prompt": "hi"})

        stats = orchestrator.recover()

        assert stats["pending_requeued"] == 0
        assert orchestrator.queue.counts().waiting == 1

    def test_recovery_is_idempotent(self, orchestrator):
        orchestrator.store.create_job(Job.create("task.execute", {"prompt": "hi"}))

        first = orchestrator.recover()
        second = orchestrator.recover()

        assert first["pending_requeued"] == 1
        assert second["pending_requeued"] == 0
        assert orchestrator.queue.counts() == QueueCounts(waiting=1)


class TestDeadLetterResolution:

    def test_dead_letter_fails_processing_job(self, orchestrator, mock_clock):
        job = orchestrator.submit("task.execute", {"prompt": "hi"})
        orchestrator.lifecycle.start(job.job_id)
        _dead_letter(orchestrator, job, mock_clock)

        stats = orchestrator.recover()

        stored = orchestrator.get_job(job.job_id)
        assert stats["dead_letters_resolved"] == 1
        assert stored.status == JobStatus.FAILED
        assert stored.error == "crash 3"

    def test_dead_letter_of_pending_job_passes_through_processing(
        self, orchestrator, mock_clock
    ):
        job = orchestrator.submit("task.execute", {"prompt": "hi"})
        _dead_letter(orchestrator, job, mock_clock)
        events = []
        orchestrator.lifecycle.subscribe(events.append)

        orchestrator.recover()

        assert [e.status for e in events] == [JobStatus.PROCESSING, JobStatus.FAILED]
        assert orchestrator.get_job(job.job_id).status == JobStatus.FAILED

    def test_terminal_job_is_not_touched(self, orchestrator, mock_clock):
        job = orchestrator.submit("task.execute", {"prompt": "hi"})
        _dead_letter(orchestrator, job, mock_clock)
        orchestrator.lifecycle.start(job.job_id)
        orchestrator.lifecycle.complete(job.job_id, {"ok": True})

        stats = orchestrator.recover()

        assert stats["dead_letters_resolved"] == 0
        assert orchestrator.get_job(job.job_id).status == JobStatus.COMPLETED

    def test_second_recovery_resolves_nothing(self, orchestrator, mock_clock):
        job = orchestrator.submit("task.execute", {"prompt": "hi"})
        orchestrator.lifecycle.start(job.job_id)
        _dead_letter(orchestrator, job, mock_clock)

        orchestrator.recover()
        stats = orchestrator.recover()

        assert stats["dead_letters_resolved"] == 0

    def test_expired_final_lease_is_resolved(self, orchestrator, mock_clock):
        job = orchestrator.submit("task.execute", {"prompt": "hi"})
        orchestrator.lifecycle.start(job.job_id)
        queue = orchestrator.queue
        for attempt in range(1, 3):
            queue.fail(queue.acquire(f"token-{attempt}"), f"token-{attempt}", "crash")
            mock_clock.tick(60)
        # Worker died holding the last lease
        queue.acquire("token-3")
        mock_clock.tick(61)

        stats = orchestrator.recover()

        assert stats["leases_dead_lettered"] == 1
        assert stats["dead_letters_resolved"] == 1
        assert orchestrator.get_job(job.job_id).status == JobStatus.FAILED

    def test_controller_cycle_resolves_dead_letter(self, orchestrator, mock_clock):
        job = orchestrator.submit("task.execute", {"prompt": "hi"})
        orchestrator.lifecycle.start(job.job_id)
        queue = orchestrator.queue
        for attempt in range(1, 3):
            queue.fail(queue.acquire(f"token-{attempt}"), f"token-{attempt}", "crash")
            mock_clock.tick(60)
        queue.acquire("token-3")
        mock_clock.tick(61)

        orchestrator.controller.run_cycle()

        assert orchestrator.get_job(job.job_id).status == JobStatus.FAILED

    def test_default_error_when_entry_has_none(self, orchestrator):
        job = orchestrator.submit("task.execute", {"prompt": "hi"})
        orchestrator.lifecycle.start(job.job_id)
        entry = orchestrator.queue.get(job.dedup_key)

        assert orchestrator.recovery_manager.resolve_dead_letter(entry) is True
        assert orchestrator.get_job(job.job_id).error == DEAD_LETTER_ERROR

    def test_missing_job_is_ignored(self, orchestrator):
        entry = orchestrator.queue.enqueue("task.execute", "ghost", {})

        assert orchestrator.recovery_manager.resolve_dead_letter(entry) is False
