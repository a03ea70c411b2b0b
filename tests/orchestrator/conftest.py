"""
Fixtures for orchestrator core tests.

Components here are built individually against temporary SQLite files,
without the JobOrchestrator wiring.
"""

from pathlib import Path
from typing import Callable, Optional

import pytest

from cloudjobs.orchestrator.entities import Job, JobStatus
from cloudjobs.orchestrator.job_store import JobStore
from cloudjobs.orchestrator.lifecycle import JobLifecycle
from cloudjobs.orchestrator.queue import Queue
from cloudjobs.orchestrator.retry_policy import RetryPolicy


@pytest.fixture
def job_store(tmp_path: Path) -> JobStore:
    """Create a job store with a temporary database."""
    return JobStore(tmp_path / "jobs.sqlite")


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=2.0, multiplier=2.0, max_delay=60.0)


@pytest.fixture
def queue(tmp_path: Path, retry_policy: RetryPolicy, mock_clock) -> Queue:
    """Create a queue driven by the mock clock (60s leases)."""
    return Queue(
        tmp_path / "queue.sqlite",
        retry_policy=retry_policy,
        visibility_timeout=60.0,
        clock=mock_clock.now,
    )


@pytest.fixture
def lifecycle(job_store: JobStore) -> JobLifecycle:
    return JobLifecycle(job_store)


@pytest.fixture
def create_job(job_store: JobStore) -> Callable:
    """
    Factory fixture for creating stored jobs.

    Usage:
        job = create_job()
        job = create_job(job_type="task.execute", payload={"prompt": "hi"})
    """

    def _create_job(
        job_type: str = "task.execute",
        payload: Optional[dict] = None,
    ) -> Job:
        job = Job.create(job_type, payload if payload is not None else {"prompt": "Say hello"})
        return job_store.create_job(job)

    return _create_job


@pytest.fixture
def enqueued_job(create_job, queue: Queue) -> Callable:
    """Factory fixture creating a stored job with its queue entry."""

    def _enqueued_job(job_type: str = "task.execute", payload: Optional[dict] = None) -> Job:
        job = create_job(job_type=job_type, payload=payload)
        queue.enqueue(job.type, job.job_id, job.payload)
        return job

    return _enqueued_job


@pytest.fixture
def processing_job(create_job, lifecycle: JobLifecycle) -> Callable:
    """Factory fixture for a job already moved to PROCESSING."""

    def _processing_job(**kwargs) -> Job:
        job = create_job(**kwargs)
        started = lifecycle.start(job.job_id)
        assert started.status == JobStatus.PROCESSING
        return started

    return _processing_job
