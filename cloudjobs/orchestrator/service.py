"""
Job Orchestrator - wiring and submission entry point.

Coordinates:
- JobStore (durable job records)
- Queue (deduplicated work queue)
- JobLifecycle (status transitions, notification subscriber)
- WorkerController (spawns single-job workers)
- RecoveryManager (start-up recovery, dead-letter resolution)

Usage:
    orchestrator = JobOrchestrator.create(settings)
    job = orchestrator.submit("task.execute", {"prompt": "..."})
    orchestrator.start()      # controller polls in background
    orchestrator.stop()
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from ..infra.config import Settings
from ..notifications import NotificationBridge, Notifier, build_notifier
from ..tasks.kinds import get_kind
from ..tasks.runner import TaskRunner, build_task_runner
from .controller import WorkerController
from .entities import Job, QueueEntry
from .job_store import JobStore
from .lifecycle import JobLifecycle
from .process import ProcessSupervisor, SubprocessSupervisor, child_environment
from .queue import Queue
from .recovery import RecoveryManager
from .retry_policy import RetryPolicy
from .worker import Worker

logger = logging.getLogger(__name__)


class JobOrchestrator:
    """
    Main service that coordinates all orchestration components.

    Each process (API server, controller, worker) builds its own
    instance; they share state only through the two SQLite files.
    """

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        queue: Queue,
        lifecycle: JobLifecycle,
        bridge: NotificationBridge,
        controller: WorkerController,
        recovery_manager: RecoveryManager,
        runner: Optional[TaskRunner] = None,
    ):
        """
        Initialize JobOrchestrator with all components.

        Use JobOrchestrator.create() for convenient construction.
        """
        self.settings = settings
        self.store = store
        self.queue = queue
        self.lifecycle = lifecycle
        self.bridge = bridge
        self.controller = controller
        self.recovery_manager = recovery_manager
        self._runner = runner
        self._started = False

    @classmethod
    def create(
        cls,
        settings: Settings,
        supervisor: Optional[ProcessSupervisor] = None,
        notifier: Optional[Notifier] = None,
        runner: Optional[TaskRunner] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "JobOrchestrator":
        """
        Create a JobOrchestrator with all components wired together.

        Args:
            settings: Runtime settings
            supervisor: Process supervisor (default: SubprocessSupervisor)
            notifier: Notifier (default: Slack if configured, else none)
            runner: Task runner (default: built from settings on first use)
            clock: Queue clock (for testing)

        Returns:
            Configured JobOrchestrator
        """
        store = JobStore(settings.jobs_db_path)

        retry_policy = RetryPolicy(
            max_attempts=settings.max_attempts,
            base_delay=settings.backoff_base,
            multiplier=settings.backoff_multiplier,
            max_delay=settings.backoff_max,
        )
        queue = Queue(
            settings.queue_db_path,
            retry_policy=retry_policy,
            visibility_timeout=settings.visibility_timeout,
            clock=clock,
        )

        lifecycle = JobLifecycle(store)
        bridge = NotificationBridge(notifier or build_notifier(settings))
        lifecycle.subscribe(bridge.on_transition)

        recovery_manager = RecoveryManager(store, queue, lifecycle)

        controller = WorkerController(
            queue=queue,
            supervisor=supervisor or SubprocessSupervisor(),
            worker_command=settings.worker_command,
            worker_log_path=settings.worker_log_path,
            poll_interval=settings.poll_interval,
            # Worker output goes straight to the shared log file
            worker_env=child_environment({"PYTHONUNBUFFERED": "1"}),
        )

        def on_dead_letter(entry: QueueEntry) -> None:
            recovery_manager.resolve_dead_letter(entry)

        controller.set_on_dead_letter(on_dead_letter)

        return cls(
            settings=settings,
            store=store,
            queue=queue,
            lifecycle=lifecycle,
            bridge=bridge,
            controller=controller,
            recovery_manager=recovery_manager,
            runner=runner,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, run_recovery: bool = True, blocking: bool = False) -> dict:
        """
        Start the worker controller.

        Args:
            run_recovery: Whether to run recovery first
            blocking: Whether to block on the poll loop

        Returns:
            Recovery statistics if recovery was run
        """
        if self._started:
            raise RuntimeError("Orchestrator already started")

        logger.info("Starting job orchestrator...")

        recovery_stats = {}
        if run_recovery:
            recovery_stats = self.recover()

        self._started = True
        self.controller.start(blocking=blocking)

        logger.info("Job orchestrator started")
        return recovery_stats

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the worker controller. Running workers finish their job."""
        if not self._started:
            return

        logger.info("Stopping job orchestrator...")
        self.controller.stop(timeout=timeout)
        self._started = False
        logger.info("Job orchestrator stopped")

    @property
    def is_running(self) -> bool:
        return self._started and self.controller.is_running

    def recover(self) -> dict:
        """Run start-up recovery."""
        return self.recovery_manager.recover_on_startup()

    # =========================================================================
    # Job operations
    # =========================================================================

    def submit(self, job_type: str, payload: dict) -> Job:
        """
        Create a job and put it on the queue.

        Raises:
            UnknownKindError: If the job kind is not supported
            ValidationError: If the payload violates the kind's schema
            TransientInfrastructureError: If a store is unreachable
        """
        normalized = get_kind(job_type).normalize(payload)

        job = self.store.create_job(Job.create(job_type, normalized))
        # A crash here leaves a pending job without entry; recovery re-enqueues it
        entry = self.queue.enqueue(job.type, job.job_id, job.payload)

        logger.info(f"[Orchestrator] Submitted job {job.job_id} ({job.type}) as {entry.dedup_key}")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.store.get_job(job_id)

    def queue_status(self) -> dict:
        """Queue counts plus job counts per status."""
        return {
            "queue": self.queue.counts().to_dict(),
            "jobs": self.store.count_by_status(),
            "active_workers": len(self.controller.active_workers),
        }

    def health(self) -> dict[str, bool]:
        """Reachability of the job store and the queue's backing store."""
        return {
            "database": self.store.ping(),
            "queue": self.queue.ping(),
        }

    # =========================================================================
    # Workers
    # =========================================================================

    @property
    def runner(self) -> TaskRunner:
        """
        Task runner, built from settings on first use.

        Raises:
            ConfigurationError: If the runner settings are incomplete
        """
        if self._runner is None:
            self._runner = build_task_runner(self.settings)
        return self._runner

    def build_worker(self, lease_token: Optional[str] = None) -> Worker:
        """Worker bound to this orchestrator's stores; the runner is built after a lease."""
        return Worker(
            queue=self.queue,
            store=self.store,
            lifecycle=self.lifecycle,
            runner_factory=lambda: self.runner,
            bridge=self.bridge,
            lease_token=lease_token,
        )
