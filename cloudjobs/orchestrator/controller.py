"""
Worker Controller.

Polls the queue and keeps at most one single-job worker process alive:

1. Reclaim expired leases (dead-lettered entries go to on_dead_letter)
2. Read queue counts
3. Spawn a worker iff waiting > 0, active == 0 and no tracked worker

Workers drain exactly one job and exit; the next poll spawns the next
one. The controller never kills workers, stop() only ends polling.

Run standalone:
    python -m cloudjobs.orchestrator.controller
"""

import logging
import signal
import threading
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .entities import QueueEntry, WorkerHandle
from .errors import ConfigurationError
from .process import ProcessSupervisor
from .queue import Queue

logger = logging.getLogger(__name__)


DEFAULT_POLL_INTERVAL_SECONDS = 5.0


class ControllerState(str, Enum):
    """Controller lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


def generate_worker_id() -> str:
    """worker-<epoch millis>-<random suffix>"""
    return f"worker-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class WorkerController:
    """
    Spawns worker processes when the queue has waiting work.

    active_workers is owned by this instance and mutated only under
    _workers_lock (the poll thread adds, watcher threads remove).
    """

    def __init__(
        self,
        queue: Queue,
        supervisor: ProcessSupervisor,
        worker_command: list[str],
        worker_log_path: Path,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        worker_env: Optional[dict[str, str]] = None,
        on_dead_letter: Optional[Callable[[QueueEntry], None]] = None,
    ):
        """
        Initialize WorkerController.

        Args:
            queue: Queue to watch
            supervisor: Starts detached worker processes
            worker_command: argv for one worker
            worker_log_path: File receiving appended worker output
            poll_interval: Seconds between poll cycles
            worker_env: Environment for workers (None inherits ours)
            on_dead_letter: Called for each entry dead-lettered by lease expiry
        """
        self.queue = queue
        self.supervisor = supervisor
        self.worker_command = list(worker_command)
        self.worker_log_path = Path(worker_log_path)
        self.poll_interval = poll_interval
        self.worker_env = worker_env
        self._on_dead_letter = on_dead_letter

        self._state = ControllerState.STOPPED
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._spawn_lock = threading.Lock()
        self._workers_lock = threading.Lock()
        self._active_workers: dict[str, WorkerHandle] = {}

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ControllerState.RUNNING

    @property
    def active_workers(self) -> dict[str, WorkerHandle]:
        """Snapshot of tracked workers."""
        with self._workers_lock:
            return dict(self._active_workers)

    def set_on_dead_letter(self, callback: Callable[[QueueEntry], None]) -> None:
        """Set callback for entries dead-lettered by lease expiry."""
        self._on_dead_letter = callback

    # =========================================================================
    # Poll cycle
    # =========================================================================

    def run_cycle(self) -> Optional[str]:
        """
        Run one poll cycle.

        Returns:
            ID of the spawned worker, or None
        """
        self.reclaim_expired()
        return self.check_and_spawn()

    def reclaim_expired(self) -> int:
        """Reclaim expired leases and report dead-lettered entries."""
        dead = self.queue.reclaim_expired()
        for entry in dead:
            if self._on_dead_letter is None:
                continue
            try:
                self._on_dead_letter(entry)
            except Exception as e:
                logger.error(f"[Controller] Dead-letter handler failed for {entry.dedup_key}: {e}")
        return len(dead)

    def check_and_spawn(self) -> Optional[str]:
        """
        Spawn one worker if there is waiting work and nothing running.

        Serialized so concurrent calls can never start a second worker
        while one is tracked.

        Returns:
            ID of the spawned worker, or None
        """
        with self._spawn_lock:
            counts = self.queue.counts()
            tracked = len(self.active_workers)

            logger.info(
                f"[Controller] Queue status: {counts.waiting} waiting, {counts.active} active, "
                f"{counts.delayed} delayed, {tracked} spawned workers"
            )

            if counts.waiting > 0 and counts.active == 0 and tracked == 0:
                return self._spawn_worker()
            return None

    def _spawn_worker(self) -> Optional[str]:
        worker_id = generate_worker_id()
        handle = WorkerHandle(worker_id=worker_id)

        # Tentative registration so an exit during spawn finds the handle
        with self._workers_lock:
            self._active_workers[worker_id] = handle

        try:
            logger.info(f"[Controller] Spawning worker {worker_id}: {' '.join(self.worker_command)}")
            process = self.supervisor.spawn(
                self.worker_command,
                self.worker_env,
                self.worker_log_path,
                lambda exit_code: self._on_worker_exit(worker_id, exit_code),
            )
        except Exception as e:
            logger.error(f"[Controller] Failed to spawn worker {worker_id}: {e}")
            with self._workers_lock:
                self._active_workers.pop(worker_id, None)
            return None

        with self._workers_lock:
            if worker_id in self._active_workers:
                handle.process = process
        logger.info(f"[Controller] Worker {worker_id} started (pid={process.pid})")
        return worker_id

    def _on_worker_exit(self, worker_id: str, exit_code: int) -> None:
        with self._workers_lock:
            self._active_workers.pop(worker_id, None)
        if exit_code == 0:
            logger.info(f"[Controller] Worker {worker_id} exited with code 0")
        else:
            logger.warning(f"[Controller] Worker {worker_id} exited with code {exit_code}")

    # =========================================================================
    # Poll loop
    # =========================================================================

    def start(self, blocking: bool = False) -> None:
        """
        Start polling. The first cycle runs immediately.

        Args:
            blocking: If True, run in current thread. If False, run in background.
        """
        if self._state == ControllerState.RUNNING:
            logger.info("[Controller] Already running")
            return
        if self._state != ControllerState.STOPPED:
            raise RuntimeError(f"Cannot start controller in {self._state.value} state")

        self._stop_event.clear()
        self._state = ControllerState.RUNNING
        logger.info(f"[Controller] Started (poll interval {self.poll_interval}s)")

        if blocking:
            self._poll_loop()
        else:
            self._thread = threading.Thread(target=self._poll_loop, name="worker-controller", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop polling and close the queue.

        Running workers are left alone and finish their job.
        """
        if self._state == ControllerState.STOPPED:
            return

        logger.info("[Controller] Stopping...")
        self._state = ControllerState.STOPPING
        self._stop_event.set()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("[Controller] Poll thread did not stop within timeout")
        self._thread = None

        self.queue.close()
        self._state = ControllerState.STOPPED
        logger.info("[Controller] Stopped")

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"[Controller] Error checking queue status: {e}", exc_info=True)
            self._stop_event.wait(self.poll_interval)
        logger.info("[Controller] Poll loop ended")


def main() -> int:
    """Run the controller in the foreground until SIGTERM/SIGINT."""
    from ..infra import get_settings, setup_logging
    from .service import JobOrchestrator

    settings = get_settings()
    settings.ensure_directories()
    setup_logging(settings.log_level, settings.log_dir, prefix="controller")

    orchestrator = JobOrchestrator.create(settings)
    controller = orchestrator.controller

    # Every spawned worker would fail the same way
    try:
        orchestrator.runner
    except ConfigurationError as e:
        logger.error(f"[Controller] Task runner is not configured: {e}")
        return 1

    stats = orchestrator.recover()
    logger.info(f"[Controller] Recovery: {stats}")

    def _shutdown(signum, frame):
        logger.info(f"[Controller] {signal.Signals(signum).name} -> shutting down controller gracefully...")
        controller._stop_event.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        controller.start(blocking=True)
    finally:
        controller.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
