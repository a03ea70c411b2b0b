"""
Worker process supervision.

The controller never touches subprocess directly; it goes through a
ProcessSupervisor so tests can substitute a fake that records spawns
and fires exit callbacks on demand.
"""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


ExitCallback = Callable[[int], None]


@dataclass
class ProcessHandle:
    """A spawned child process."""

    pid: int
    command: list[str]
    log_path: Optional[str] = None


class ProcessSupervisor(Protocol):
    """Protocol for starting detached worker processes."""

    def spawn(
        self,
        command: list[str],
        env: Optional[dict[str, str]],
        log_path: Path,
        on_exit: ExitCallback,
    ) -> ProcessHandle:
        """
        Start a detached child process.

        Args:
            command: argv of the child
            env: Environment for the child (None inherits ours)
            log_path: File that receives appended stdout and stderr
            on_exit: Called exactly once with the exit code (-1 if unknown)

        Returns:
            Handle of the started process

        Raises:
            OSError: If the process could not be started
        """
        ...


class SubprocessSupervisor:
    """
    Spawns workers with subprocess.Popen in their own session.

    Output of every worker is appended to the same log file so it
    survives after the worker exits. A daemon watcher thread per child
    waits for the exit code and reports it.
    """

    def __init__(self, cwd: Optional[Path] = None):
        self.cwd = cwd

    def spawn(
        self,
        command: list[str],
        env: Optional[dict[str, str]],
        log_path: Path,
        on_exit: ExitCallback,
    ) -> ProcessHandle:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        log_file = open(log_path, "a")
        try:
            process = subprocess.Popen(
                command,
                cwd=self.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except Exception:
            log_file.close()
            raise

        watcher = threading.Thread(
            target=self._watch,
            args=(process, log_file, on_exit),
            name=f"worker-watch-{process.pid}",
            daemon=True,
        )
        watcher.start()

        return ProcessHandle(pid=process.pid, command=list(command), log_path=str(log_path))

    @staticmethod
    def _watch(process: subprocess.Popen, log_file, on_exit: ExitCallback) -> None:
        exit_code = -1
        try:
            exit_code = process.wait()
        except Exception as e:
            logger.error(f"[Supervisor] Error waiting for pid {process.pid}: {e}")
        finally:
            log_file.close()
            try:
                on_exit(exit_code)
            except Exception as e:
                logger.error(f"[Supervisor] Exit callback failed for pid {process.pid}: {e}")


def child_environment(extra: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Environment for a worker: ours plus `extra`."""
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env
