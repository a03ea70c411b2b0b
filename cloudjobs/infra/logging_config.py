"""
Logging configuration module.

One log file per process kind and calendar day:
    <log_dir>/<prefix>_YYYYMMDD_<START_HHMMSS>.log

The API server, the controller and every worker call setup_logging()
once with their own prefix, so worker output never interleaves with
controller output.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "cloudjobs"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [pid %(process)d] %(message)s"

# Shared by every handler of this process; only the date part of the name changes
_PROCESS_STARTED = datetime.now().strftime("%H%M%S")


def _today() -> str:
    return datetime.now().strftime("%Y%m%d")


class DailyRotatingFileHandler(logging.FileHandler):
    """
    File handler that switches to a new file when the date changes.

    The file name keeps the process start time, so a restarted process
    never appends to the previous run's file.
    """

    def __init__(self, log_dir: str | Path = "logs", prefix: str = "cloudjobs", encoding: str = "utf-8"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self._day = _today()
        super().__init__(self._path_for(self._day), mode="a", encoding=encoding)

    def _path_for(self, day: str) -> str:
        return str(self.log_dir / f"{self.prefix}_{day}_{_PROCESS_STARTED}.log")

    def emit(self, record: logging.LogRecord) -> None:
        day = _today()
        if day != self._day:
            self.close()
            self._day = day
            self.baseFilename = self._path_for(day)
            self.stream = self._open()
        super().emit(record)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str | Path] = "logs",
    prefix: str = "cloudjobs",
) -> logging.Logger:
    """
    Configure the `cloudjobs` logger and return it.

    Module loggers (`logging.getLogger(__name__)` inside the package)
    propagate into this logger, so one call per process is enough.
    Calling it again replaces the previous handlers.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
        log_dir: Directory for daily log files, None for console only
        prefix: Log file name prefix ("api", "controller", "worker")
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        handlers.append(DailyRotatingFileHandler(log_dir=log_dir, prefix=prefix))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_dir is not None:
        logger.info(f"[Logging] Level {logging.getLevelName(level)}, file {handlers[-1].baseFilename}")

    return logger
