"""
Job Store.

SQLite-backed durable record of jobs:
- WAL mode so the API server, controller and workers can share one file
- Conditional status updates (UPDATE ... WHERE status = ?) for the lifecycle
- Lookup helpers for webhook correlation and start-up recovery

The store does NOT decide which transitions are legal; that belongs to
JobLifecycle.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from .entities import Job, JobStatus
from .errors import JobNotFoundError, TransientInfrastructureError

logger = logging.getLogger(__name__)


class JobStore:
    """
    Durable job persistence.

    Every call opens its own connection, so one instance is safe to share
    between threads.
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0):
        """
        Initialize job store.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.OperationalError as e:
            raise TransientInfrastructureError(f"Job store unavailable: {e}") from e
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.OperationalError as e:
            raise TransientInfrastructureError(f"Job store error: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise TransientInfrastructureError(f"Job store error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    result TEXT,
                    error TEXT,
                    correlation_token TEXT,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_created
                ON jobs (status, created_at)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_type_created
                ON jobs (type, created_at)
            """)

    # =========================================================================
    # Job CRUD
    # =========================================================================

    def create_job(self, job: Job) -> Job:
        """Insert a new job."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO jobs
                (job_id, type, status, payload, result, error, correlation_token,
                 created_at, started_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.job_id,
                    job.type,
                    job.status.value,
                    json.dumps(job.payload),
                    json.dumps(job.result) if job.result is not None else None,
                    job.error,
                    job.correlation_token,
                    job.created_at,
                    job.started_at,
                    job.completed_at,
                ),
            )
        logger.debug(f"[JobStore] Created job {job.job_id} ({job.type})")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            return self._row_to_job(row) if row else None

    def require_job(self, job_id: str) -> Job:
        """Get a job by ID, raising JobNotFoundError if missing."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        """List jobs newest first, optionally filtered by status and type."""
        clauses = []
        values: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            values.append(JobStatus(status).value)
        if job_type is not None:
            clauses.append("type = ?")
            values.append(job_type)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        values.append(limit)

        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM jobs {where} ORDER BY created_at DESC LIMIT ?",
                values,
            ).fetchall()
            return [self._row_to_job(row) for row in rows]

    def update_status(
        self,
        job_id: str,
        expected_status: JobStatus,
        new_status: JobStatus,
        started_at: Optional[str] = None,
        completed_at: Optional[str] = None,
        result: Optional[Any] = None,
        error: Optional[str] = None,
        correlation_token: Optional[str] = None,
        reset_outcome: bool = False,
    ) -> Optional[Job]:
        """
        Conditionally move a job from expected_status to new_status.

        started_at and correlation_token are only written when still
        NULL, as is completed_at unless reset_outcome clears it.
        result and error are written as given.

        Args:
            reset_outcome: Clear completed_at, result and error (a failed
                attempt re-entering processing)

        Returns:
            Updated Job, or None if the row was not in expected_status
            (caller decides how to report the conflict)
        """
        if reset_outcome:
            outcome_sql = "completed_at = NULL, result = NULL, error = NULL"
            outcome_params: tuple = ()
        else:
            outcome_sql = (
                "completed_at = COALESCE(completed_at, ?), "
                "result = COALESCE(?, result), "
                "error = COALESCE(?, error)"
            )
            outcome_params = (
                completed_at,
                json.dumps(result) if result is not None else None,
                error,
            )

        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE jobs
                SET status = ?,
                    started_at = COALESCE(started_at, ?),
                    correlation_token = COALESCE(correlation_token, ?),
                    {outcome_sql}
                WHERE job_id = ? AND status = ?
                """,
                (
                    new_status.value,
                    started_at,
                    correlation_token,
                    *outcome_params,
                    job_id,
                    expected_status.value,
                ),
            )
            if cursor.rowcount == 0:
                return None

            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            return self._row_to_job(row)

    # =========================================================================
    # Queries
    # =========================================================================

    def find_latest_issue_job(
        self,
        job_type: str,
        repo: str,
        issue_number: int,
        with_correlation_token: bool = True,
    ) -> Optional[Job]:
        """
        Find the most recent job of `job_type` for a repository issue.

        Matches on payload.repo and payload.issue. With
        with_correlation_token, only jobs that carry a token qualify.
        """
        token_clause = "AND correlation_token IS NOT NULL" if with_correlation_token else ""
        with self._connection() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM jobs
                WHERE type = ?
                  AND json_extract(payload, '$.repo') = ?
                  AND json_extract(payload, '$.issue') = ?
                  {token_clause}
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (job_type, repo, issue_number),
            ).fetchone()
            return self._row_to_job(row) if row else None

    def list_pending_jobs(self, limit: int = 1000) -> list[Job]:
        """List pending jobs oldest first (used by start-up recovery)."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs
                WHERE status = ?
                ORDER BY created_at ASC
                LIMIT ?
                """,
                (JobStatus.PENDING.value, limit),
            ).fetchall()
            return [self._row_to_job(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        """Count jobs per status."""
        counts = {status.value: 0 for status in JobStatus}
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM jobs GROUP BY status"
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except TransientInfrastructureError as e:
            logger.warning(f"[JobStore] Health check failed: {e}")
            return False

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job entity."""
        return Job(
            job_id=row["job_id"],
            type=row["type"],
            status=JobStatus(row["status"]),
            payload=json.loads(row["payload"]),
            result=json.loads(row["result"]) if row["result"] is not None else None,
            error=row["error"],
            correlation_token=row["correlation_token"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )
