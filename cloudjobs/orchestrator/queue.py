"""
Durable work queue.

At-least-once delivery with:
- Dedup keys: one entry per (job_type, job_id), repeated enqueues coalesce
- Leases: acquire() hands out an entry for `visibility_timeout` seconds
- Retries: fail() reschedules with exponential backoff (RetryPolicy)
- Dead-letter: entries that exhaust max_attempts stop being delivered

Entry states:
    WAITING --acquire--> ACTIVE --complete--> (deleted)
                           |
                           +--fail / lease expiry--> WAITING (available_at = now + backoff)
                           +--fail / lease expiry, attempts exhausted--> DEAD

Every state change is a conditional UPDATE checked via rowcount, so two
workers can never hold the same entry and a worker whose lease expired
cannot acknowledge an entry that was handed to someone else.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, Optional

from .entities import (
    QueueCounts,
    QueueEntry,
    QueueEntryState,
    dedup_key_for,
    to_iso,
    utcnow,
)
from .errors import LeaseLostError, TransientInfrastructureError
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 4200.0

# Attempts to win a contested claim before reporting the queue as empty
MAX_CLAIM_ATTEMPTS = 5


class Queue:
    """
    SQLite-backed deduplicated work queue.

    Each call opens its own connection; instances are safe to share
    between threads and several processes may use the same file.
    """

    def __init__(
        self,
        db_path: str | Path,
        retry_policy: Optional[RetryPolicy] = None,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize queue.

        Args:
            db_path: Path to SQLite database file
            retry_policy: Attempt ceiling and backoff (defaults: 3 attempts, 2s base)
            visibility_timeout: Lease duration in seconds
            clock: Callable returning naive UTC datetimes (for testing)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.retry_policy = retry_policy or RetryPolicy()
        self.visibility_timeout = visibility_timeout
        self._clock = clock or utcnow
        self.timeout = timeout
        self._closed = threading.Event()
        self._init_db()

    # =========================================================================
    # Connection handling
    # =========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        if self._closed.is_set():
            raise TransientInfrastructureError("Queue is closed")
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.OperationalError as e:
            raise TransientInfrastructureError(f"Queue unavailable: {e}") from e
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.OperationalError as e:
            raise TransientInfrastructureError(f"Queue error: {e}") from e
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
            raise TransientInfrastructureError(f"Queue error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS queue_entries (
                    dedup_key TEXT PRIMARY KEY,
                    job_type TEXT NOT NULL,
                    job_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    state TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    enqueued_at TEXT NOT NULL,
                    available_at TEXT NOT NULL,
                    lease_token TEXT,
                    lease_expires_at TEXT,
                    last_error TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_queue_delivery_order
                ON queue_entries (state, available_at, enqueued_at)
            """)

    def _now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Producer side
    # =========================================================================

    def enqueue(self, job_type: str, job_id: str, payload: dict) -> QueueEntry:
        """
        Add a job to the queue.

        A second enqueue for the same (job_type, job_id) returns the
        existing entry unchanged, whatever its state.

        Returns:
            The queue entry for this job
        """
        dedup_key = dedup_key_for(job_type, job_id)
        now = to_iso(self._now())

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO queue_entries
                (dedup_key, job_type, job_id, payload, state, attempts,
                 enqueued_at, available_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    dedup_key,
                    job_type,
                    job_id,
                    json.dumps(payload),
                    QueueEntryState.WAITING.value,
                    now,
                    now,
                ),
            )
            inserted = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM queue_entries WHERE dedup_key = ?",
                (dedup_key,),
            ).fetchone()

        if inserted:
            logger.info(f"[Queue] Enqueued {dedup_key}")
        else:
            logger.info(f"[Queue] Coalesced duplicate enqueue for {dedup_key} (state={row['state']})")
        return self._row_to_entry(row)

    # =========================================================================
    # Consumer side
    # =========================================================================

    def acquire(self, lease_token: str) -> Optional[QueueEntry]:
        """
        Lease the oldest deliverable entry.

        Increments the entry's attempt counter and sets
        lease_expires_at = now + visibility_timeout.

        Args:
            lease_token: Token identifying the caller; required to
                acknowledge the entry later

        Returns:
            Leased QueueEntry, or None if nothing is deliverable
        """
        for _ in range(MAX_CLAIM_ATTEMPTS):
            now = self._now()
            now_str = to_iso(now)
            expires_str = to_iso(now + timedelta(seconds=self.visibility_timeout))

            with self._transaction() as conn:
                candidate = conn.execute(
                    """
                    SELECT dedup_key, attempts FROM queue_entries
                    WHERE state = ? AND available_at <= ?
                    ORDER BY enqueued_at ASC
                    LIMIT 1
                    """,
                    (QueueEntryState.WAITING.value, now_str),
                ).fetchone()

                if candidate is None:
                    return None

                # Claim only if nobody else moved the entry since the SELECT
                cursor = conn.execute(
                    """
                    UPDATE queue_entries
                    SET state = ?, attempts = attempts + 1,
                        lease_token = ?, lease_expires_at = ?
                    WHERE dedup_key = ? AND state = ? AND attempts = ?
                    """,
                    (
                        QueueEntryState.ACTIVE.value,
                        lease_token,
                        expires_str,
                        candidate["dedup_key"],
                        QueueEntryState.WAITING.value,
                        candidate["attempts"],
                    ),
                )
                if cursor.rowcount == 0:
                    continue

                row = conn.execute(
                    "SELECT * FROM queue_entries WHERE dedup_key = ?",
                    (candidate["dedup_key"],),
                ).fetchone()

            entry = self._row_to_entry(row)
            logger.info(
                f"[Queue] Leased {entry.dedup_key} "
                f"(attempt {entry.attempts}/{self.retry_policy.max_attempts})"
            )
            return entry

        logger.warning("[Queue] Could not win a contested claim, reporting empty")
        return None

    def complete(self, entry: QueueEntry, lease_token: str) -> None:
        """
        Acknowledge successful processing; the entry is removed.

        Raises:
            LeaseLostError: If the caller no longer holds the lease
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM queue_entries
                WHERE dedup_key = ? AND state = ? AND lease_token = ?
                """,
                (entry.dedup_key, QueueEntryState.ACTIVE.value, lease_token),
            )
            if cursor.rowcount == 0:
                raise LeaseLostError(entry.dedup_key, lease_token)

        logger.info(f"[Queue] Completed {entry.dedup_key}")

    def fail(self, entry: QueueEntry, lease_token: str, error: str) -> QueueEntry:
        """
        Report a failed delivery.

        The entry is rescheduled with backoff, or moved to DEAD once its
        attempts reach the retry policy's ceiling.

        Returns:
            Updated entry (check `is_dead`)

        Raises:
            LeaseLostError: If the caller no longer holds the lease
        """
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM queue_entries
                WHERE dedup_key = ? AND state = ? AND lease_token = ?
                """,
                (entry.dedup_key, QueueEntryState.ACTIVE.value, lease_token),
            ).fetchone()
            if row is None:
                raise LeaseLostError(entry.dedup_key, lease_token)

            updated = self._release(conn, row, error)
            if updated is None:
                raise LeaseLostError(entry.dedup_key, lease_token)

        if updated.is_dead:
            logger.warning(
                f"[Queue] Dead-lettered {updated.dedup_key} after "
                f"{updated.attempts} attempt(s): {error}"
            )
        else:
            logger.info(
                f"[Queue] Retry scheduled for {updated.dedup_key} at {updated.available_at} "
                f"(attempt {updated.attempts}/{self.retry_policy.max_attempts})"
            )
        return updated

    def reclaim_expired(self) -> list[QueueEntry]:
        """
        Release entries whose lease expired without acknowledgment.

        Expired entries go back to WAITING with backoff, or to DEAD when
        their attempts are exhausted.

        Returns:
            Entries that were dead-lettered by this call
        """
        now_str = to_iso(self._now())
        dead: list[QueueEntry] = []

        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM queue_entries
                WHERE state = ? AND lease_expires_at < ?
                ORDER BY lease_expires_at ASC
                """,
                (QueueEntryState.ACTIVE.value, now_str),
            ).fetchall()

            for row in rows:
                updated = self._release(conn, row, "Lease expired before acknowledgment")
                if updated is None:
                    continue
                if updated.is_dead:
                    dead.append(updated)
                    logger.warning(
                        f"[Queue] Lease expired on {updated.dedup_key}, dead-lettered "
                        f"after {updated.attempts} attempt(s)"
                    )
                else:
                    logger.info(
                        f"[Queue] Lease expired on {updated.dedup_key}, "
                        f"redelivery at {updated.available_at}"
                    )
        return dead

    def _release(
        self,
        conn: sqlite3.Connection,
        row: sqlite3.Row,
        error: str,
    ) -> Optional[QueueEntry]:
        """
        Move a leased row back to WAITING or to DEAD.

        Returns:
            Updated entry, or None if the lease changed underneath
        """
        attempts = row["attempts"]
        if self.retry_policy.is_exhausted(attempts):
            new_state = QueueEntryState.DEAD
            available_at = row["available_at"]
        else:
            new_state = QueueEntryState.WAITING
            delay = self.retry_policy.delay_for(attempts)
            available_at = to_iso(self._now() + timedelta(seconds=delay))

        cursor = conn.execute(
            """
            UPDATE queue_entries
            SET state = ?, available_at = ?, lease_token = NULL,
                lease_expires_at = NULL, last_error = ?
            WHERE dedup_key = ? AND state = ? AND lease_token = ?
            """,
            (
                new_state.value,
                available_at,
                error,
                row["dedup_key"],
                QueueEntryState.ACTIVE.value,
                row["lease_token"],
            ),
        )
        if cursor.rowcount == 0:
            return None

        updated = conn.execute(
            "SELECT * FROM queue_entries WHERE dedup_key = ?",
            (row["dedup_key"],),
        ).fetchone()
        return self._row_to_entry(updated)

    # =========================================================================
    # Inspection
    # =========================================================================

    def counts(self) -> QueueCounts:
        """Snapshot of waiting, active, delayed and dead entries."""
        now_str = to_iso(self._now())
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT
                    SUM(CASE WHEN state = :waiting AND available_at <= :now THEN 1 ELSE 0 END) AS waiting,
                    SUM(CASE WHEN state = :active THEN 1 ELSE 0 END) AS active,
                    SUM(CASE WHEN state = :waiting AND available_at > :now THEN 1 ELSE 0 END) AS delayed,
                    SUM(CASE WHEN state = :dead THEN 1 ELSE 0 END) AS dead
                FROM queue_entries
                """,
                {
                    "waiting": QueueEntryState.WAITING.value,
                    "active": QueueEntryState.ACTIVE.value,
                    "dead": QueueEntryState.DEAD.value,
                    "now": now_str,
                },
            ).fetchone()

        return QueueCounts(
            waiting=row["waiting"] or 0,
            active=row["active"] or 0,
            delayed=row["delayed"] or 0,
            dead=row["dead"] or 0,
        )

    def get(self, dedup_key: str) -> Optional[QueueEntry]:
        """Get an entry by dedup key."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM queue_entries WHERE dedup_key = ?",
                (dedup_key,),
            ).fetchone()
            return self._row_to_entry(row) if row else None

    def list_dead(self, limit: int = 100) -> list[QueueEntry]:
        """List dead-lettered entries, oldest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM queue_entries
                WHERE state = ?
                ORDER BY enqueued_at ASC
                LIMIT ?
                """,
                (QueueEntryState.DEAD.value, limit),
            ).fetchall()
            return [self._row_to_entry(row) for row in rows]

    def ping(self) -> bool:
        """Return True if the backing store answers a trivial query."""
        try:
            with self._connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except TransientInfrastructureError as e:
            logger.warning(f"[Queue] Health check failed: {e}")
            return False

    def close(self) -> None:
        """Refuse further operations on this instance."""
        if not self._closed.is_set():
            self._closed.set()
            logger.debug("[Queue] Closed")

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _row_to_entry(self, row: sqlite3.Row) -> QueueEntry:
        """Convert a database row to a QueueEntry."""
        return QueueEntry(
            dedup_key=row["dedup_key"],
            job_type=row["job_type"],
            job_id=row["job_id"],
            payload=json.loads(row["payload"]),
            enqueued_at=row["enqueued_at"],
            attempts=row["attempts"],
            state=QueueEntryState(row["state"]),
            available_at=row["available_at"],
            lease_token=row["lease_token"],
            lease_expires_at=row["lease_expires_at"],
            last_error=row["last_error"],
        )
