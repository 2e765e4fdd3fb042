"""SQLite implementation of the checkpoint store."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from ..config import StoreConfig
from ..errors import CheckpointNotFound, StoreUnavailable
from ..utils.retry import compute_backoff
from .models import ClaimResult, RunSummary, StepRecord, StepStatus
from .store import CheckpointStore, sort_steps

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BUSY_MARKERS = ("database is locked", "database table is locked", "busy")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _BUSY_MARKERS)


class SQLiteCheckpointStore(CheckpointStore):
    """Persist step checkpoints using SQLite.

    Each worker thread gets its own connection so that transactions opened by
    concurrent steps never interleave on a shared handle. Claims and commits
    run inside ``BEGIN IMMEDIATE`` transactions, which take the write lock up
    front; the ``(run_id, step_key)`` primary key does the rest.
    """

    def __init__(self, db_path: str | Path, config: StoreConfig | None = None):
        if str(db_path) == ":memory:":
            raise ValueError(
                "SQLite ':memory:' databases are per-connection; "
                "use InMemoryCheckpointStore instead"
            )
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._config = config or StoreConfig()
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._with_retry(self._ensure_schema)

    # ------------------------------------------------------------------
    # Connection management
    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=self._config.busy_timeout_ms / 1000,
                    isolation_level=None,
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row
                conn.execute(f"PRAGMA journal_mode={self._config.journal_mode};")
                conn.execute(f"PRAGMA busy_timeout={int(self._config.busy_timeout_ms)};")
                conn.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"Cannot open {self.db_path}: {exc}") from exc
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            try:
                conn.execute("COMMIT")
            except BaseException:
                # A busy COMMIT leaves the transaction open and the write lock held.
                if conn.in_transaction:
                    conn.rollback()
                raise

    def _with_retry(self, func: Callable[..., T], *args: Any) -> T:
        """Run ``func`` retrying on lock contention, mapping other failures."""
        attempts = max(1, self._config.max_retries)
        for attempt in range(attempts):
            try:
                return func(*args)
            except sqlite3.OperationalError as exc:
                if not _is_busy(exc) or attempt == attempts - 1:
                    raise StoreUnavailable(f"SQLite operation failed: {exc}") from exc
                delay = compute_backoff(
                    attempt, initial=self._config.retry_initial_delay
                )
                logger.debug(
                    f"SQLite busy on attempt {attempt + 1}/{attempts}, retrying in {delay:.3f}s"
                )
                time.sleep(delay)
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"SQLite operation failed: {exc}") from exc
        raise StoreUnavailable("SQLite operation failed")  # pragma: no cover

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._with_retry, func, *args)

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS step_checkpoints (
                    run_id TEXT NOT NULL,
                    step_key TEXT NOT NULL,
                    status TEXT NOT NULL CHECK (status IN ('PENDING', 'COMPLETED')),
                    output TEXT,
                    created_at TEXT,
                    completed_at TEXT,
                    PRIMARY KEY (run_id, step_key)
                )
                """
            )

    # ------------------------------------------------------------------
    # Synchronous helpers, executed in worker threads
    def _try_claim_sync(self, run_id: str, step_key: str) -> ClaimResult:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO step_checkpoints (run_id, step_key, status, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (run_id, step_key) DO NOTHING
                """,
                (run_id, step_key, StepStatus.PENDING.value, _utc_now_iso()),
            )
            if cur.rowcount == 1:
                return ClaimResult.claimed()
            row = conn.execute(
                "SELECT status, output FROM step_checkpoints WHERE run_id = ? AND step_key = ?",
                (run_id, step_key),
            ).fetchone()
        if row["status"] == StepStatus.COMPLETED.value:
            return ClaimResult.completed(row["output"])
        return ClaimResult.pending()

    def _commit_sync(self, run_id: str, step_key: str, output: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE step_checkpoints
                SET status = ?, output = ?, completed_at = ?
                WHERE run_id = ? AND step_key = ? AND status = ?
                """,
                (
                    StepStatus.COMPLETED.value,
                    output,
                    _utc_now_iso(),
                    run_id,
                    step_key,
                    StepStatus.PENDING.value,
                ),
            )
            if cur.rowcount == 1:
                return True
            row = conn.execute(
                "SELECT status FROM step_checkpoints WHERE run_id = ? AND step_key = ?",
                (run_id, step_key),
            ).fetchone()
        if row is None:
            raise CheckpointNotFound(run_id, step_key)
        return False

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        return self._connection().execute(query, params).fetchall()

    def _purge_sync(self, run_id: str) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM step_checkpoints WHERE run_id = ?", (run_id,)
            )
            return cur.rowcount

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> StepRecord:
        return StepRecord(
            run_id=row["run_id"],
            step_key=row["step_key"],
            status=StepStatus(row["status"]),
            output=row["output"],
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
        )

    # ------------------------------------------------------------------
    # Store API
    async def try_claim(self, run_id: str, step_key: str) -> ClaimResult:
        return await self._run(self._try_claim_sync, run_id, step_key)

    async def commit(self, run_id: str, step_key: str, output: str) -> bool:
        return await self._run(self._commit_sync, run_id, step_key, output)

    async def get_step(self, run_id: str, step_key: str) -> StepRecord | None:
        rows = await self._run(
            self._fetchall,
            "SELECT run_id, step_key, status, output, created_at, completed_at "
            "FROM step_checkpoints WHERE run_id = ? AND step_key = ?",
            run_id,
            step_key,
        )
        return self._row_to_record(rows[0]) if rows else None

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        rows = await self._run(
            self._fetchall,
            "SELECT run_id, step_key, status, output, created_at, completed_at "
            "FROM step_checkpoints WHERE run_id = ?",
            run_id,
        )
        return sort_steps([self._row_to_record(r) for r in rows])

    async def list_runs(self) -> list[RunSummary]:
        rows = await self._run(
            self._fetchall,
            """
            SELECT run_id,
                   SUM(CASE WHEN status = 'COMPLETED' THEN 1 ELSE 0 END) AS completed,
                   SUM(CASE WHEN status = 'PENDING' THEN 1 ELSE 0 END) AS pending
            FROM step_checkpoints
            GROUP BY run_id
            ORDER BY run_id
            """,
        )
        return [
            RunSummary(run_id=r["run_id"], completed=r["completed"], pending=r["pending"])
            for r in rows
        ]

    async def purge_run(self, run_id: str) -> int:
        return await self._run(self._purge_sync, run_id)

    async def close(self) -> None:
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()
