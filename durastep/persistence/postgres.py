"""PostgreSQL implementation of the checkpoint store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

import asyncpg

from ..config import StoreConfig
from ..errors import CheckpointNotFound, StoreUnavailable
from ..utils.retry import schedule_retry
from .models import ClaimResult, RunSummary, StepRecord, StepStatus
from .store import CheckpointStore, sort_steps

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.LockNotAvailableError,
)


class PostgresCheckpointStore(CheckpointStore):
    """Persist step checkpoints using PostgreSQL."""

    def __init__(self, dsn: str, config: StoreConfig | None = None):
        self._dsn = dsn
        self._config = config or StoreConfig()
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            try:
                await self._ensure_schema(conn)
            except BaseException:
                await conn.close()
                raise
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_checkpoints (
                run_id TEXT NOT NULL,
                step_key TEXT NOT NULL,
                status TEXT NOT NULL CHECK (status IN ('PENDING', 'COMPLETED')),
                output TEXT,
                created_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                PRIMARY KEY (run_id, step_key)
            )
            """
        )

    async def _run(self, operation: Callable[[asyncpg.Connection], Awaitable[T]]) -> T:
        """Run ``operation`` on a fresh connection, retrying on contention."""
        attempts = max(1, self._config.max_retries)
        for attempt in range(attempts):
            try:
                conn = await self._connect()
                try:
                    return await operation(conn)
                finally:
                    await conn.close()
            except _RETRYABLE as exc:
                if attempt == attempts - 1:
                    raise StoreUnavailable(f"PostgreSQL operation failed: {exc}") from exc
                logger.debug(
                    f"PostgreSQL contention on attempt {attempt + 1}/{attempts}: {exc}"
                )
                await schedule_retry(attempt, initial=self._config.retry_initial_delay)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
                raise StoreUnavailable(f"PostgreSQL operation failed: {exc}") from exc
        raise StoreUnavailable("PostgreSQL operation failed")  # pragma: no cover

    # ------------------------------------------------------------------
    async def try_claim(self, run_id: str, step_key: str) -> ClaimResult:
        async def _claim(conn: asyncpg.Connection) -> ClaimResult:
            async with conn.transaction():
                inserted = await conn.fetchval(
                    """
                    INSERT INTO step_checkpoints (run_id, step_key, status, created_at)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (run_id, step_key) DO NOTHING
                    RETURNING step_key
                    """,
                    run_id,
                    step_key,
                    StepStatus.PENDING.value,
                    datetime.now(timezone.utc),
                )
                if inserted is not None:
                    return ClaimResult.claimed()
                row = await conn.fetchrow(
                    "SELECT status, output FROM step_checkpoints WHERE run_id = $1 AND step_key = $2",
                    run_id,
                    step_key,
                )
            if row["status"] == StepStatus.COMPLETED.value:
                return ClaimResult.completed(row["output"])
            return ClaimResult.pending()

        return await self._run(_claim)

    async def commit(self, run_id: str, step_key: str, output: str) -> bool:
        async def _commit(conn: asyncpg.Connection) -> bool:
            async with conn.transaction():
                updated = await conn.fetchval(
                    """
                    UPDATE step_checkpoints
                    SET status = $1, output = $2, completed_at = $3
                    WHERE run_id = $4 AND step_key = $5 AND status = $6
                    RETURNING step_key
                    """,
                    StepStatus.COMPLETED.value,
                    output,
                    datetime.now(timezone.utc),
                    run_id,
                    step_key,
                    StepStatus.PENDING.value,
                )
                if updated is not None:
                    return True
                status = await conn.fetchval(
                    "SELECT status FROM step_checkpoints WHERE run_id = $1 AND step_key = $2",
                    run_id,
                    step_key,
                )
            if status is None:
                raise CheckpointNotFound(run_id, step_key)
            return False

        return await self._run(_commit)

    @staticmethod
    def _row_to_record(row: Any) -> StepRecord:
        return StepRecord(
            run_id=row["run_id"],
            step_key=row["step_key"],
            status=StepStatus(row["status"]),
            output=row["output"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )

    async def get_step(self, run_id: str, step_key: str) -> StepRecord | None:
        row = await self._run(
            lambda conn: conn.fetchrow(
                "SELECT run_id, step_key, status, output, created_at, completed_at "
                "FROM step_checkpoints WHERE run_id = $1 AND step_key = $2",
                run_id,
                step_key,
            )
        )
        return self._row_to_record(row) if row else None

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        rows = await self._run(
            lambda conn: conn.fetch(
                "SELECT run_id, step_key, status, output, created_at, completed_at "
                "FROM step_checkpoints WHERE run_id = $1",
                run_id,
            )
        )
        return sort_steps([self._row_to_record(r) for r in rows])

    async def list_runs(self) -> list[RunSummary]:
        rows = await self._run(
            lambda conn: conn.fetch(
                """
                SELECT run_id,
                       COUNT(*) FILTER (WHERE status = 'COMPLETED') AS completed,
                       COUNT(*) FILTER (WHERE status = 'PENDING') AS pending
                FROM step_checkpoints
                GROUP BY run_id
                ORDER BY run_id
                """
            )
        )
        return [
            RunSummary(run_id=r["run_id"], completed=r["completed"], pending=r["pending"])
            for r in rows
        ]

    async def purge_run(self, run_id: str) -> int:
        result = await self._run(
            lambda conn: conn.execute(
                "DELETE FROM step_checkpoints WHERE run_id = $1", run_id
            )
        )
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(result.split()[-1])

    async def close(self) -> None:
        pass
