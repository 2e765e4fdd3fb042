"""In-memory implementation of the checkpoint store."""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict

from ..errors import CheckpointNotFound
from .models import ClaimResult, RunSummary, StepRecord, StepStatus
from .store import CheckpointStore, sort_steps


class InMemoryCheckpointStore(CheckpointStore):
    """Store checkpoints in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, Dict[str, StepRecord]] = defaultdict(dict)
        # Step bodies may run in worker threads, so guard the dicts here.
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    async def try_claim(self, run_id: str, step_key: str) -> ClaimResult:
        with self._lock:
            existing = self._runs[run_id].get(step_key)
            if existing is None:
                self._runs[run_id][step_key] = StepRecord(
                    run_id=run_id,
                    step_key=step_key,
                    status=StepStatus.PENDING,
                    created_at=datetime.now(timezone.utc),
                )
                return ClaimResult.claimed()
            if existing.status == StepStatus.COMPLETED:
                return ClaimResult.completed(existing.output)
            return ClaimResult.pending()

    async def commit(self, run_id: str, step_key: str, output: str) -> bool:
        with self._lock:
            existing = self._runs.get(run_id, {}).get(step_key)
            if existing is None:
                raise CheckpointNotFound(run_id, step_key)
            if existing.status == StepStatus.COMPLETED:
                return False
            self._runs[run_id][step_key] = existing.model_copy(
                update={
                    "status": StepStatus.COMPLETED,
                    "output": output,
                    "completed_at": datetime.now(timezone.utc),
                }
            )
            return True

    async def get_step(self, run_id: str, step_key: str) -> StepRecord | None:
        with self._lock:
            return self._runs.get(run_id, {}).get(step_key)

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        with self._lock:
            return sort_steps(list(self._runs.get(run_id, {}).values()))

    async def list_runs(self) -> list[RunSummary]:
        with self._lock:
            summaries = []
            for run_id, steps in sorted(self._runs.items()):
                if not steps:
                    continue
                completed = sum(
                    1 for s in steps.values() if s.status == StepStatus.COMPLETED
                )
                summaries.append(
                    RunSummary(
                        run_id=run_id,
                        completed=completed,
                        pending=len(steps) - completed,
                    )
                )
            return summaries

    async def purge_run(self, run_id: str) -> int:
        with self._lock:
            return len(self._runs.pop(run_id, {}))

    async def close(self) -> None:
        pass
