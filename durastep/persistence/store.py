"""Checkpoint store abstraction."""

from __future__ import annotations

from typing import Protocol

from .models import ClaimResult, RunSummary, StepRecord


class CheckpointStore(Protocol):
    """Protocol for durable step checkpoint backends.

    ``try_claim`` and ``commit`` must be atomic with respect to concurrent
    callers on the same ``(run_id, step_key)``. Implementations rely on their
    own transactions and the primary key for this; callers never lock.
    """

    async def try_claim(self, run_id: str, step_key: str) -> ClaimResult:
        """Insert a PENDING record, or report the record that already exists."""

    async def commit(self, run_id: str, step_key: str, output: str) -> bool:
        """Move a record from PENDING to COMPLETED.

        Returns ``True`` for a fresh commit and ``False`` when the record was
        already completed, in which case the stored output is left untouched.
        """

    async def get_step(self, run_id: str, step_key: str) -> StepRecord | None:
        """Return a single checkpoint."""

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        """Return all checkpoints of a run in allocation order."""

    async def list_runs(self) -> list[RunSummary]:
        """Return a summary for every run with at least one checkpoint."""

    async def purge_run(self, run_id: str) -> int:
        """Delete every checkpoint of a run and return how many were removed."""

    async def close(self) -> None:
        """Release backend resources."""


def sort_steps(steps: list[StepRecord]) -> list[StepRecord]:
    """Order records by allocated sequence, which is the order of the run."""
    return sorted(steps, key=lambda step: (step.sequence, step.step_key))
