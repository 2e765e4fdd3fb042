"""Data models for persisted step checkpoints."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class StepStatus(str, Enum):
    """Durable states of a step record. There is no failed state."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class ClaimOutcome(str, Enum):
    CLAIMED = "CLAIMED"
    ALREADY_PENDING = "ALREADY_PENDING"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"


class StepRecord(BaseModel):
    """Checkpoint of a single step within a run."""

    run_id: str
    step_key: str
    status: StepStatus
    output: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def sequence(self) -> int:
        """Sequence number encoded in ``step_key``."""
        return int(self.step_key.rsplit("-", 1)[1])


class ClaimResult(BaseModel):
    """Result of ``CheckpointStore.try_claim``.

    ``output`` is only set for ``ALREADY_COMPLETED``.
    """

    outcome: ClaimOutcome
    output: Optional[str] = None

    @classmethod
    def claimed(cls) -> "ClaimResult":
        return cls(outcome=ClaimOutcome.CLAIMED)

    @classmethod
    def pending(cls) -> "ClaimResult":
        return cls(outcome=ClaimOutcome.ALREADY_PENDING)

    @classmethod
    def completed(cls, output: Optional[str]) -> "ClaimResult":
        return cls(outcome=ClaimOutcome.ALREADY_COMPLETED, output=output)


class RunSummary(BaseModel):
    """Aggregate view of the checkpoints recorded for one run."""

    run_id: str
    completed: int = 0
    pending: int = 0

    @property
    def total(self) -> int:
        return self.completed + self.pending
