"""Execution context handed to every step of a run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .config import DurastepConfig
from .persistence import CheckpointStore, get_store
from .sequence import SequenceAllocator


@dataclass
class ExecutionContext:
    """Binds a run's identity to its store and sequence allocator.

    One context belongs to one run. It may be shared freely between steps of
    that run running concurrently; the allocator is the only mutable part.
    """

    run_id: str
    store: CheckpointStore
    allocator: SequenceAllocator = field(default_factory=SequenceAllocator)

    def next_step_key(self, step_id: str) -> str:
        """Allocate the next sequence number and build ``<step_id>-<seq>``."""
        return f"{step_id}-{self.allocator.next()}"


def new_context(
    run_id: str,
    store: Optional[CheckpointStore] = None,
    config: Optional[DurastepConfig] = None,
) -> ExecutionContext:
    """Create a context for ``run_id``.

    Safe to call again with the same ``run_id`` after a restart; no stored
    checkpoint is read or reset here.
    """
    if not run_id:
        raise ValueError("run_id must be a non-empty string")
    if store is None:
        store = get_store(config=config)
    return ExecutionContext(run_id=run_id, store=store)
