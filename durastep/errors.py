"""Exceptions raised by the step engine and its stores."""

from __future__ import annotations


class DurastepError(Exception):
    """Base class for all durastep errors."""


class StoreUnavailable(DurastepError):
    """The checkpoint store could not be reached or written."""


class CheckpointNotFound(DurastepError):
    """A commit referenced a step that was never claimed."""

    def __init__(self, run_id: str, step_key: str) -> None:
        super().__init__(f"No checkpoint for run_id={run_id} step_key={step_key}")
        self.run_id = run_id
        self.step_key = step_key


class SerializationFailure(DurastepError):
    """A step result could not be encoded for, or decoded from, the store."""
