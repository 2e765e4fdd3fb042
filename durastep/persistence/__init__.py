"""Persistence layer for step checkpoints."""

from __future__ import annotations

import os
from typing import Optional

from ..config import DurastepConfig, load_config
from .inmemory import InMemoryCheckpointStore
from .models import ClaimOutcome, ClaimResult, RunSummary, StepRecord, StepStatus
from .sqlite import SQLiteCheckpointStore
from .store import CheckpointStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresCheckpointStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresCheckpointStore = None  # type: ignore

_store_instance: CheckpointStore | None = None
_store_url: str | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[DurastepConfig] = None
) -> CheckpointStore:
    """Factory function to obtain a checkpoint store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``DURASTEP_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned; it does not survive restarts.

    The store is cached per resolved URL: asking again for the same database
    returns the existing instance and its open connections. Store tuning from
    ``config`` only applies when a new instance is created.
    """

    global _store_instance, _store_url
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("DURASTEP_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
        or None
    )

    if _store_instance is not None and database_url == _store_url:
        return _store_instance

    store: CheckpointStore
    if not database_url:
        store = InMemoryCheckpointStore()
    elif database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        store = SQLiteCheckpointStore(path, config=config.store)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresCheckpointStore is None:
            raise RuntimeError("Postgres support not available, install durastep[postgres]")
        store = PostgresCheckpointStore(database_url, config=config.store)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    _store_instance, _store_url = store, database_url
    return _store_instance


def reset_store() -> None:
    """Forget the cached store returned by ``get_store``."""
    global _store_instance, _store_url
    _store_instance = None
    _store_url = None


__all__ = [
    "CheckpointStore",
    "ClaimOutcome",
    "ClaimResult",
    "RunSummary",
    "StepRecord",
    "StepStatus",
    "InMemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "PostgresCheckpointStore",
    "get_store",
    "reset_store",
]
