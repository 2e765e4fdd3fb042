from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class StoreConfig(BaseModel):
    """Tuning for the checkpoint store backend."""

    busy_timeout_ms: int = 5000
    journal_mode: Literal["WAL", "DELETE", "TRUNCATE", "MEMORY"] = "WAL"
    max_retries: int = 5
    retry_initial_delay: float = 0.05


class DurastepConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    store: StoreConfig = StoreConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> DurastepConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to DURASTEP_CONFIG env
            variable or 'durastep.yaml' in the current directory.
    """

    config_path = path or os.getenv("DURASTEP_CONFIG", "durastep.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = DurastepConfig(**data)
    else:
        config = DurastepConfig()

    env_db_url = os.getenv("DURASTEP_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
