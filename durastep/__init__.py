"""durastep: crash-safe, checkpointed step execution."""

from .config import DurastepConfig, load_config
from .context import ExecutionContext, new_context
from .errors import (
    CheckpointNotFound,
    DurastepError,
    SerializationFailure,
    StoreUnavailable,
)
from .execute import execute
from .parallel import run_parallel
from .persistence import get_store
from .sequence import SequenceAllocator
from .serialization import JsonSerializer, PydanticSerializer, Serializer

__version__ = "0.1.0"
__all__ = [
    "CheckpointNotFound",
    "DurastepConfig",
    "DurastepError",
    "ExecutionContext",
    "JsonSerializer",
    "PydanticSerializer",
    "SequenceAllocator",
    "SerializationFailure",
    "Serializer",
    "StoreUnavailable",
    "execute",
    "get_store",
    "load_config",
    "new_context",
    "run_parallel",
]
