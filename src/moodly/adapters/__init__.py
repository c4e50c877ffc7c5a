"""Adapters - I/O implementations of ports."""

from .memory_kv import MemoryKeyValueStore
from .file_kv import FileKeyValueStore
from .chaos import (
    ChaosConfig,
    FaultInjectingKeyValueStore,
    InjectedStorageError,
    NoFaults,
    SeededFaultStrategy,
)

__all__ = [
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "ChaosConfig",
    "FaultInjectingKeyValueStore",
    "InjectedStorageError",
    "NoFaults",
    "SeededFaultStrategy",
]
