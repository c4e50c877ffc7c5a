"""Ports - interfaces/protocols for external dependencies."""

from .kv_store import KeyValueStore, StorageOp
from .fault_strategy import NO_FAULT, FaultDecision, FaultStrategy

__all__ = [
    "KeyValueStore",
    "StorageOp",
    "FaultStrategy",
    "FaultDecision",
    "NO_FAULT",
]
