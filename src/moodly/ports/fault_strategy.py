"""Fault injection strategy interface."""

from dataclasses import dataclass
from typing import Protocol

from .kv_store import StorageOp


@dataclass(frozen=True)
class FaultDecision:
    """What to do to a single storage operation before it runs."""

    delay_ms: int = 0
    fail: bool = False
    mode: str | None = None  # which plan triggered the failure, for logs


NO_FAULT = FaultDecision()


class FaultStrategy(Protocol):
    """Decides delay and outcome for each storage operation."""

    def plan(self, op: StorageOp, key: str) -> FaultDecision:
        """Return the delay and failure decision for op on key."""
        ...
