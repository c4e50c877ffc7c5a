"""
Deterministic fault injection for key-value storage.

FaultInjectingKeyValueStore wraps any KeyValueStore and is the single place
where delays and failures are injected. What to inject is decided by a
FaultStrategy: production wiring passes NoFaults, tests pass a
SeededFaultStrategy built from a ChaosConfig so runs are reproducible.

Example config (camelCase, as accepted by ChaosConfig.from_dict):

    {
        "enabled": true,
        "seed": 123,
        "minDelayMs": 20,
        "maxDelayMs": 80,
        "pFail": 0.1,
        "failNext": {"getItem": 1},
        "failNextByKey": {"setItem": {"moodly.demoSeedVersion": 1}},
        "failOps": ["setItem"]
    }

Logs carry op and key only, never values.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from moodly.ports.fault_strategy import NO_FAULT, FaultDecision, FaultStrategy
from moodly.ports.kv_store import KeyValueStore, StorageOp

logger = logging.getLogger(__name__)

WARN_INTERVAL_SECONDS = 0.75


class InjectedStorageError(OSError):
    """Raised in place of a storage operation the strategy decided to fail."""

    def __init__(self, op: StorageOp):
        super().__init__(f"[chaos] injected {op.value} failure")
        self.op = op


def _parse_op(name: str) -> StorageOp:
    try:
        return StorageOp(name)
    except ValueError:
        return StorageOp[name.upper()]


@dataclass
class ChaosConfig:
    """Fault plan consumed by SeededFaultStrategy. Counters are consumed in place."""

    enabled: bool = False
    seed: int = 1
    p_fail: float = 0.0
    min_delay_ms: int = 0
    max_delay_ms: int | None = None
    fail_next: dict[StorageOp, int] = field(default_factory=dict)
    fail_next_by_key: dict[StorageOp, dict[str, int]] = field(default_factory=dict)
    fail_ops: list[StorageOp] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChaosConfig":
        """Create ChaosConfig from a JSON control object (camelCase or snake_case keys)."""

        def pick(camel: str, snake: str, default: Any = None) -> Any:
            return data.get(camel, data.get(snake, default))

        fail_next = {_parse_op(op): int(n) for op, n in (pick("failNext", "fail_next") or {}).items()}
        by_key = {
            _parse_op(op): {str(k): int(n) for k, n in keys.items()}
            for op, keys in (pick("failNextByKey", "fail_next_by_key") or {}).items()
        }
        max_delay = pick("maxDelayMs", "max_delay_ms")
        return cls(
            enabled=bool(data.get("enabled", False)),
            seed=int(data.get("seed", 1)),
            p_fail=float(pick("pFail", "p_fail", 0.0)),
            min_delay_ms=int(pick("minDelayMs", "min_delay_ms", 0)),
            max_delay_ms=int(max_delay) if max_delay is not None else None,
            fail_next=fail_next,
            fail_next_by_key=by_key,
            fail_ops=[_parse_op(op) for op in pick("failOps", "fail_ops") or []],
        )


class LcgRandom:
    """Tiny seeded linear congruential generator (Numerical Recipes constants)."""

    def __init__(self, seed: int):
        # uint32, and never 0 which collapses the sequence
        self._x = (seed & 0xFFFFFFFF) or 1

    def next_float(self) -> float:
        """Next value in [0, 1]."""
        self._x = (self._x * 1664525 + 1013904223) & 0xFFFFFFFF
        return self._x / 0xFFFFFFFF


class NoFaults:
    """Production strategy: never delays, never fails."""

    def plan(self, op: StorageOp, key: str) -> FaultDecision:
        return NO_FAULT


class SeededFaultStrategy:
    """
    Deterministic fault strategy driven by a ChaosConfig.

    Implements FaultStrategy protocol. For each call the order is fixed:
    draw a delay, then the key-scoped plan, then the per-op plan, then the
    probabilistic draw. The same seed and config yield the same decisions.
    """

    def __init__(self, config: ChaosConfig | None = None):
        self.configure(config or ChaosConfig())

    def configure(self, config: ChaosConfig) -> None:
        """Swap in a new plan and restart the RNG from its seed."""
        self.config = config
        self._rng = LcgRandom(config.seed)

    def reset(self) -> None:
        self._rng = LcgRandom(self.config.seed)

    def _draw_delay(self) -> int:
        c = self.config
        min_delay = max(0, int(c.min_delay_ms))
        max_delay = max(min_delay, int(c.max_delay_ms if c.max_delay_ms is not None else min_delay))
        if max_delay <= 0:
            return 0
        if min_delay == max_delay:
            return min_delay
        return min_delay + int(self._rng.next_float() * (max_delay - min_delay + 1))

    def plan(self, op: StorageOp, key: str) -> FaultDecision:
        c = self.config
        if not c.enabled:
            return NO_FAULT
        if c.fail_ops and op not in c.fail_ops:
            return NO_FAULT

        delay = self._draw_delay()

        by_key = c.fail_next_by_key.get(op, {})
        if by_key.get(key, 0) > 0:
            by_key[key] -= 1
            return FaultDecision(delay_ms=delay, fail=True, mode="failNextByKey")

        if c.fail_next.get(op, 0) > 0:
            c.fail_next[op] -= 1
            return FaultDecision(delay_ms=delay, fail=True, mode="failNext")

        p_fail = min(1.0, max(0.0, c.p_fail))
        if p_fail > 0 and self._rng.next_float() < p_fail:
            return FaultDecision(delay_ms=delay, fail=True, mode="pFail")

        return FaultDecision(delay_ms=delay)


class _WarningLimiter:
    """Allow one warning per token per interval."""

    def __init__(self, interval: float = WARN_INTERVAL_SECONDS):
        self.interval = interval
        self._last: dict[str, float] = {}

    def allow(self, token: str) -> bool:
        now = time.monotonic()
        last = self._last.get(token)
        if last is not None and now - last < self.interval:
            return False
        self._last[token] = now
        return True

    def clear(self) -> None:
        self._last.clear()


class FaultInjectingKeyValueStore:
    """
    Fault injection shim over a real key-value store.

    Implements KeyValueStore protocol. Every operation first asks the
    strategy for a decision, sleeps the delay, and raises
    InjectedStorageError if the decision is a failure. Callers see the same
    exception path as a real storage failure.
    """

    def __init__(self, inner: KeyValueStore, strategy: FaultStrategy | None = None):
        self.inner = inner
        self.strategy = strategy or NoFaults()
        self._limiter = _WarningLimiter()

    async def _before(self, op: StorageOp, key: str) -> None:
        decision = self.strategy.plan(op, key)
        if decision.delay_ms > 0:
            await asyncio.sleep(decision.delay_ms / 1000)
        if decision.fail:
            if self._limiter.allow(f"{op.value}:{key}"):
                logger.warning(f"Injected storage failure: op={op.value} key={key} mode={decision.mode}")
            raise InjectedStorageError(op)

    def reset(self) -> None:
        """Forget rate-limit state (tests)."""
        self._limiter.clear()

    async def get_item(self, key: str) -> str | None:
        await self._before(StorageOp.GET, key)
        return await self.inner.get_item(key)

    async def set_item(self, key: str, value: str) -> None:
        await self._before(StorageOp.SET, key)
        await self.inner.set_item(key, value)

    async def remove_item(self, key: str) -> None:
        await self._before(StorageOp.REMOVE, key)
        await self.inner.remove_item(key)

    # Multi ops inject once per call, keyed on the first key

    async def multi_get(self, keys: Sequence[str]) -> list[tuple[str, str | None]]:
        await self._before(StorageOp.MULTI_GET, keys[0] if keys else StorageOp.MULTI_GET.value)
        return await self.inner.multi_get(keys)

    async def multi_set(self, pairs: Sequence[tuple[str, str]]) -> None:
        await self._before(StorageOp.MULTI_SET, pairs[0][0] if pairs else StorageOp.MULTI_SET.value)
        await self.inner.multi_set(pairs)

    async def multi_remove(self, keys: Sequence[str]) -> None:
        await self._before(StorageOp.MULTI_REMOVE, keys[0] if keys else StorageOp.MULTI_REMOVE.value)
        await self.inner.multi_remove(keys)

    async def get_all_keys(self) -> list[str]:
        return await self.inner.get_all_keys()
