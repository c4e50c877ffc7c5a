"""Shared fixtures for storage tests."""

import asyncio

import pytest

from moodly.adapters.chaos import ChaosConfig, FaultInjectingKeyValueStore, SeededFaultStrategy
from moodly.adapters.memory_kv import MemoryKeyValueStore
from moodly.core.strictness import Strictness
from moodly.entries import EntryStore
from moodly.settings import SettingsStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_770_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> None:
        self.now += ms


class GatedReadKeyValueStore(MemoryKeyValueStore):
    """Captures the value at read time, then waits for the gate before returning it."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.reading = asyncio.Event()
        self.gate = asyncio.Event()

    async def get_item(self, key):
        value = self.data.get(key)
        self.reading.set()
        await self.gate.wait()
        return value


@pytest.fixture
def backend():
    """The raw KV primitive, bypassing chaos."""
    return MemoryKeyValueStore()


@pytest.fixture
def gated_backend():
    """KV whose reads block until the test opens the gate."""
    return GatedReadKeyValueStore()


@pytest.fixture
def chaos():
    """Fault strategy; disabled until a test configures it."""
    return SeededFaultStrategy(ChaosConfig(enabled=False))


@pytest.fixture
def kv(backend, chaos):
    return FaultInjectingKeyValueStore(backend, chaos)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(kv, clock):
    return EntryStore(kv, strictness=Strictness.STRICT, clock=clock)


@pytest.fixture
def lenient_store(kv, clock):
    return EntryStore(kv, strictness=Strictness.LENIENT, clock=clock)


@pytest.fixture
def settings_store(kv):
    return SettingsStore(kv, strictness=Strictness.STRICT)
