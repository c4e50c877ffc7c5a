"""Wiring: build the storage stack and stores from config."""

from dataclasses import dataclass

from .adapters.chaos import FaultInjectingKeyValueStore, NoFaults, SeededFaultStrategy
from .adapters.file_kv import FileKeyValueStore
from .config import Config, load_config
from .entries import EntryStore
from .ports.fault_strategy import FaultStrategy
from .ports.kv_store import KeyValueStore
from .settings import SettingsStore


@dataclass
class AppContext:
    """Everything a caller needs to talk to persisted data."""

    config: Config
    kv: FaultInjectingKeyValueStore
    entries: EntryStore
    settings: SettingsStore


def create_context(
    config: Config | None = None,
    kv: KeyValueStore | None = None,
    strategy: FaultStrategy | None = None,
) -> AppContext:
    """
    Build stores over a fault-injection shim over the KV adapter.

    Production config leaves chaos disabled, which wires NoFaults.
    """
    if config is None:
        config = load_config()
    if kv is None:
        kv = FileKeyValueStore(config.resolved_storage_dir)
    if strategy is None:
        strategy = SeededFaultStrategy(config.chaos) if config.chaos.enabled else NoFaults()

    shim = FaultInjectingKeyValueStore(kv, strategy)
    return AppContext(
        config=config,
        kv=shim,
        entries=EntryStore(shim, key=config.entries_key, strictness=config.strictness),
        settings=SettingsStore(shim, key=config.settings_key, strictness=config.strictness),
    )
