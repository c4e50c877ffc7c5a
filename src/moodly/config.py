"""Configuration management for Moodly."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .adapters.chaos import ChaosConfig
from .core.strictness import Strictness

logger = logging.getLogger(__name__)

MOODLY_HOME = Path(os.environ.get("MOODLY_HOME", Path.home() / "moodly"))
CONFIG_FILE = MOODLY_HOME / "config" / "moodly.conf"
DATA_DIR = MOODLY_HOME / "data"

ENTRIES_KEY = "moodly.entries"
SETTINGS_KEY = "moodly.settings"
SEED_VERSION_KEY = "moodly.demoSeedVersion"
SEED_LEGACY_KEY = "moodly.demoSeeded"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class Config:
    """Moodly configuration."""

    storage_dir: str = ""
    entries_key: str = ENTRIES_KEY
    settings_key: str = SETTINGS_KEY
    strict: bool = False
    warmup_delay_seconds: float = 0.5
    # Test/ops only: deterministic storage fault injection
    chaos: ChaosConfig = field(default_factory=ChaosConfig)

    @property
    def strictness(self) -> Strictness:
        return Strictness.STRICT if self.strict else Strictness.LENIENT

    @property
    def resolved_storage_dir(self) -> Path:
        if self.storage_dir:
            return Path(self.storage_dir).expanduser()
        return DATA_DIR


def _unquote(value: str) -> str:
    """Strip quotes, or an inline comment from an unquoted value."""
    if value.startswith('"'):
        end_quote = value.find('"', 1)
        return value[1:end_quote] if end_quote != -1 else value[1:]
    if value.startswith("'"):
        end_quote = value.find("'", 1)
        return value[1:end_quote] if end_quote != -1 else value[1:]
    if "#" in value:
        value = value.split("#")[0].strip()
    return value


def load_config(path: Path | None = None) -> Config:
    """Load configuration from moodly.conf file."""
    config = Config()
    path = path or CONFIG_FILE

    if not path.exists():
        return config

    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        if "=" not in line:
            continue

        key, _, value = line.partition("=")
        key = key.strip().lower()
        value = value.strip()

        # JSON values contain quotes of their own
        if key != "chaos":
            value = _unquote(value)

        match key:
            case "storage_dir":
                config.storage_dir = value
            case "entries_key":
                config.entries_key = value
            case "settings_key":
                config.settings_key = value
            case "strict":
                config.strict = value.lower() in _TRUE_VALUES
            case "warmup_delay_seconds":
                try:
                    config.warmup_delay_seconds = float(value)
                except ValueError:
                    logger.warning(f"Invalid WARMUP_DELAY_SECONDS: {value}")
            case "chaos":
                # JSON format: {"enabled": true, "seed": 7, "failNext": {"setItem": 1}}
                try:
                    config.chaos = ChaosConfig.from_dict(json.loads(value))
                except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError) as e:
                    logger.warning(f"Failed to parse CHAOS JSON: {e}")

    return config
