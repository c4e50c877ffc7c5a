"""Persisted app settings store."""

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from .config import SETTINGS_KEY
from .core.entry import now_ms
from .core.strictness import Strictness, reject
from .ports.kv_store import KeyValueStore
from .single_flight import SingleFlight

logger = logging.getLogger(__name__)


class CalendarMoodStyle(Enum):
    """How a day's mood is drawn on the calendar."""

    DOT = "dot"
    FILL = "fill"


@dataclass(frozen=True)
class Settings:
    """User-facing display settings."""

    calendar_mood_style: CalendarMoodStyle = CalendarMoodStyle.DOT
    month_card_matches_screen_background: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "calendarMoodStyle": self.calendar_mood_style.value,
            "monthCardMatchesScreenBackground": self.month_card_matches_screen_background,
        }


DEFAULT_SETTINGS = Settings()


def parse_settings(raw_json: str | None) -> tuple[Settings, bool]:
    """
    Parse a stored settings payload.

    Returns (settings, corrupt). Each recognized field falls back to its
    default independently and unknown keys are dropped. The payload is
    corrupt when it is non-empty and does not parse, is not a JSON object,
    or is a non-empty object without a valid calendar style. An empty
    object is plain defaults.
    """
    if not raw_json:
        return DEFAULT_SETTINGS, False
    try:
        raw = json.loads(raw_json)
    except ValueError:
        return DEFAULT_SETTINGS, True
    if not isinstance(raw, dict):
        return DEFAULT_SETTINGS, True

    style_value = raw.get("calendarMoodStyle")
    valid_style = isinstance(style_value, str) and style_value in [s.value for s in CalendarMoodStyle]
    if raw and not valid_style:
        # The primary key is reset to defaults, so the cache must match
        return DEFAULT_SETTINGS, True
    style = CalendarMoodStyle(style_value) if valid_style else DEFAULT_SETTINGS.calendar_mood_style

    month_bg = raw.get("monthCardMatchesScreenBackground")
    if not isinstance(month_bg, bool):
        month_bg = DEFAULT_SETTINGS.month_card_matches_screen_background

    return Settings(calendar_mood_style=style, month_card_matches_screen_background=month_bg), False


def is_valid_settings(value: object) -> bool:
    return (
        isinstance(value, Settings)
        and isinstance(value.calendar_mood_style, CalendarMoodStyle)
        and isinstance(value.month_card_matches_screen_background, bool)
    )


class SettingsStore:
    """
    Settings document with a session cache.

    Loads are coalesced; writes persist first and are serialized through a
    FIFO lock so concurrent setters cannot lose each other's updates.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        key: str = SETTINGS_KEY,
        strictness: Strictness = Strictness.LENIENT,
    ):
        self.kv = kv
        self.key = key
        self.strictness = strictness
        self._cache: Settings | None = None
        self._loader: SingleFlight[Settings] = SingleFlight()
        self._write_lock = asyncio.Lock()
        # Bumped on every committed write so an older load cannot clobber it
        self._generation = 0

    @property
    def corrupt_prefix(self) -> str:
        return f"{self.key}.corrupt."

    @property
    def cached(self) -> Settings | None:
        return self._cache

    async def _quarantine(self, raw_json: str, generation: int) -> None:
        """
        Back up the raw payload, then reset the primary key to defaults.

        The reset is skipped while a writer holds the lock or once a write has
        landed since the read began.
        """
        backup_key = f"{self.corrupt_prefix}{now_ms()}"
        try:
            await self.kv.set_item(backup_key, raw_json)
        except Exception as e:
            logger.warning(f"Failed to persist corrupt settings backup: key={self.key} error={e}")

        if self._write_lock.locked():
            logger.info(f"Skipping corrupt settings reset; a write is in progress: key={self.key}")
            return
        async with self._write_lock:
            if self._generation != generation:
                logger.info(f"Skipping corrupt settings reset; newer settings were written: key={self.key}")
                return
            try:
                await self.kv.set_item(self.key, json.dumps(DEFAULT_SETTINGS.to_dict()))
            except Exception as e:
                logger.error(f"Failed to reset corrupt settings: key={self.key} error={e}")

    async def _load(self) -> Settings:
        generation = self._generation
        raw_json = await self.kv.get_item(self.key)
        settings, corrupt = parse_settings(raw_json)
        if corrupt:
            logger.warning(f"Corrupt settings detected; quarantining and resetting: key={self.key}")
            await self._quarantine(raw_json, generation)
        if self._generation != generation and self._cache is not None:
            return self._cache
        self._cache = settings
        return settings

    async def load(self) -> Settings:
        """Cached settings, or a coalesced load. Storage errors propagate."""
        if self._cache is not None:
            return self._cache
        return await self._loader.run(self._load)

    async def get(self) -> Settings:
        """Return current settings; never raises on storage failure."""
        if self._cache is not None:
            return self._cache
        try:
            return await self.load()
        except Exception as e:
            logger.error(f"Failed to load settings: key={self.key} error={e}")
            return DEFAULT_SETTINGS

    async def _persist(self, settings: Settings) -> None:
        try:
            await self.kv.set_item(self.key, json.dumps(settings.to_dict()))
        except Exception as e:
            logger.error(f"Failed to persist settings: key={self.key} error={e}")
            raise
        self._generation += 1
        self._cache = settings

    async def set(self, settings: Settings) -> None:
        """Persist settings, then update the cache. Storage errors propagate."""
        if not is_valid_settings(settings):
            reject(self.strictness, logger, f"Invalid settings value: {type(settings).__name__}")
            return
        async with self._write_lock:
            await self._persist(settings)

    async def update(self, **changes: Any) -> Settings:
        """
        Read-modify-write one or more fields under the write lock.

        A failed read propagates, so the untouched fields are never
        overwritten with defaults.
        """
        # Load before taking the lock so a corrupt payload can still be reset
        await self.load()
        async with self._write_lock:
            current = await self.load()
            nxt = replace(current, **changes)
            if not is_valid_settings(nxt):
                reject(self.strictness, logger, f"Invalid settings fields: {sorted(changes)}")
                return current
            await self._persist(nxt)
            return nxt

    async def set_calendar_mood_style(self, style: CalendarMoodStyle) -> Settings:
        return await self.update(calendar_mood_style=style)

    async def set_month_card_matches_screen_background(self, enabled: bool) -> Settings:
        return await self.update(month_card_matches_screen_background=enabled)

    def reset(self) -> None:
        """Drop cache and in-flight load (tests)."""
        self._cache = None
        self._loader.forget()
