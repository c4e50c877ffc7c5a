"""
Demo seed data.

Fills every day of the demo years with a deterministic entry when the store
is empty (or was demo-seeded before). Never overwrites an existing entry.
Seeding is best-effort: any storage failure is logged and swallowed so the
app still starts without demo data.
"""

import logging
from calendar import monthrange
from datetime import datetime

from .config import SEED_LEGACY_KEY, SEED_VERSION_KEY
from .core.entry import MOOD_GRADES, Entry
from .entries import EntryStore
from .ports.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

SEED_VERSION = "daily2024-2025-v3"
DEMO_YEARS = (2024, 2025)

_NOTES = {
    "A+": "Felt really solid today.",
    "A": "Good day with steady focus.",
    "B": "Pretty good day overall.",
    "C": "Neutral day. Handled the basics.",
    "D": "Low energy, kept it small.",
    "F": "Hard day. Resetting tomorrow.",
}

_SIX_HOURS_MS = 6 * 60 * 60 * 1000


def _hash(text: str) -> int:
    """Small deterministic string hash, stable across runs."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def make_demo_entry(date_key: str) -> Entry:
    """Deterministic demo entry for a date (midday local time)."""
    h = _hash(date_key)
    mood = MOOD_GRADES[h % len(MOOD_GRADES)]
    note = "" if h % 20 == 0 else _NOTES[mood]
    year, month, day = int(date_key[:4]), int(date_key[5:7]), int(date_key[8:10])
    created_at = int(datetime(year, month, day, 12).timestamp() * 1000)
    return Entry(
        date=date_key,
        mood=mood,
        note=note,
        created_at=created_at,
        updated_at=created_at + h % _SIX_HOURS_MS,
    )


def demo_dates(years: tuple[int, ...] = DEMO_YEARS) -> list[str]:
    dates = []
    for year in years:
        for month in range(1, 13):
            for day in range(1, monthrange(year, month)[1] + 1):
                dates.append(f"{year}-{month:02d}-{day:02d}")
    return dates


async def seed_demo_entries_if_empty(
    entries: EntryStore,
    kv: KeyValueStore,
    *,
    years: tuple[int, ...] = DEMO_YEARS,
) -> bool:
    """
    Seed demo entries. Returns True when a seed was written.

    Only touches a store that is empty or already demo-seeded, and skips
    entirely once the current SEED_VERSION marker is present.
    """
    try:
        version = await kv.get_item(SEED_VERSION_KEY)
        legacy = await kv.get_item(SEED_LEGACY_KEY)

        # load() raises on read failure: an unreadable store is not an empty one
        existing = await entries.load()
        is_demo_context = legacy == "1" or bool(version)

        if existing and not is_demo_context:
            logger.info("Store has user data; skipping demo seed")
            return False
        if version == SEED_VERSION:
            return False

        document = dict(existing)
        added = 0
        for date_key in demo_dates(years):
            if date_key not in document:
                document[date_key] = make_demo_entry(date_key)
                added += 1

        await entries.set_all(document)
        logger.info(f"Seeded demo entries: added={added} total={len(document)}")
    except Exception as e:
        # Non-fatal: the app works without demo data
        logger.warning(f"Failed to seed demo data: {e}")
        return False

    # Data is durable; a missing marker only means the next run re-checks
    try:
        await kv.set_item(SEED_VERSION_KEY, SEED_VERSION)
        if not legacy:
            await kv.set_item(SEED_LEGACY_KEY, "1")
    except Exception as e:
        logger.warning(f"Failed to write demo seed marker: {e}")
    return True
