"""
Mood entries store (data layer source of truth).

All entries live in one JSON object keyed by date under a single storage key
(default "moodly.entries"):

    {"2026-02-09": {"date": "2026-02-09", "mood": "A", "note": "",
                    "createdAt": 1770600000000, "updatedAt": 1770600000000}}

On top of that document the store keeps a session cache and five derived
indexes. Writes are persist-first: the durable write must succeed before the
cache or any index changes. Corrupt payloads are quarantined under
"<key>.corrupt.<ms>" and the store carries on empty rather than crash.
"""

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TypeVar

from .config import ENTRIES_KEY
from .core import indexes as ix
from .core.entry import (
    MAX_NOTE_LEN,
    Entry,
    is_valid_date_key,
    is_valid_mood,
    normalize_note,
    now_ms,
    validate_entries_document,
)
from .core.errors import InvariantError
from .core.indexes import EntriesByMonth, IndexCell, MonthDateKeysIndex, MoodCounts, YearIndex
from .core.strictness import Strictness, reject
from .ports.kv_store import KeyValueStore
from .single_flight import SingleFlight

logger = logging.getLogger(__name__)

EntriesDocument = dict[str, Entry]

SOURCE_STORAGE = "storage"
SOURCE_SESSION_CACHE = "session_cache"

T = TypeVar("T")


@dataclass
class CacheDiagnostics:
    """Metadata-only snapshot of the session cache."""

    entries_count: int
    months_indexed: int
    years_indexed: int
    last_source: str
    has_by_month: bool
    has_sorted: bool
    has_mood_counts: bool
    has_month_date_keys: bool
    has_year_index: bool


@dataclass
class MoodStats:
    total_entries: int
    mood_counts: MoodCounts


def serialize_document(document: Mapping[str, Entry]) -> str:
    return json.dumps({date_key: entry.to_dict() for date_key, entry in document.items()})


def parse_document(raw_json: str | None) -> tuple[EntriesDocument, bool]:
    """
    Parse a stored entries payload.

    Returns (document, corrupt). Empty or missing is a valid empty document.
    A payload that fails to parse is corrupt, and so is a non-empty object
    whose entries all fail validation. Partially valid objects keep the
    valid entries and are not treated as corrupt.
    """
    if not raw_json:
        return {}, False
    try:
        raw = json.loads(raw_json)
    except ValueError:
        logger.debug("Entries payload failed to parse")
        return {}, True
    document = validate_entries_document(raw)
    if isinstance(raw, dict):
        return document, bool(raw) and not document
    # Valid JSON of the wrong shape (array, scalar)
    return {}, bool(raw)


class EntryStore:
    """
    Date-keyed mood entries with a session cache and derived indexes.

    Loads are coalesced through SingleFlight. Writes are serialized with a
    FIFO lock, so two writers to the same date land in call order.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        key: str = ENTRIES_KEY,
        strictness: Strictness = Strictness.LENIENT,
        clock: Callable[[], int] = now_ms,
    ):
        self.kv = kv
        self.key = key
        self.strictness = strictness
        self.clock = clock
        self._entries: EntriesDocument | None = None
        self._loader: SingleFlight[EntriesDocument] = SingleFlight()
        self._write_lock = asyncio.Lock()
        # Bumped whenever the cache is replaced wholesale or written
        self._generation = 0
        self.last_source = SOURCE_STORAGE

        self._by_month: IndexCell[EntriesByMonth] = IndexCell("by_month")
        self._sorted_desc: IndexCell[list[Entry]] = IndexCell("sorted_desc")
        self._mood_counts: IndexCell[MoodCounts] = IndexCell("mood_counts")
        self._month_date_keys: IndexCell[MonthDateKeysIndex] = IndexCell("month_date_keys")
        self._year_index: IndexCell[YearIndex] = IndexCell("year_index")

    @property
    def corrupt_prefix(self) -> str:
        return f"{self.key}.corrupt."

    @property
    def is_warm(self) -> bool:
        return self._entries is not None

    def _cells(self) -> tuple[IndexCell, ...]:
        return (
            self._by_month,
            self._sorted_desc,
            self._mood_counts,
            self._month_date_keys,
            self._year_index,
        )

    def _invalidate_indexes(self) -> None:
        for cell in self._cells():
            cell.invalidate()

    def _replace_cache(self, document: EntriesDocument) -> None:
        self._entries = document
        self._generation += 1
        self._invalidate_indexes()

    # ============== Read path ==============

    async def _quarantine(self, raw_json: str, generation: int) -> None:
        """
        Back up the raw payload, then reset the primary key to an empty document.

        The reset is skipped while a writer holds the lock or once a write has
        landed since the read began. That writer's document replaces the
        corrupt payload instead.
        """
        backup_key = f"{self.corrupt_prefix}{self.clock()}"
        try:
            await self.kv.set_item(backup_key, raw_json)
        except Exception as e:
            logger.warning(f"Failed to persist corrupt entries backup: key={self.key} error={e}")

        if self._write_lock.locked():
            logger.info(f"Skipping corrupt entries reset; a write is in progress: key={self.key}")
            return
        async with self._write_lock:
            if self._generation != generation:
                logger.info(f"Skipping corrupt entries reset; newer entries were written: key={self.key}")
                return
            try:
                await self.kv.set_item(self.key, "{}")
            except Exception as e:
                logger.error(f"Failed to reset corrupt entries: key={self.key} error={e}")

    async def _load(self) -> EntriesDocument:
        generation = self._generation
        raw_json = await self.kv.get_item(self.key)
        document, corrupt = parse_document(raw_json)
        if corrupt:
            logger.warning(f"Corrupt entries detected; quarantining and resetting: key={self.key}")
            await self._quarantine(raw_json, generation)
        if self._generation != generation and self._entries is not None:
            # A write or clear landed while we were reading
            return self._entries
        self._replace_cache(document)
        self.last_source = SOURCE_STORAGE
        logger.debug(f"Loaded entries: count={len(document)}")
        return document

    async def load(self) -> EntriesDocument:
        """Cached document, or a coalesced load. Storage errors propagate."""
        if self._entries is not None:
            return self._entries
        return await self._loader.run(self._load)

    async def get_all(self) -> EntriesDocument:
        """
        Retrieve all entries keyed by date.

        Never raises on storage failure: a failed read logs an error and
        returns an empty document without caching it, so the next call
        retries. The returned dict must be treated as read-only.
        """
        if self._entries is not None:
            self.last_source = SOURCE_SESSION_CACHE
            return self._entries
        try:
            return await self.load()
        except Exception as e:
            logger.error(f"Failed to load entries: key={self.key} error={e}")
            return {}

    async def get_entry(self, date: str) -> Entry | None:
        """Get a single entry by YYYY-MM-DD date key."""
        if not is_valid_date_key(date):
            reject(self.strictness, logger, f"Invalid date key for get_entry: {date!r}")
            return None
        entries = self._entries if self._entries is not None else await self.get_all()
        return entries.get(date)

    async def _index(self, cell: IndexCell[T], builder: Callable[[Mapping[str, Entry]], T]) -> T:
        entries = await self.get_all()
        if self._entries is None:
            # Load failed; serve a throwaway view of the empty fallback
            return builder(entries)
        return cell.get_or_build(lambda: builder(self._entries))

    async def get_by_month(self) -> EntriesByMonth:
        """Entries grouped by YYYY-MM."""
        return await self._index(self._by_month, ix.build_by_month)

    async def get_sorted_desc(self) -> list[Entry]:
        """All entries, newest first."""
        return await self._index(self._sorted_desc, ix.build_sorted_desc)

    async def get_mood_counts(self) -> MoodCounts:
        """Count of entries per mood grade (every grade present)."""
        return await self._index(self._mood_counts, ix.build_mood_counts)

    async def get_month_date_keys_index(self) -> MonthDateKeysIndex:
        """YYYY-MM -> ascending date keys present that month."""
        return await self._index(self._month_date_keys, ix.build_month_date_keys)

    async def get_year_index(self) -> YearIndex:
        """year -> month index (0-11) -> MonthBucket(total, counts)."""
        return await self._index(self._year_index, ix.build_year_index)

    async def get_mood_stats(self) -> MoodStats:
        counts = await self.get_mood_counts()
        entries = self._entries if self._entries is not None else {}
        return MoodStats(total_entries=len(entries), mood_counts=counts)

    async def get_entries_in_range(self, start: str, end: str) -> list[Entry]:
        """Entries with start <= date <= end, newest first."""
        if not (is_valid_date_key(start) and is_valid_date_key(end)) or start > end:
            reject(self.strictness, logger, f"Invalid date range: start={start!r} end={end!r}")
            return []
        items = await self.get_sorted_desc()
        return [e for e in items if start <= e.date <= end]

    async def warm_all(self) -> None:
        """Load the document and build every derived index."""
        await self.get_by_month()
        await self.get_sorted_desc()
        await self.get_mood_counts()
        await self.get_month_date_keys_index()
        await self.get_year_index()

    def diagnostics(self) -> CacheDiagnostics:
        by_month = self._by_month.value
        year_index = self._year_index.value
        return CacheDiagnostics(
            entries_count=len(self._entries) if self._entries is not None else 0,
            months_indexed=len(by_month) if by_month is not None else 0,
            years_indexed=len(year_index) if year_index is not None else 0,
            last_source=self.last_source,
            has_by_month=self._by_month.is_fresh,
            has_sorted=self._sorted_desc.is_fresh,
            has_mood_counts=self._mood_counts.is_fresh,
            has_month_date_keys=self._month_date_keys.is_fresh,
            has_year_index=self._year_index.is_fresh,
        )

    # ============== Write path ==============

    async def _persist(self, document: Mapping[str, Entry], action: str) -> None:
        try:
            await self.kv.set_item(self.key, serialize_document(document))
        except Exception as e:
            logger.error(f"Failed to persist entries ({action}): key={self.key} error={e}")
            raise

    def _check_invariants(self, entry: Entry) -> None:
        if self.strictness is not Strictness.STRICT:
            return
        if entry.created_at > entry.updated_at:
            raise InvariantError("createdAt > updatedAt")
        if len(entry.note) > MAX_NOTE_LEN:
            raise InvariantError("note length exceeded MAX_NOTE_LEN")

    async def upsert(self, entry: Entry) -> Entry | None:
        """
        Create or update the entry for entry.date.

        created_at is kept from any existing entry; updated_at is refreshed.
        Returns the stored entry, or None if a lenient store rejected it.
        """
        if not isinstance(entry, Entry):
            reject(self.strictness, logger, f"Invalid entry for upsert: {type(entry).__name__}")
            return None
        if not is_valid_date_key(entry.date):
            reject(self.strictness, logger, f"Invalid date key for upsert: {entry.date!r}")
            return None
        if not is_valid_mood(entry.mood):
            reject(self.strictness, logger, f"Invalid mood grade for upsert: {entry.mood!r}")
            return None

        # Load before taking the lock so a corrupt payload can still be reset
        await self.load()
        async with self._write_lock:
            current = await self.load()
            existing = current.get(entry.date)
            now = self.clock()
            created_at = existing.created_at if existing is not None else now
            stored = Entry(
                date=entry.date,
                mood=entry.mood,
                note=normalize_note(entry.note),
                created_at=created_at,
                updated_at=max(now, created_at),
            )
            self._check_invariants(stored)

            document = {**current, entry.date: stored}
            await self._persist(document, "upsert")

            # Durable; now commit cache and indexes together
            self._entries = document
            self._generation += 1
            self._by_month.update(lambda idx: ix.upsert_by_month(idx, stored))
            self._sorted_desc.update(lambda items: ix.upsert_sorted_desc(items, stored))
            self._mood_counts.update(lambda counts: ix.upsert_mood_counts(counts, existing, stored))
            self._month_date_keys.update(lambda idx: ix.upsert_month_date_keys(idx, stored.date))
            self._year_index.update(lambda idx: ix.upsert_year_index(idx, existing, stored))
            return stored

    async def delete(self, date: str) -> None:
        """Delete the entry for a date. Deleting a missing date writes nothing."""
        if not is_valid_date_key(date):
            reject(self.strictness, logger, f"Invalid date key for delete: {date!r}")
            return

        await self.load()
        async with self._write_lock:
            current = await self.load()
            existing = current.get(date)
            if existing is None:
                return

            document = {k: v for k, v in current.items() if k != date}
            await self._persist(document, "delete")

            self._entries = document
            self._generation += 1
            self._by_month.update(lambda idx: ix.remove_by_month(idx, date))
            self._sorted_desc.update(lambda items: ix.remove_sorted_desc(items, date))
            self._mood_counts.update(lambda counts: ix.remove_mood_counts(counts, existing))
            self._month_date_keys.update(lambda idx: ix.remove_month_date_keys(idx, date))
            self._year_index.update(lambda idx: ix.remove_year_index(idx, existing))

    async def set_all(self, document: Mapping[str, Entry]) -> None:
        """
        Replace the whole document (seeding and dev tooling).

        Unlike upsert, the cache is replaced before the write. The write is
        still awaited and its error propagates.
        """
        async with self._write_lock:
            nxt = dict(document)
            self._replace_cache(nxt)
            await self._persist(nxt, "set_all")

    async def clear_all(self) -> None:
        """
        Remove every entry.

        The cache is emptied before the durable remove; if the remove fails
        the error propagates and the cache stays empty.
        """
        async with self._write_lock:
            self._loader.forget()
            self._replace_cache({})
            try:
                await self.kv.remove_item(self.key)
            except Exception as e:
                logger.error(f"Failed to clear entries: key={self.key} error={e}")
                raise

    def reset(self) -> None:
        """Drop cache, indexes and any in-flight load (tests)."""
        self._entries = None
        self._loader.forget()
        self._generation += 1
        self._invalidate_indexes()
        self.last_source = SOURCE_STORAGE
