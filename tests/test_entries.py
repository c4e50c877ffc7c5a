"""Tests for the entries store: cache, persist-first writes, quarantine, indexes."""

import asyncio
import json
import logging

import pytest

from moodly.adapters.chaos import ChaosConfig, InjectedStorageError
from moodly.adapters.memory_kv import MemoryKeyValueStore
from moodly.config import ENTRIES_KEY
from moodly.core import indexes as ix
from moodly.core.entry import Entry, create_entry
from moodly.core.errors import ValidationError
from moodly.core.strictness import Strictness
from moodly.entries import (
    SOURCE_SESSION_CACHE,
    SOURCE_STORAGE,
    EntryStore,
    parse_document,
    serialize_document,
)
from moodly.ports.kv_store import StorageOp


def _stored(document: dict[str, Entry]) -> str:
    return serialize_document(document)


class CountingKeyValueStore(MemoryKeyValueStore):
    """Memory store that counts reads and writes."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.gets = 0
        self.sets = 0

    async def get_item(self, key):
        self.gets += 1
        await asyncio.sleep(0)
        return await super().get_item(key)

    async def set_item(self, key, value):
        self.sets += 1
        await super().set_item(key, value)


class TestParseDocument:
    def test_missing_is_empty_not_corrupt(self):
        assert parse_document(None) == ({}, False)
        assert parse_document("") == ({}, False)

    def test_unparseable_is_corrupt(self):
        assert parse_document("{not json") == ({}, True)

    def test_empty_object_is_not_corrupt(self):
        assert parse_document("{}") == ({}, False)

    def test_object_with_no_valid_entries_is_corrupt(self):
        assert parse_document(json.dumps({"2026-02-09": {"mood": "Z"}})) == ({}, True)

    def test_partially_valid_keeps_valid_entries(self):
        raw = {
            "2026-02-09": {"date": "2026-02-09", "mood": "A", "note": "", "createdAt": 1, "updatedAt": 1},
            "garbage": {"date": "nope"},
        }
        document, corrupt = parse_document(json.dumps(raw))
        assert list(document) == ["2026-02-09"]
        assert not corrupt

    def test_array_is_empty_and_corrupt_when_non_trivial(self):
        assert parse_document("[1, 2]") == ({}, True)
        assert parse_document("[]") == ({}, False)


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_upsert_then_get_entry(self, store):
        assert await store.get_all() == {}

        await store.upsert(Entry(date="2026-02-09", mood="A", note="", created_at=1, updated_at=1))

        entry = await store.get_entry("2026-02-09")
        assert entry.mood == "A"
        assert entry.note == ""

    @pytest.mark.asyncio
    async def test_failed_write_leaves_nothing_visible(self, store, backend, chaos):
        chaos.configure(ChaosConfig(enabled=True, fail_next={StorageOp.SET: 1}))

        with pytest.raises(InjectedStorageError):
            await store.upsert(create_entry("2026-02-09", "A"))

        chaos.configure(ChaosConfig(enabled=False))
        assert await store.get_entry("2026-02-09") is None
        assert await store.get_all() == {}
        assert ENTRIES_KEY not in backend.data

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_quarantined_and_reset(self, store, backend, clock):
        backend.data[ENTRIES_KEY] = "{not json"

        assert await store.get_all() == {}

        assert backend.data[ENTRIES_KEY] == "{}"
        assert backend.data[f"{ENTRIES_KEY}.corrupt.{clock.now}"] == "{not json"

    @pytest.mark.asyncio
    async def test_concurrent_upserts_keep_both(self, store, chaos):
        chaos.configure(ChaosConfig(enabled=True, min_delay_ms=10, max_delay_ms=10, fail_ops=[StorageOp.SET]))

        await asyncio.gather(
            store.upsert(create_entry("2026-02-09", "A")),
            store.upsert(create_entry("2026-02-10", "B")),
        )

        chaos.configure(ChaosConfig(enabled=False))
        store.reset()
        entries = await store.get_all()
        assert entries["2026-02-09"].mood == "A"
        assert entries["2026-02-10"].mood == "B"


class TestReadPath:
    @pytest.mark.asyncio
    async def test_read_failure_returns_empty_and_retries(self, store, backend, chaos):
        backend.data[ENTRIES_KEY] = _stored({"2026-02-09": create_entry("2026-02-09", "A", now=5)})
        chaos.configure(ChaosConfig(enabled=True, fail_next={StorageOp.GET: 1}))

        assert await store.get_all() == {}
        assert not store.is_warm

        assert list(await store.get_all()) == ["2026-02-09"]
        assert store.is_warm

    @pytest.mark.asyncio
    async def test_read_failure_indexes_are_empty(self, store, chaos):
        chaos.configure(ChaosConfig(enabled=True, fail_next={StorageOp.GET: 1}))
        assert await store.get_sorted_desc() == []
        assert not store.diagnostics().has_sorted

    @pytest.mark.asyncio
    async def test_load_error_propagates_from_load(self, store, chaos):
        chaos.configure(ChaosConfig(enabled=True, fail_next={StorageOp.GET: 1}))
        with pytest.raises(InjectedStorageError):
            await store.load()

    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_load(self):
        kv = CountingKeyValueStore()
        store = EntryStore(kv)

        results = await asyncio.gather(*(store.get_all() for _ in range(5)))

        assert kv.gets == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_second_read_hits_session_cache(self, store):
        await store.get_all()
        assert store.last_source == SOURCE_STORAGE
        await store.get_all()
        assert store.last_source == SOURCE_SESSION_CACHE

    @pytest.mark.asyncio
    async def test_stale_load_does_not_clobber_newer_write(self, gated_backend):
        store = EntryStore(gated_backend)
        entry = create_entry("2026-02-09", "A", now=5)

        loading = asyncio.ensure_future(store.get_all())
        await gated_backend.reading.wait()
        await store.set_all({"2026-02-09": entry})
        gated_backend.gate.set()

        assert await loading == {"2026-02-09": entry}
        assert await store.get_entry("2026-02-09") == entry

    @pytest.mark.asyncio
    async def test_stale_corrupt_load_keeps_newer_write_on_disk(self, gated_backend):
        gated_backend.data[ENTRIES_KEY] = "{not json"
        store = EntryStore(gated_backend, clock=lambda: 42)
        entry = create_entry("2026-02-09", "A", now=5)

        loading = asyncio.ensure_future(store.get_all())
        await gated_backend.reading.wait()
        await store.set_all({"2026-02-09": entry})
        gated_backend.gate.set()
        await loading

        assert list(json.loads(gated_backend.data[ENTRIES_KEY])) == ["2026-02-09"]
        assert gated_backend.data[f"{ENTRIES_KEY}.corrupt.42"] == "{not json"
        assert list(await store.get_all()) == ["2026-02-09"]

    @pytest.mark.asyncio
    async def test_upsert_over_corrupt_payload_resets_then_writes(self, store, backend, clock):
        backend.data[ENTRIES_KEY] = "{not json"

        await store.upsert(create_entry("2026-02-09", "B"))

        assert list(json.loads(backend.data[ENTRIES_KEY])) == ["2026-02-09"]
        assert backend.data[f"{ENTRIES_KEY}.corrupt.{clock.now}"] == "{not json"

    @pytest.mark.asyncio
    async def test_get_entry_strict_rejects_bad_key(self, store):
        with pytest.raises(ValidationError):
            await store.get_entry("2026-2-9")

    @pytest.mark.asyncio
    async def test_get_entry_lenient_returns_none(self, lenient_store, caplog):
        with caplog.at_level(logging.WARNING, logger="moodly.entries"):
            assert await lenient_store.get_entry("not-a-date") is None
        assert "Invalid date key" in caplog.text

    @pytest.mark.asyncio
    async def test_entries_in_range(self, store):
        for date, mood in (("2026-01-31", "A"), ("2026-02-01", "B"), ("2026-02-15", "C"), ("2026-03-01", "D")):
            await store.upsert(create_entry(date, mood))

        result = await store.get_entries_in_range("2026-02-01", "2026-02-28")
        assert [e.date for e in result] == ["2026-02-15", "2026-02-01"]

    @pytest.mark.asyncio
    async def test_entries_in_range_rejects_inverted_range(self, store, lenient_store):
        with pytest.raises(ValidationError):
            await store.get_entries_in_range("2026-03-01", "2026-02-01")
        assert await lenient_store.get_entries_in_range("2026-03-01", "2026-02-01") == []

    @pytest.mark.asyncio
    async def test_mood_stats(self, store):
        await store.upsert(create_entry("2026-02-09", "A"))
        await store.upsert(create_entry("2026-02-10", "A"))
        await store.upsert(create_entry("2026-02-11", "F"))

        stats = await store.get_mood_stats()
        assert stats.total_entries == 3
        assert stats.mood_counts["A"] == 2
        assert stats.mood_counts["F"] == 1
        assert stats.mood_counts["B"] == 0


class TestWritePath:
    @pytest.mark.asyncio
    async def test_created_at_preserved_updated_at_refreshed(self, store, clock):
        first = await store.upsert(create_entry("2026-02-09", "A"))
        clock.advance(1000)
        second = await store.upsert(create_entry("2026-02-09", "B", "better"))

        assert second.created_at == first.created_at
        assert second.updated_at == first.created_at + 1000
        assert second.mood == "B"

    @pytest.mark.asyncio
    async def test_note_is_normalized(self, store):
        stored = await store.upsert(create_entry("2026-02-09", "A", "  a\n\nlong   day  " + "x" * 500))
        assert stored.note.startswith("a long day x")
        assert len(stored.note) == 200

    @pytest.mark.asyncio
    async def test_same_date_writes_land_in_call_order(self, store):
        await asyncio.gather(
            store.upsert(create_entry("2026-02-09", "A")),
            store.upsert(create_entry("2026-02-09", "F")),
        )
        assert (await store.get_entry("2026-02-09")).mood == "F"

    @pytest.mark.asyncio
    async def test_failed_update_keeps_previous_value(self, store, chaos):
        await store.upsert(create_entry("2026-02-09", "A"))
        sorted_before = await store.get_sorted_desc()
        chaos.configure(ChaosConfig(enabled=True, fail_next={StorageOp.SET: 1}))

        with pytest.raises(InjectedStorageError):
            await store.upsert(create_entry("2026-02-09", "F"))

        assert (await store.get_entry("2026-02-09")).mood == "A"
        assert await store.get_sorted_desc() is sorted_before

    @pytest.mark.asyncio
    async def test_upsert_propagates_read_failure(self, store, chaos):
        chaos.configure(ChaosConfig(enabled=True, fail_next={StorageOp.GET: 1}))
        with pytest.raises(InjectedStorageError):
            await store.upsert(create_entry("2026-02-09", "A"))

    @pytest.mark.asyncio
    async def test_strict_upsert_rejects_invalid(self, store, backend):
        with pytest.raises(ValidationError):
            await store.upsert(Entry(date="2026-02-30", mood="A", note="", created_at=1, updated_at=1))
        with pytest.raises(ValidationError):
            await store.upsert(Entry(date="2026-02-09", mood="Z", note="", created_at=1, updated_at=1))
        assert backend.data == {}

    @pytest.mark.asyncio
    async def test_lenient_upsert_is_noop(self, lenient_store, backend, caplog):
        with caplog.at_level(logging.WARNING, logger="moodly.entries"):
            result = await lenient_store.upsert(
                Entry(date="2026-02-09", mood="Z", note="private words", created_at=1, updated_at=1)
            )
        assert result is None
        assert backend.data == {}
        assert "private words" not in caplog.text

    @pytest.mark.asyncio
    async def test_upsert_rejects_non_entry(self, store, lenient_store, backend, caplog):
        raw = {"date": "2026-02-09", "mood": "A", "note": ""}
        with pytest.raises(ValidationError):
            await store.upsert(raw)

        with caplog.at_level(logging.WARNING, logger="moodly.entries"):
            assert await lenient_store.upsert(raw) is None
        assert "Invalid entry for upsert: dict" in caplog.text
        assert backend.data == {}

    @pytest.mark.asyncio
    async def test_delete(self, store, backend):
        await store.upsert(create_entry("2026-02-09", "A"))
        await store.upsert(create_entry("2026-02-10", "B"))

        await store.delete("2026-02-09")

        assert list(await store.get_all()) == ["2026-02-10"]
        assert list(json.loads(backend.data[ENTRIES_KEY])) == ["2026-02-10"]

    @pytest.mark.asyncio
    async def test_delete_missing_writes_nothing(self):
        kv = CountingKeyValueStore()
        store = EntryStore(kv, strictness=Strictness.STRICT)
        await store.upsert(create_entry("2026-02-09", "A"))
        before = await store.get_all()
        sets = kv.sets

        await store.delete("2026-01-01")

        assert kv.sets == sets
        assert await store.get_all() is before

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_entry(self, store, chaos):
        await store.upsert(create_entry("2026-02-09", "A"))
        chaos.configure(ChaosConfig(enabled=True, fail_next={StorageOp.SET: 1}))

        with pytest.raises(InjectedStorageError):
            await store.delete("2026-02-09")

        assert await store.get_entry("2026-02-09") is not None

    @pytest.mark.asyncio
    async def test_set_all_replaces_document(self, store, backend):
        await store.upsert(create_entry("2026-02-09", "A"))
        replacement = {"2025-01-01": create_entry("2025-01-01", "C", now=3)}

        await store.set_all(replacement)

        assert await store.get_all() == replacement
        assert json.loads(backend.data[ENTRIES_KEY]) == {"2025-01-01": replacement["2025-01-01"].to_dict()}

    @pytest.mark.asyncio
    async def test_clear_all(self, store, backend):
        await store.upsert(create_entry("2026-02-09", "A"))
        await store.clear_all()
        assert await store.get_all() == {}
        assert ENTRIES_KEY not in backend.data

    @pytest.mark.asyncio
    async def test_clear_all_failure_propagates_and_cache_stays_empty(self, store, backend, chaos):
        await store.upsert(create_entry("2026-02-09", "A"))
        chaos.configure(ChaosConfig(enabled=True, fail_next={StorageOp.REMOVE: 1}))

        with pytest.raises(InjectedStorageError):
            await store.clear_all()

        assert await store.get_all() == {}
        assert ENTRIES_KEY in backend.data


class TestIndexes:
    @pytest.mark.asyncio
    async def test_indexes_are_reused_between_reads(self, store):
        await store.upsert(create_entry("2026-02-09", "A"))
        assert await store.get_sorted_desc() is await store.get_sorted_desc()
        assert await store.get_year_index() is await store.get_year_index()

    @pytest.mark.asyncio
    async def test_write_produces_new_index_objects(self, store):
        await store.upsert(create_entry("2026-02-09", "A"))
        before = await store.get_by_month()
        await store.upsert(create_entry("2026-02-10", "B"))
        after = await store.get_by_month()
        assert after is not before
        assert set(before["2026-02"]) == {"2026-02-09"}

    @pytest.mark.asyncio
    async def test_incremental_indexes_match_rebuild(self, store, clock):
        await store.warm_all()
        moods = ["A", "B", "C", "A+", "F", "D"]
        dates = ["2024-12-31", "2025-01-01", "2025-01-15", "2026-02-09", "2026-02-10"]

        for i in range(30):
            clock.advance()
            date = dates[i % len(dates)]
            if i % 7 == 3:
                await store.delete(date)
            else:
                await store.upsert(create_entry(date, moods[i % len(moods)]))

        document = await store.get_all()
        assert await store.get_by_month() == ix.build_by_month(document)
        assert await store.get_sorted_desc() == ix.build_sorted_desc(document)
        assert await store.get_mood_counts() == ix.build_mood_counts(document)
        assert await store.get_month_date_keys_index() == ix.build_month_date_keys(document)
        assert await store.get_year_index() == ix.build_year_index(document)

    @pytest.mark.asyncio
    async def test_stale_indexes_stay_stale_until_read(self, store):
        await store.upsert(create_entry("2026-02-09", "A"))
        diagnostics = store.diagnostics()
        assert not diagnostics.has_sorted
        assert not diagnostics.has_year_index

        await store.get_sorted_desc()
        assert store.diagnostics().has_sorted

    @pytest.mark.asyncio
    async def test_diagnostics_after_warm_all(self, store, backend):
        backend.data[ENTRIES_KEY] = _stored(
            {
                "2026-02-09": create_entry("2026-02-09", "A", now=1),
                "2025-12-31": create_entry("2025-12-31", "B", now=1),
            }
        )

        await store.warm_all()
        d = store.diagnostics()

        assert d.entries_count == 2
        assert d.months_indexed == 2
        assert d.years_indexed == 2
        assert all(
            (d.has_by_month, d.has_sorted, d.has_mood_counts, d.has_month_date_keys, d.has_year_index)
        )

    @pytest.mark.asyncio
    async def test_reset_drops_cache(self, store, backend):
        await store.upsert(create_entry("2026-02-09", "A"))
        backend.data[ENTRIES_KEY] = "{}"

        store.reset()

        assert not store.is_warm
        assert await store.get_all() == {}
