"""
Derived indexes over an entries document - no I/O dependencies.

Every index here can be rebuilt from the document with a build_* function.
The upsert_* / remove_* functions apply a single-record change and must give
exactly what a rebuild would. They are copy-on-write: the structure passed
in is never mutated, so references handed out earlier stay stable.
"""

from bisect import insort
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .entry import MOOD_GRADES, Entry, month_key, sort_entries_desc

EntriesByMonth = dict[str, dict[str, Entry]]
MoodCounts = dict[str, int]
MonthDateKeysIndex = dict[str, list[str]]

T = TypeVar("T")


def empty_mood_counts() -> MoodCounts:
    return {grade: 0 for grade in MOOD_GRADES}


@dataclass
class MonthBucket:
    """Distribution of entries for one calendar month."""

    total: int = 0
    counts: MoodCounts = field(default_factory=empty_mood_counts)


YearIndex = dict[int, dict[int, MonthBucket]]


def _year_month(date_key: str) -> tuple[int, int]:
    """YYYY-MM-DD -> (year, zero-based month index)."""
    return int(date_key[:4]), int(date_key[5:7]) - 1


# ============== Full rebuilds ==============


def build_by_month(entries: Mapping[str, Entry]) -> EntriesByMonth:
    grouped: EntriesByMonth = {}
    for date_key, entry in entries.items():
        grouped.setdefault(month_key(date_key), {})[date_key] = entry
    return grouped


def build_sorted_desc(entries: Mapping[str, Entry]) -> list[Entry]:
    return sort_entries_desc(list(entries.values()))


def build_mood_counts(entries: Mapping[str, Entry]) -> MoodCounts:
    counts = empty_mood_counts()
    for entry in entries.values():
        counts[entry.mood] += 1
    return counts


def build_month_date_keys(entries: Mapping[str, Entry]) -> MonthDateKeysIndex:
    index: MonthDateKeysIndex = {}
    for date_key in entries:
        index.setdefault(month_key(date_key), []).append(date_key)
    for keys in index.values():
        keys.sort()
    return index


def build_year_index(entries: Mapping[str, Entry]) -> YearIndex:
    index: YearIndex = {}
    for entry in entries.values():
        year, month0 = _year_month(entry.date)
        bucket = index.setdefault(year, {}).setdefault(month0, MonthBucket())
        bucket.total += 1
        bucket.counts[entry.mood] += 1
    return index


# ============== Incremental updates ==============


def upsert_by_month(index: EntriesByMonth, entry: Entry) -> EntriesByMonth:
    mk = month_key(entry.date)
    month = {**index.get(mk, {}), entry.date: entry}
    return {**index, mk: month}


def remove_by_month(index: EntriesByMonth, date_key: str) -> EntriesByMonth:
    mk = month_key(date_key)
    month = index.get(mk)
    if not month or date_key not in month:
        return index
    month = {k: v for k, v in month.items() if k != date_key}
    nxt = dict(index)
    if month:
        nxt[mk] = month
    else:
        del nxt[mk]
    return nxt


def _insert_index_desc(items: list[Entry], date_key: str) -> int:
    """Binary search for the slot keeping items newest-first."""
    lo, hi = 0, len(items)
    while lo < hi:
        mid = (lo + hi) // 2
        if items[mid].date < date_key:
            hi = mid
        else:
            lo = mid + 1
    return lo


def upsert_sorted_desc(items: list[Entry], entry: Entry) -> list[Entry]:
    nxt = [e for e in items if e.date != entry.date]
    nxt.insert(_insert_index_desc(nxt, entry.date), entry)
    return nxt


def remove_sorted_desc(items: list[Entry], date_key: str) -> list[Entry]:
    if not any(e.date == date_key for e in items):
        return items
    return [e for e in items if e.date != date_key]


def upsert_mood_counts(counts: MoodCounts, prev: Entry | None, entry: Entry) -> MoodCounts:
    nxt = dict(counts)
    if prev is not None:
        nxt[prev.mood] = max(0, nxt.get(prev.mood, 0) - 1)
    nxt[entry.mood] = nxt.get(entry.mood, 0) + 1
    return nxt


def remove_mood_counts(counts: MoodCounts, prev: Entry) -> MoodCounts:
    nxt = dict(counts)
    nxt[prev.mood] = max(0, nxt.get(prev.mood, 0) - 1)
    return nxt


def upsert_month_date_keys(index: MonthDateKeysIndex, date_key: str) -> MonthDateKeysIndex:
    mk = month_key(date_key)
    keys = index.get(mk, [])
    if date_key in keys:
        return index
    keys = list(keys)
    insort(keys, date_key)
    return {**index, mk: keys}


def remove_month_date_keys(index: MonthDateKeysIndex, date_key: str) -> MonthDateKeysIndex:
    mk = month_key(date_key)
    keys = index.get(mk)
    if not keys or date_key not in keys:
        return index
    keys = [k for k in keys if k != date_key]
    nxt = dict(index)
    if keys:
        nxt[mk] = keys
    else:
        del nxt[mk]
    return nxt


def upsert_year_index(index: YearIndex, prev: Entry | None, entry: Entry) -> YearIndex:
    year, month0 = _year_month(entry.date)
    months = index.get(year, {})
    base = months.get(month0, MonthBucket())
    counts = dict(base.counts)
    if prev is not None:
        counts[prev.mood] = max(0, counts.get(prev.mood, 0) - 1)
    counts[entry.mood] = counts.get(entry.mood, 0) + 1
    # Total only grows for a date seen for the first time
    bucket = MonthBucket(total=base.total if prev is not None else base.total + 1, counts=counts)
    return {**index, year: {**months, month0: bucket}}


def remove_year_index(index: YearIndex, prev: Entry) -> YearIndex:
    year, month0 = _year_month(prev.date)
    months = index.get(year)
    base = months.get(month0) if months else None
    if base is None:
        return index
    total = max(0, base.total - 1)
    nxt = dict(index)
    if total == 0:
        remaining = {m: b for m, b in months.items() if m != month0}
        if remaining:
            nxt[year] = remaining
        else:
            del nxt[year]
        return nxt
    counts = dict(base.counts)
    counts[prev.mood] = max(0, counts.get(prev.mood, 0) - 1)
    nxt[year] = {**months, month0: MonthBucket(total=total, counts=counts)}
    return nxt


# ============== Cache cell ==============


class IndexCell(Generic[T]):
    """
    A derived index that is either fresh (holds a value) or stale.

    Writes call update() which only touches a fresh value; a stale cell is
    left for the next get_or_build() to rebuild lazily.
    """

    def __init__(self, name: str):
        self.name = name
        self._value: T | None = None
        self._fresh = False

    @property
    def is_fresh(self) -> bool:
        return self._fresh

    @property
    def value(self) -> T | None:
        return self._value if self._fresh else None

    def get_or_build(self, builder: Callable[[], T]) -> T:
        if not self._fresh:
            self._value = builder()
            self._fresh = True
        return self._value

    def update(self, fn: Callable[[T], T]) -> None:
        if self._fresh:
            self._value = fn(self._value)

    def invalidate(self) -> None:
        self._value = None
        self._fresh = False
