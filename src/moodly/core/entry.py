"""Mood entry model and validators - no I/O dependencies."""

import math
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date as _date
from typing import Any

from .errors import ValidationError
from .strictness import Strictness

# Ordered best to worst
MOOD_GRADES: tuple[str, ...] = ("A+", "A", "B", "C", "D", "F")
VALID_MOODS: frozenset[str] = frozenset(MOOD_GRADES)

MAX_NOTE_LEN = 200

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_WHITESPACE_RE = re.compile(r"\s+")

_MOOD_SCORES = {"A+": 5, "A": 4, "B": 3, "C": 2, "D": 1, "F": 0}


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Entry:
    """One mood entry per local calendar day."""

    date: str
    mood: str
    note: str
    created_at: float
    updated_at: float

    @property
    def month_key(self) -> str:
        return month_key(self.date)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return {
            "date": self.date,
            "mood": self.mood,
            "note": self.note,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Entry":
        """Create Entry from its on-disk JSON shape. Does not validate."""
        return cls(
            date=data["date"],
            mood=data["mood"],
            note=data["note"],
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
        )


def month_key(date_key: str) -> str:
    """YYYY-MM-DD -> YYYY-MM."""
    return date_key[:7]


def is_valid_date_key(value: object) -> bool:
    """
    Check a YYYY-MM-DD key names a real calendar day.

    Lexical shape first, then a round-trip through date construction so that
    impossible days (2026-02-30) and non-leap Feb 29ths are rejected.
    """
    if not isinstance(value, str) or not _DATE_KEY_RE.match(value):
        return False
    try:
        parsed = _date(int(value[0:4]), int(value[5:7]), int(value[8:10]))
    except ValueError:
        return False
    return parsed.isoformat() == value


def is_valid_mood(value: object) -> bool:
    return isinstance(value, str) and value in VALID_MOODS


def normalize_note(raw: object) -> str:
    """Collapse whitespace runs (newlines included), trim, clamp to MAX_NOTE_LEN."""
    text = "" if raw is None else str(raw)
    collapsed = _WHITESPACE_RE.sub(" ", text).strip()
    return collapsed[:MAX_NOTE_LEN]


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def is_valid_entry(value: object) -> bool:
    """Structural check on an Entry or a raw on-disk mapping."""
    if isinstance(value, Entry):
        value = value.to_dict()
    if not isinstance(value, Mapping):
        return False
    created = value.get("createdAt")
    updated = value.get("updatedAt")
    return (
        is_valid_date_key(value.get("date"))
        and is_valid_mood(value.get("mood"))
        and isinstance(value.get("note"), str)
        and _is_number(created)
        and _is_number(updated)
        and created <= updated
    )


def validate_entries_document(raw: object) -> dict[str, Entry]:
    """
    Keep only well-formed entries from an arbitrary parsed JSON value.

    An entry survives when its key is a valid date, the value passes
    is_valid_entry, and the inner date equals the key. Anything else
    (including a non-object document) is dropped silently.
    """
    out: dict[str, Entry] = {}
    if not isinstance(raw, dict):
        return out
    for key, value in raw.items():
        if not is_valid_date_key(key):
            continue
        if not is_valid_entry(value):
            continue
        if value["date"] != key:
            continue
        out[key] = Entry.from_dict(value)
    return out


def mood_to_score(mood: str) -> int:
    """Monotonic analytics score: A+ = 5 down to F = 0."""
    try:
        return _MOOD_SCORES[mood]
    except KeyError:
        raise ValidationError(f"Invalid mood grade: {mood!r}") from None


def sort_entries_desc(entries: list[Entry]) -> list[Entry]:
    """Newest first by date key. Date keys are unique so there are no ties."""
    return sorted(entries, key=lambda e: e.date, reverse=True)


def create_entry(
    date: str,
    mood: str,
    note: str = "",
    *,
    now: int | None = None,
    strictness: Strictness = Strictness.STRICT,
) -> Entry:
    """
    Build a well-formed Entry with both timestamps set to now.

    In strict mode an invalid date key or mood raises ValidationError. In
    lenient mode the entry is returned as-is and EntryStore.upsert guards it.
    """
    if strictness is Strictness.STRICT:
        if not is_valid_date_key(date):
            raise ValidationError(f"Invalid date key: {date!r}")
        if not is_valid_mood(mood):
            raise ValidationError(f"Invalid mood grade: {mood!r}")
    ts = now_ms() if now is None else now
    return Entry(
        date=date,
        mood=mood,
        note=normalize_note(note),
        created_at=ts,
        updated_at=ts,
    )
