"""Functional core - pure domain logic with no I/O."""

from .entry import (
    MAX_NOTE_LEN,
    MOOD_GRADES,
    Entry,
    create_entry,
    is_valid_date_key,
    is_valid_entry,
    is_valid_mood,
    mood_to_score,
    normalize_note,
    validate_entries_document,
)
from .errors import InvariantError, ValidationError
from .indexes import IndexCell, MonthBucket
from .latest_only import RequestGuard
from .strictness import Strictness

__all__ = [
    # Entry model
    "MAX_NOTE_LEN",
    "MOOD_GRADES",
    "Entry",
    "create_entry",
    "is_valid_date_key",
    "is_valid_entry",
    "is_valid_mood",
    "mood_to_score",
    "normalize_note",
    "validate_entries_document",
    # Indexes
    "IndexCell",
    "MonthBucket",
    # Concurrency helpers
    "RequestGuard",
    # Errors
    "InvariantError",
    "ValidationError",
    "Strictness",
]
