"""Moodly - local-first mood journal storage."""

__version__ = "0.1.0"
