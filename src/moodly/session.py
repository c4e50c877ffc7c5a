"""Session warmup: prime in-memory caches after the first paint."""

import asyncio
import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from .entries import EntryStore
from .settings import SettingsStore

logger = logging.getLogger(__name__)

WARMUP_JOB_ID = "session_warmup"


async def warm_session(entries: EntryStore, settings: SettingsStore) -> None:
    """Load both stores concurrently and build every entries index."""
    loop = asyncio.get_running_loop()
    started = loop.time()
    await asyncio.gather(entries.warm_all(), settings.get())
    log_session_diagnostics(entries, total_ms=(loop.time() - started) * 1000)


def schedule_session_warmup(
    scheduler: BaseScheduler,
    entries: EntryStore,
    settings: SettingsStore,
    delay_seconds: float = 0.5,
) -> None:
    """
    Queue a one-shot warmup shortly after startup.

    Deferred on purpose so it never competes with the first render.
    """
    run_at = datetime.now(scheduler.timezone) + timedelta(seconds=delay_seconds)
    scheduler.add_job(
        warm_session,
        DateTrigger(run_date=run_at),
        args=[entries, settings],
        id=WARMUP_JOB_ID,
        replace_existing=True,
    )
    logger.info(f"Scheduled session warmup in {delay_seconds:.2f}s")


def log_session_diagnostics(entries: EntryStore, total_ms: float | None = None) -> None:
    """Log cache shape. Metadata only: counts and flags, never entry content."""
    d = entries.diagnostics()
    derived = [
        name
        for name, fresh in (
            ("sorted", d.has_sorted),
            ("byMonth", d.has_by_month),
            ("counts", d.has_mood_counts),
            ("monthDateKeys", d.has_month_date_keys),
            ("yearIndex", d.has_year_index),
        )
        if fresh
    ]
    timing = f" total_ms={total_ms:.1f}" if total_ms is not None else ""
    logger.info(
        f"Session ready: entries={d.entries_count} months={d.months_indexed} "
        f"years={d.years_indexed} derived={','.join(derived) or '-'} source={d.last_source}{timing}"
    )
