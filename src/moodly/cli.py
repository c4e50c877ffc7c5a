"""Moodly CLI - inspect and edit the local mood store."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict

import click
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .app import AppContext, create_context
from .config import load_config
from .core.entry import MOOD_GRADES, Entry, create_entry, mood_to_score
from .core.errors import ValidationError
from .seed import seed_demo_entries_if_empty
from .session import schedule_session_warmup
from .settings import CalendarMoodStyle, Settings


def _context() -> AppContext:
    config = load_config()
    # The CLI is a developer tool: surface bad input instead of skipping it
    config.strict = True
    return create_context(config)


def _entry_json(entry: Entry) -> dict:
    return entry.to_dict()


def _entry_line(entry: Entry) -> str:
    note = f"  {entry.note}" if entry.note else ""
    return f"{entry.date}  [{entry.mood:2}]{note}"


def _settings_json(settings: Settings) -> dict:
    return settings.to_dict()


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(package_name="moodly")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Moodly - local mood journal storage."""
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.DEBUG if verbose else logging.WARNING,
    )


# ============== Entries ==============


@main.group()
def entries():
    """List and edit mood entries."""
    pass


@entries.command("list")
@click.option("--month", help="Only entries for YYYY-MM")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def entries_list(month: str | None, as_json: bool):
    """List entries, newest first."""
    ctx = _context()

    async def run() -> list[Entry]:
        items = await ctx.entries.get_sorted_desc()
        if month:
            items = [e for e in items if e.date.startswith(f"{month}-")]
        return items

    items = asyncio.run(run())

    if as_json:
        click.echo(json.dumps([_entry_json(e) for e in items], indent=2))
        return

    if not items:
        click.echo("No entries.")
        return

    for entry in items:
        click.echo(_entry_line(entry))


@entries.command("show")
@click.argument("date")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def entries_show(date: str, as_json: bool):
    """Show the entry for DATE (YYYY-MM-DD)."""
    ctx = _context()
    try:
        entry = asyncio.run(ctx.entries.get_entry(date))
    except ValidationError as e:
        _fail(str(e))

    if entry is None:
        click.echo(f"No entry for {date}.")
        return

    if as_json:
        click.echo(json.dumps(_entry_json(entry), indent=2))
    else:
        click.echo(_entry_line(entry))


@entries.command("set")
@click.argument("date")
@click.argument("mood", type=click.Choice(MOOD_GRADES))
@click.argument("note", required=False, default="")
def entries_set(date: str, mood: str, note: str):
    """Create or update the entry for DATE."""
    ctx = _context()
    try:
        entry = create_entry(date, mood, note)
        stored = asyncio.run(ctx.entries.upsert(entry))
    except ValidationError as e:
        _fail(str(e))
    except OSError as e:
        _fail(f"Could not save entry: {e}")

    click.echo(f"Saved {stored.date} [{stored.mood}]")


@entries.command("delete")
@click.argument("date")
def entries_delete(date: str):
    """Delete the entry for DATE."""
    ctx = _context()
    try:
        asyncio.run(ctx.entries.delete(date))
    except ValidationError as e:
        _fail(str(e))
    except OSError as e:
        _fail(f"Could not delete entry: {e}")

    click.echo(f"Deleted {date}")


@entries.command("clear")
@click.option("--yes", is_flag=True, help="Confirm deleting every entry")
def entries_clear(yes: bool):
    """Delete every entry."""
    if not yes:
        _fail("Refusing to clear without --yes")

    ctx = _context()
    try:
        asyncio.run(ctx.entries.clear_all())
    except OSError as e:
        _fail(f"Could not clear entries: {e}")

    click.echo("Cleared all entries.")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def stats(as_json: bool):
    """Show entry counts per mood."""
    ctx = _context()
    result = asyncio.run(ctx.entries.get_mood_stats())
    scored = sum(mood_to_score(grade) * n for grade, n in result.mood_counts.items())
    average = round(scored / result.total_entries, 2) if result.total_entries else None

    if as_json:
        click.echo(
            json.dumps(
                {"total": result.total_entries, "average_score": average, "moods": result.mood_counts},
                indent=2,
            )
        )
        return

    click.echo(f"Total entries: {result.total_entries}")
    if average is not None:
        click.echo(f"Average score: {average:.2f} (A+ = 5, F = 0)")
    for grade in MOOD_GRADES:
        click.echo(f"  {grade:2}  {result.mood_counts.get(grade, 0)}")


# ============== Settings ==============


@main.group(invoke_without_command=True)
@click.pass_context
def settings(click_ctx):
    """Show or change display settings."""
    if click_ctx.invoked_subcommand is None:
        click_ctx.invoke(settings_show)


@settings.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def settings_show(as_json: bool = False):
    """Show current settings."""
    ctx = _context()
    current = asyncio.run(ctx.settings.get())

    if as_json:
        click.echo(json.dumps(_settings_json(current), indent=2))
        return

    click.echo(f"Calendar mood style:       {current.calendar_mood_style.value}")
    click.echo(f"Month card matches screen: {'on' if current.month_card_matches_screen_background else 'off'}")


@settings.command("style")
@click.argument("style", type=click.Choice([s.value for s in CalendarMoodStyle]))
def settings_style(style: str):
    """Set the calendar mood style."""
    ctx = _context()
    try:
        asyncio.run(ctx.settings.set_calendar_mood_style(CalendarMoodStyle(style)))
    except OSError as e:
        _fail(f"Could not save settings: {e}")
    click.echo(f"Calendar mood style set to {style}.")


@settings.command("month-background")
@click.argument("state", type=click.Choice(["on", "off"]))
def settings_month_background(state: str):
    """Toggle whether month cards match the screen background."""
    ctx = _context()
    try:
        asyncio.run(ctx.settings.set_month_card_matches_screen_background(state == "on"))
    except OSError as e:
        _fail(f"Could not save settings: {e}")
    click.echo(f"Month card background matching {state}.")


# ============== Maintenance ==============


@main.command()
def seed():
    """Seed demo entries into an empty store."""
    ctx = _context()
    seeded = asyncio.run(seed_demo_entries_if_empty(ctx.entries, ctx.kv))
    if seeded:
        click.echo("Demo entries seeded.")
    else:
        click.echo("Nothing seeded.")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def warm(as_json: bool):
    """Run the startup cache warmup and show what it built."""
    ctx = _context()

    async def run() -> None:
        scheduler = AsyncIOScheduler()
        finished = asyncio.Event()
        scheduler.add_listener(
            lambda event: finished.set(),
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED,
        )
        schedule_session_warmup(scheduler, ctx.entries, ctx.settings, ctx.config.warmup_delay_seconds)
        scheduler.start()
        try:
            await finished.wait()
        finally:
            scheduler.shutdown(wait=False)

    asyncio.run(run())
    d = ctx.entries.diagnostics()

    if as_json:
        click.echo(json.dumps(asdict(d), indent=2))
        return

    click.echo(f"Entries: {d.entries_count}  months: {d.months_indexed}  years: {d.years_indexed}")
    click.echo(f"Indexes ready: {'yes' if d.has_sorted and d.has_year_index else 'no'}")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def quarantine(as_json: bool):
    """List quarantined (corrupt) payload backups."""
    ctx = _context()
    prefixes = (ctx.entries.corrupt_prefix, ctx.settings.corrupt_prefix)
    keys = sorted(k for k in asyncio.run(ctx.kv.get_all_keys()) if k.startswith(prefixes))

    if as_json:
        click.echo(json.dumps(keys, indent=2))
        return

    if not keys:
        click.echo("No quarantined payloads.")
        return

    for key in keys:
        click.echo(key)


if __name__ == "__main__":
    main()
