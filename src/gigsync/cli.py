"""CLI for gigsync: inspect and edit synced opportunity calendars."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TypeVar

import click

from gigsync import __version__
from gigsync.calendar.errors import CalendarError, sanitize_error_message
from gigsync.calendar.models import CalendarEvent, EventRange
from gigsync.calendar.session import CalendarSession, open_session
from gigsync.config import ConfigError, GigsyncConfig, load_config
from gigsync.core.logging import configure_logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to gigsync.toml (default: $GIGSYNC_CONFIG or ./gigsync.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """gigsync: keep freelance opportunities in sync with Google Calendar."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)
    configure_logging(config.logging.level, config.logging.format, config.logging.log_file)
    ctx.obj = config


def _run(
    config: GigsyncConfig,
    operation: Callable[[CalendarSession], Awaitable[T]],
) -> T:
    """Open a session, run *operation* in a fresh event loop and close the session."""

    async def _main() -> T:
        session = open_session(config)
        async with session:
            return await operation(session)

    try:
        return asyncio.run(_main())
    except CalendarError as exc:
        logger.debug("Calendar operation failed", exc_info=True)
        click.echo(f"Error: {sanitize_error_message(exc)}", err=True)
        sys.exit(1)


def _format_event(event: CalendarEvent) -> str:
    if event.all_day:
        when = f"{event.start_at.date().isoformat()} (all day)"
    else:
        when = f"{event.start_at.isoformat()} -> {event.end_at.isoformat()}"
    return f"{when:<55} {event.calendar_id:<30} {event.title} [{event.event_id}]"


def _echo_events(events: list[CalendarEvent] | tuple[CalendarEvent, ...]) -> None:
    if not events:
        click.echo("No events found")
        return
    for event in sorted(events, key=lambda item: item.start_at):
        click.echo(_format_event(event))


@cli.command("calendars")
@click.pass_obj
def calendars_cmd(config: GigsyncConfig) -> None:
    """List calendars; selected ones are marked with '*'."""

    async def _op(session: CalendarSession) -> None:
        await session.store.load_calendars()
        snapshot = session.store.snapshot()
        click.echo(f"  {'Id':<40} {'Access':<16} {'Group':<6} {'Summary'}")
        click.echo("-" * 80)
        for calendar in snapshot.calendars:
            marker = "*" if calendar.id in snapshot.selected_ids else " "
            access = calendar.access_role or "-"
            click.echo(
                f"{marker} {calendar.id:<40} {access:<16} {calendar.group:<6} {calendar.summary}"
            )

    _run(config, _op)


@cli.command("events")
@click.option("--calendar", "calendar_ids", multiple=True, help="Calendar id (repeatable)")
@click.option("--days", type=click.IntRange(min=1), default=7, show_default=True)
@click.pass_obj
def events_cmd(config: GigsyncConfig, calendar_ids: tuple[str, ...], days: int) -> None:
    """List upcoming events of the selected calendars."""
    if calendar_ids:
        config = dataclasses.replace(
            config, sync=dataclasses.replace(config.sync, selected_calendars=list(calendar_ids))
        )
    now = datetime.now(UTC)
    window = EventRange(start=now, end=now + timedelta(days=days))

    async def _op(session: CalendarSession) -> None:
        await session.store.init(window)
        _echo_events(session.store.snapshot().events)

    _run(config, _op)


@cli.command("find-tag")
@click.argument("tag_value")
@click.option("--calendar", "calendar_ids", multiple=True, help="Calendar id (repeatable)")
@click.pass_obj
def find_tag_cmd(config: GigsyncConfig, tag_value: str, calendar_ids: tuple[str, ...]) -> None:
    """Find events correlated with an opportunity id."""

    async def _op(session: CalendarSession) -> None:
        await session.store.load_calendars()
        _echo_events(await session.store.find_by_tag(tag_value, calendar_ids or None))

    _run(config, _op)


@cli.command("tag")
@click.argument("calendar_id")
@click.argument("event_id")
@click.argument("tag_value")
@click.pass_obj
def tag_cmd(config: GigsyncConfig, calendar_id: str, event_id: str, tag_value: str) -> None:
    """Correlate an event with an opportunity id."""

    async def _op(session: CalendarSession) -> None:
        await session.store.load_calendars()
        event = await session.store.set_tag(
            calendar_id, event_id, private={session.store.tag_key: tag_value}
        )
        click.echo(f"Tagged {event.event_id} with {session.store.tag_key}={tag_value}")

    _run(config, _op)


@cli.command("purge-tag")
@click.argument("tag_value")
@click.option("--calendar", "calendar_id", required=True, help="Calendar to purge")
@click.pass_obj
def purge_tag_cmd(config: GigsyncConfig, tag_value: str, calendar_id: str) -> None:
    """Delete every event correlated with an opportunity id from one calendar."""

    async def _op(session: CalendarSession) -> int:
        await session.store.load_calendars()
        result = await session.store.purge_by_tag(tag_value, calendar_id)
        click.echo(f"Deleted {result.succeeded} of {result.attempted} event(s)")
        for exc in result.failed:
            click.echo(f"  failed: {sanitize_error_message(exc)}", err=True)
        return len(result.failed)

    if _run(config, _op):
        sys.exit(1)


@cli.command("move")
@click.argument("source_calendar_id")
@click.argument("event_id")
@click.argument("dest_calendar_id")
@click.pass_obj
def move_cmd(
    config: GigsyncConfig, source_calendar_id: str, event_id: str, dest_calendar_id: str
) -> None:
    """Move an event to another calendar."""

    async def _op(session: CalendarSession) -> None:
        await session.store.load_calendars()
        moved = await session.store.move_event(source_calendar_id, event_id, dest_calendar_id)
        click.echo(f"Moved to {dest_calendar_id}: {moved.event_id}")

    _run(config, _op)


@cli.command("split")
@click.argument("calendar_id")
@click.argument("instance_id")
@click.pass_obj
def split_cmd(config: GigsyncConfig, calendar_id: str, instance_id: str) -> None:
    """Split a recurring series at an instance ("this and following")."""

    async def _op(session: CalendarSession) -> None:
        await session.store.load_calendars()
        created = await session.store.split_at_instance(calendar_id, instance_id)
        click.echo(f"New series starts at {created.start_at.isoformat()}: {created.event_id}")

    _run(config, _op)


@cli.command("delete-series")
@click.argument("calendar_id")
@click.argument("instance_id")
@click.pass_obj
def delete_series_cmd(config: GigsyncConfig, calendar_id: str, instance_id: str) -> None:
    """Delete the whole recurring series an instance belongs to."""

    async def _op(session: CalendarSession) -> None:
        await session.store.load_calendars()
        master_id = await session.store.delete_series(calendar_id, instance_id)
        click.echo(f"Deleted series {master_id}")

    _run(config, _op)
