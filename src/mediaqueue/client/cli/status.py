"""Status commands for the mediaqueue CLI.

Commands:
- status: Show server availability, queued uploads and recent history
- history: List upload history (history clear: remove all entries)
- health: Check the server health endpoint
- contacts: List (and refresh) the recipient directory
"""

from __future__ import annotations

import sys
from datetime import datetime
from typing import TYPE_CHECKING

import click

from mediaqueue.client.cli.config import build_engine, get_endpoint_config
from mediaqueue.client.contacts import ContactsError
from mediaqueue.core.types import UploadStatus

if TYPE_CHECKING:
    from mediaqueue.client.upload import HistoryEntry

STATUS_SYMBOLS = {
    UploadStatus.PENDING: "…",
    UploadStatus.UPLOADING: "↑",
    UploadStatus.COMPLETED: "✓",
    UploadStatus.FAILED: "✗",
}


def format_timestamp(timestamp_ms: int) -> str:
    """Format a millisecond timestamp in local time."""
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_entry(entry: HistoryEntry) -> str:
    """One history line."""
    line = (
        f"  {STATUS_SYMBOLS[entry.status]} {format_timestamp(entry.timestamp)}  "
        f"{entry.media_kind.value:<5}  {entry.status.value}"
    )
    if entry.status == UploadStatus.UPLOADING and entry.progress is not None:
        line += f" {entry.progress}%"
    if entry.error:
        line += f"  ({entry.error})"
    return line


@click.command()
@click.option("--offline", is_flag=True, help="Skip the server health check.")
@click.option("--limit", type=click.IntRange(min=0), default=10, help="History entries to show.")
def status(offline: bool, limit: int) -> None:
    """Show server status, queued uploads and recent history."""
    config = get_endpoint_config()
    click.echo(f"Server: {config.base_url if config else 'not configured'}")

    engine = build_engine()
    try:
        processor = engine.processor
        if config is not None and not offline:
            if engine.health_probe.check():
                click.echo(f"Server status: online ({engine.health_probe.latency_ms} ms)")
            else:
                click.echo("Server status: offline")

        items = processor.pending_items()
        click.echo(f"\nQueued uploads: {len(items)}")
        for item in items:
            names = [engine.contacts.display_name(r) or r for r in item.recipients]
            click.echo(
                f"  {item.id}  {item.media_kind.value:<5}  {item.status.value:<9}  "
                f"retries={item.retry_count or 0}  to: {', '.join(names) or '-'}"
            )

        entries = processor.history_entries()
        click.echo(f"\nHistory: {len(entries)} entries")
        for entry in entries[-limit:] if limit else []:
            click.echo(format_entry(entry))
    finally:
        engine.close()


@click.group(invoke_without_command=True)
@click.pass_context
def history(ctx: click.Context) -> None:
    """List upload history."""
    if ctx.invoked_subcommand is not None:
        return

    engine = build_engine()
    try:
        entries = engine.processor.history_entries()
        if not entries:
            click.echo("No uploads yet.")
            return
        for entry in entries:
            click.echo(format_entry(entry))
    finally:
        engine.close()


@history.command("clear")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def clear_history(yes: bool) -> None:
    """Remove all history entries. Queued uploads are kept."""
    if not yes and not click.confirm("Clear the upload history?"):
        return

    engine = build_engine()
    try:
        count = engine.processor.clear_history()
    finally:
        engine.close()
    click.echo(f"Cleared {count} history entries.")


@click.command()
def health() -> None:
    """Check whether the media server is reachable."""
    config = get_endpoint_config()
    if config is None:
        click.echo("Error: Not configured. Run 'mediaqueue configure' first.", err=True)
        sys.exit(1)

    engine = build_engine()
    try:
        available = engine.health_probe.check()
        latency_ms = engine.health_probe.latency_ms
    finally:
        engine.close()

    if available:
        click.echo(f"{config.base_url} is online ({latency_ms} ms)")
    else:
        click.echo(f"{config.base_url} is offline", err=True)
        sys.exit(1)


@click.command()
@click.option("--refresh", is_flag=True, help="Fetch contacts from the server first.")
def contacts(refresh: bool) -> None:
    """List known recipients."""
    engine = build_engine()
    try:
        if refresh:
            try:
                engine.contacts.refresh()
            except ContactsError as e:
                click.echo(f"Error: {e}", err=True)
                sys.exit(1)
        known = engine.contacts.contacts()
    finally:
        engine.close()

    if not known:
        click.echo("No contacts. Use --refresh to fetch them.")
        return
    for contact in known:
        click.echo(f"  {contact.id}  {contact.display_name}")
