"""Upload commands for the mediaqueue CLI.

Commands:
- send: Queue a photo or video for upload
- run: Run the upload engine until interrupted
"""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path

import click

from mediaqueue.client.cli.config import build_engine, get_endpoint_config
from mediaqueue.client.upload import QueueEvent, TextOverlay
from mediaqueue.core.types import MediaKind, UploadStatus

VIDEO_SUFFIXES = {".mp4", ".mov", ".m4v", ".3gp", ".webm"}
QUEUE_POLL_INTERVAL = 1.0  # seconds between checks for items queued by other processes


def guess_media_kind(path: Path) -> MediaKind:
    """Guess the media kind from the file extension."""
    return MediaKind.VIDEO if path.suffix.lower() in VIDEO_SUFFIXES else MediaKind.IMAGE


def parse_overlays(raw: str | None) -> list[TextOverlay]:
    """Parse a JSON array of overlays.

    Raises:
        click.BadParameter: If the value is not a JSON array of objects.
    """
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="--overlays") from e
    if not isinstance(data, list) or not all(isinstance(o, dict) for o in data):
        raise click.BadParameter("expected a JSON array of objects", param_hint="--overlays")
    return [TextOverlay.from_dict(o) for o in data]


@click.command()
@click.argument("media", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--kind",
    type=click.Choice([k.value for k in MediaKind]),
    default=None,
    help="Media kind (default: guessed from the file extension).",
)
@click.option("--to", "recipients", multiple=True, help="Recipient ID (repeatable).")
@click.option("--overlays", default=None, help="Text overlays as a JSON array.")
@click.option("--wait", is_flag=True, help="Upload now and wait for the result.")
@click.option("--timeout", type=float, default=None, help="Maximum seconds to wait.")
def send(
    media: Path,
    kind: str | None,
    recipients: tuple[str, ...],
    overlays: str | None,
    wait: bool,
    timeout: float | None,
) -> None:
    """Queue MEDIA for upload to the given recipients.

    The file is recorded in the upload queue and survives restarts.
    Use --wait to upload immediately, otherwise 'mediaqueue run' picks it up.
    """
    media_kind = MediaKind(kind) if kind else guess_media_kind(media)
    text_overlays = parse_overlays(overlays)

    engine = build_engine()
    try:
        processor = engine.processor
        item_id = processor.enqueue(
            str(media.resolve()),
            media_kind,
            list(recipients),
            text_overlays,
        )
        click.echo(f"Queued {media.name} ({media_kind.value}) as {item_id}")

        if not wait:
            click.echo("Run 'mediaqueue run' to upload queued media.")
            return

        processor.start()
        if not processor.wait_until_idle(timeout):
            click.echo("Timed out waiting for the upload; it stays queued.", err=True)
            sys.exit(1)

        entry = next((e for e in processor.history_entries() if e.id == item_id), None)
        if entry is None or entry.status == UploadStatus.PENDING:
            reason = entry.error if entry and entry.error else None
            if reason is None:
                reason = "server offline" if not processor.server_available else "waiting for network"
            click.echo(f"Upload deferred ({reason}); it stays queued.")
        elif entry.status == UploadStatus.COMPLETED:
            click.echo("Uploaded.")
        else:
            click.echo(f"Upload failed: {entry.error}", err=True)
            sys.exit(1)
    finally:
        engine.close()


@click.command()
def run() -> None:
    """Run the upload engine in the foreground.

    Uploads queued media whenever the server and network allow it.
    Press Ctrl+C to stop; queued uploads are kept.
    """
    if get_endpoint_config() is None:
        click.echo("Error: Not configured. Run 'mediaqueue configure' first.", err=True)
        sys.exit(1)

    engine = build_engine()
    processor = engine.processor

    def on_event(event: QueueEvent) -> None:
        if event.status == UploadStatus.COMPLETED:
            click.echo(f"  ↑ {event.item_id}")
        elif event.status == UploadStatus.FAILED:
            click.echo(f"  ✗ {event.item_id}: {event.error}")
        elif event.status == UploadStatus.PENDING and event.error:
            click.echo(f"  ↻ {event.item_id} (retry {event.retry_count}): {event.error}")

    processor.add_listener(on_event)
    engine.connectivity.start()
    engine.health_probe.start()
    processor.start()

    click.echo(f"Upload engine running ({len(processor.pending_items())} queued).")
    click.echo("Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(QUEUE_POLL_INTERVAL)
            # Picks up `mediaqueue send` from other shells
            processor.refresh()
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        engine.close()
