"""Command-line interface for mediaqueue.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set server URL, user key and upload policy
- send: Queue a photo or video for upload
- run: Run the upload engine until interrupted
- status: Show server status, queue and recent history
- history: List upload history / clear it
- health: Check the server health endpoint
- contacts: List (and refresh) recipients
"""

from __future__ import annotations

import click

from mediaqueue.client.cli.config import (
    build_engine,
    get_config_dir,
    get_config_file,
    get_endpoint_config,
    load_config,
    save_config,
    setup_logging,
)
from mediaqueue.client.cli.configure import configure
from mediaqueue.client.cli.status import contacts, health, history, status
from mediaqueue.client.cli.upload import run, send


@click.group()
@click.version_option(package_name="mediaqueue")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs on stderr.")
def cli(verbose: bool) -> None:
    """mediaqueue - Offline-tolerant media upload queue."""
    setup_logging(verbose)


# Setup
cli.add_command(configure)

# Upload commands
cli.add_command(send)
cli.add_command(run)

# Status commands
cli.add_command(status)
cli.add_command(history)
cli.add_command(health)
cli.add_command(contacts)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "build_engine",
    "get_config_dir",
    "get_config_file",
    "get_endpoint_config",
    "load_config",
    "save_config",
]
