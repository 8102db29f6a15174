"""Configure command for the mediaqueue CLI.

Commands:
- configure: Set the server URL, user key and upload policy
"""

from __future__ import annotations

import click

from mediaqueue.client.cli.config import (
    get_endpoint_config,
    get_state_db,
    load_config,
    save_config,
)
from mediaqueue.client.contacts import ContactDirectory
from mediaqueue.client.state import LocalState
from mediaqueue.core.config import normalize_base_url
from mediaqueue.core.types import TransportType


@click.command()
@click.option("--url", "base_url", default=None, help="Server base URL (e.g., media.example.com).")
@click.option("--key", "user_key", default=None, help="Your user key.")
@click.option(
    "--unmetered-only/--allow-metered",
    default=None,
    help="Only upload over unmetered links (default: unmetered only).",
)
@click.option(
    "--metered/--not-metered",
    default=None,
    help="Treat this machine's network link as metered.",
)
@click.option(
    "--transport",
    type=click.Choice([t.value for t in TransportType]),
    default=None,
    help="Kind of network link this machine uses.",
)
@click.option("--max-retries", type=click.IntRange(min=0), default=None, help="Retries per upload.")
@click.option(
    "--interval",
    "process_interval",
    type=click.FloatRange(min=0),
    default=None,
    help="Minimum seconds between queue passes.",
)
def configure(
    base_url: str | None,
    user_key: str | None,
    unmetered_only: bool | None,
    metered: bool | None,
    transport: str | None,
    max_retries: int | None,
    process_interval: float | None,
) -> None:
    """Configure the media server and upload policy.

    Prompts for the server URL and user key when they are not set yet.
    """
    config = load_config()
    previous_key = config.get("user_key")

    if base_url is None and not config.get("base_url"):
        base_url = click.prompt("Server URL")
    if user_key is None and not config.get("user_key"):
        user_key = click.prompt("User key")

    if base_url is not None:
        config["base_url"] = normalize_base_url(base_url)
    if user_key is not None:
        config["user_key"] = user_key.strip()
    if unmetered_only is not None:
        config["unmetered_only"] = unmetered_only
    if metered is not None:
        config["metered"] = metered
    if transport is not None:
        config["transport"] = transport
    if max_retries is not None:
        config["max_retries"] = max_retries
    if process_interval is not None:
        config["process_interval"] = process_interval

    save_config(config)

    if previous_key and config.get("user_key") != previous_key:
        # Contacts are per user
        state = LocalState(get_state_db())
        try:
            ContactDirectory(state, get_endpoint_config).clear()
        finally:
            state.close()
        click.echo("User key changed; cleared cached contacts.")

    click.echo(f"Server: {config.get('base_url')}")
    endpoint = get_endpoint_config()
    if endpoint is not None and not endpoint.is_secure:
        click.echo("Warning: the user key will be sent over plain HTTP.", err=True)
    click.echo("Configuration saved.")
