"""Configuration utilities for the mediaqueue CLI.

This module provides shared configuration functions used across CLI commands,
and wires the upload engine from the saved configuration.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mediaqueue.client.connectivity import SocketConnectivityOracle
from mediaqueue.client.contacts import ContactDirectory
from mediaqueue.client.health import RemoteHealthProbe
from mediaqueue.client.state import LocalState
from mediaqueue.client.upload import (
    HistoryLog,
    HTTPTransferExecutor,
    QueueProcessor,
    QueueStore,
)
from mediaqueue.core.config import EndpointConfig, ProcessorSettings
from mediaqueue.core.types import TransportType

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_config_dir() -> Path:
    """Get the configuration directory for mediaqueue.

    Returns:
        Path to ~/.mediaqueue or equivalent.
    """
    return Path.home() / ".mediaqueue"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the state database."""
    return get_config_dir() / "state.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_endpoint_config() -> EndpointConfig | None:
    """Read the endpoint config fresh from disk.

    Returns:
        EndpointConfig, or None if base URL or user key is not set.
    """
    return EndpointConfig.from_mapping(load_config())


def setup_logging(verbose: bool) -> None:
    """Send mediaqueue logs to stderr when verbose."""
    if not verbose:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    mediaqueue_logger = logging.getLogger("mediaqueue")
    if not mediaqueue_logger.handlers:
        mediaqueue_logger.addHandler(handler)
    mediaqueue_logger.setLevel(logging.DEBUG)


@dataclass
class Engine:
    """The upload engine wired from the saved configuration."""

    state: LocalState
    processor: QueueProcessor
    health_probe: RemoteHealthProbe
    connectivity: SocketConnectivityOracle
    contacts: ContactDirectory

    def close(self) -> None:
        """Stop background threads and close the state database."""
        self.processor.stop()
        self.connectivity.stop()
        self.health_probe.stop()
        self.state.close()


def build_engine() -> Engine:
    """Create the processor and its collaborators.

    Nothing is started; callers decide which threads to run.
    """
    config = load_config()
    state = LocalState(get_state_db())
    health_probe = RemoteHealthProbe(get_endpoint_config)
    connectivity = SocketConnectivityOracle(
        transport=TransportType(config.get("transport", TransportType.UNKNOWN.value)),
        metered=bool(config.get("metered", False)),
    )
    processor = QueueProcessor(
        queue=QueueStore(state),
        history=HistoryLog(state),
        executor=HTTPTransferExecutor(get_endpoint_config),
        health_probe=health_probe,
        connectivity=connectivity,
        settings_provider=get_endpoint_config,
        settings=ProcessorSettings.from_config(config),
    )
    contacts = ContactDirectory(state, get_endpoint_config)
    return Engine(
        state=state,
        processor=processor,
        health_probe=health_probe,
        connectivity=connectivity,
        contacts=contacts,
    )
