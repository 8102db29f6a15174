"""Network reachability reporting.

This module provides:
- ConnectionState: Snapshot of reachability and transport type
- ConnectivityOracle: Protocol consumed by the queue processor
- SocketConnectivityOracle: Reachability via a TCP connect, with a
  background watcher that notifies listeners when connectivity returns

Desktop hosts cannot ask the OS whether a link is metered, so the
transport type and metered flag come from configuration.
"""

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from mediaqueue.core.types import TransportType

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_PROBE_HOST = "1.1.1.1"
DEFAULT_PROBE_PORT = 53
DEFAULT_PROBE_TIMEOUT = 3.0  # seconds
DEFAULT_WATCH_INTERVAL = 5.0  # seconds between reachability checks


@dataclass(frozen=True)
class ConnectionState:
    """Snapshot of network reachability.

    Attributes:
        connected: True when the network is reachable.
        transport: Kind of link in use.
        metered: True when traffic on the link is billed or capped.
    """

    connected: bool
    transport: TransportType = TransportType.UNKNOWN
    metered: bool = False

    @property
    def is_metered(self) -> bool:
        """Cellular links count as metered whatever the flag says."""
        return self.metered or self.transport == TransportType.CELLULAR

    @classmethod
    def disconnected(cls) -> ConnectionState:
        """State for no network at all."""
        return cls(connected=False, transport=TransportType.NONE)


class ConnectivityOracle(Protocol):
    """Protocol for connectivity reporting.

    Listeners are called with the new state when connectivity is regained.
    """

    def current(self) -> ConnectionState:
        """Get the current connection state."""
        ...

    def add_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for connectivity-regained signals."""
        ...

    def remove_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        """Unregister a callback."""
        ...


class SocketConnectivityOracle:
    """Connectivity oracle backed by a TCP connect to a well-known host.

    Usage:
        oracle = SocketConnectivityOracle(metered=False)
        oracle.add_listener(lambda state: processor.trigger())
        oracle.start()
        ...
        oracle.stop()
    """

    def __init__(
        self,
        host: str = DEFAULT_PROBE_HOST,
        port: int = DEFAULT_PROBE_PORT,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        transport: TransportType = TransportType.UNKNOWN,
        metered: bool = False,
        watch_interval: float = DEFAULT_WATCH_INTERVAL,
    ) -> None:
        """Initialize the oracle.

        Args:
            host: Host to connect to when probing.
            port: TCP port to connect to.
            timeout: Connect timeout in seconds.
            transport: Transport type reported while connected.
            metered: Whether the link is metered.
            watch_interval: Seconds between checks in the background watcher.
        """
        self._host = host
        self._port = port
        self._timeout = timeout
        self._transport = transport
        self._metered = metered
        self._watch_interval = watch_interval

        self._lock = threading.Lock()
        self._listeners: list[Callable[[ConnectionState], None]] = []
        self._last_connected: bool | None = None

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def _probe(self) -> bool:
        """Try a TCP connection to the probe host."""
        try:
            with socket.create_connection((self._host, self._port), timeout=self._timeout):
                return True
        except OSError:
            return False

    def current(self) -> ConnectionState:
        """Probe the network and report the current state."""
        connected = self._probe()
        self._record(connected)
        if not connected:
            return ConnectionState.disconnected()
        return ConnectionState(connected=True, transport=self._transport, metered=self._metered)

    def _record(self, connected: bool) -> None:
        """Remember the last state and notify listeners on regain."""
        with self._lock:
            regained = connected and self._last_connected is False
            self._last_connected = connected
            listeners = list(self._listeners)

        if not regained:
            return

        logger.info("Network connectivity restored")
        state = ConnectionState(connected=True, transport=self._transport, metered=self._metered)
        for callback in listeners:
            try:
                callback(state)
            except Exception:
                logger.exception("Connectivity listener failed")

    def add_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for connectivity-regained signals."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        """Unregister a callback."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def start(self) -> None:
        """Start the background watcher thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("Connectivity watcher already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch,
            name="ConnectivityWatcher",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Connectivity watcher started (every %.0fs)", self._watch_interval)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background watcher thread."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _watch(self) -> None:
        """Poll reachability until stopped."""
        while not self._stop_event.is_set():
            self.current()
            self._stop_event.wait(self._watch_interval)
