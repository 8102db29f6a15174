"""Remote server health probing.

This module provides:
- RemoteHealthProbe: Checks the server health endpoint, caches the last
  availability and latency, and optionally re-checks on a timer

The probe reads the endpoint configuration on every check, so settings
changes take effect without a restart. Missing configuration reports the
server as unavailable.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from mediaqueue.client.api import HTTPClient

if TYPE_CHECKING:
    from collections.abc import Callable

    from mediaqueue.core.config import EndpointConfig

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = 30.0  # seconds between background checks


class RemoteHealthProbe:
    """Pre-flight check that the media server is reachable."""

    def __init__(
        self,
        settings_provider: Callable[[], EndpointConfig | None],
        client_factory: Callable[[EndpointConfig], HTTPClient] = HTTPClient,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
    ) -> None:
        """Initialize the probe.

        Args:
            settings_provider: Returns the current endpoint config, or None.
            client_factory: Builds an HTTP client for a config.
            check_interval: Seconds between background checks.
        """
        self._settings_provider = settings_provider
        self._client_factory = client_factory
        self._check_interval = check_interval

        self._lock = threading.Lock()
        self._available = False
        self._latency_ms = 0
        self._listeners: list[Callable[[], None]] = []

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def available(self) -> bool:
        """Availability from the last check."""
        return self._available

    @property
    def latency_ms(self) -> int:
        """Round-trip latency from the last check (0 when unreachable)."""
        return self._latency_ms

    def check(self) -> bool:
        """Check the server now and cache the result.

        Returns:
            True if the server reported {"status": "ok"}.
        """
        config = self._settings_provider()
        if config is None:
            logger.debug("No endpoint configured, server unavailable")
            self._store(False, 0)
            return False

        with self._client_factory(config) as client:
            status = client.health_check()

        self._store(status.available, status.latency_ms or 0)
        if not status.available:
            logger.info("Server %s unavailable", config.base_url)
        return status.available

    def _store(self, available: bool, latency_ms: int) -> None:
        """Cache a result and notify listeners when the server comes back."""
        with self._lock:
            regained = available and not self._available
            self._available = available
            self._latency_ms = latency_ms if available else 0
            listeners = list(self._listeners)

        if regained:
            for callback in listeners:
                try:
                    callback()
                except Exception:
                    logger.exception("Health listener failed")

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback for server-available-again signals."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[], None]) -> None:
        """Unregister a callback."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def start(self) -> None:
        """Start periodic checks in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("Health probe already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="RemoteHealthProbe",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop periodic checks."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        """Check until stopped."""
        while not self._stop_event.is_set():
            try:
                self.check()
            except Exception:
                logger.exception("Health check error")
            self._stop_event.wait(self._check_interval)
