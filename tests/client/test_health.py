"""Tests for the remote health probe."""

import threading
from unittest.mock import MagicMock

from mediaqueue.client.api import HealthStatus
from mediaqueue.client.health import RemoteHealthProbe
from mediaqueue.core.config import EndpointConfig

CONFIG = EndpointConfig(base_url="http://test", user_key="key123")


def make_probe(*statuses: HealthStatus, config: EndpointConfig | None = CONFIG) -> RemoteHealthProbe:
    """Create a probe whose client returns the given statuses in order."""
    client = MagicMock()
    client.__enter__.return_value = client
    client.health_check.side_effect = list(statuses)
    return RemoteHealthProbe(lambda: config, client_factory=lambda _config: client)


class TestRemoteHealthProbe:
    """Tests for RemoteHealthProbe."""

    def test_initially_unavailable(self) -> None:
        """Before any check the server counts as unavailable."""
        probe = make_probe()

        assert probe.available is False
        assert probe.latency_ms == 0

    def test_available(self) -> None:
        """A healthy server is cached with its latency."""
        probe = make_probe(HealthStatus(available=True, latency_ms=42))

        assert probe.check() is True
        assert probe.available is True
        assert probe.latency_ms == 42

    def test_unavailable_resets_latency(self) -> None:
        """An unhealthy server reports zero latency."""
        probe = make_probe(
            HealthStatus(available=True, latency_ms=42),
            HealthStatus(available=False, latency_ms=300),
        )
        probe.check()

        assert probe.check() is False
        assert probe.latency_ms == 0

    def test_no_configuration(self) -> None:
        """Without settings the server is unavailable and nothing is requested."""
        factory = MagicMock()
        probe = RemoteHealthProbe(lambda: None, client_factory=factory)

        assert probe.check() is False
        factory.assert_not_called()

    def test_listener_on_regain_only(self) -> None:
        """Listeners fire when the server becomes available again."""
        probe = make_probe(
            HealthStatus(available=True, latency_ms=1),
            HealthStatus(available=True, latency_ms=1),
            HealthStatus(available=False),
            HealthStatus(available=True, latency_ms=1),
        )
        calls: list[bool] = []
        probe.add_listener(lambda: calls.append(True))

        for _ in range(4):
            probe.check()

        assert len(calls) == 2

    def test_remove_listener(self) -> None:
        """Removed listeners are not called."""
        probe = make_probe(HealthStatus(available=True, latency_ms=1))
        callback = MagicMock()
        probe.add_listener(callback)
        probe.remove_listener(callback)

        probe.check()

        callback.assert_not_called()

    def test_failing_listener_does_not_break_check(self) -> None:
        """A listener error is logged, not raised."""
        probe = make_probe(HealthStatus(available=True, latency_ms=1))
        probe.add_listener(MagicMock(side_effect=RuntimeError("boom")))

        assert probe.check() is True

    def test_background_checks(self) -> None:
        """start() should check periodically until stopped."""
        checked = threading.Event()
        client = MagicMock()
        client.__enter__.return_value = client

        def health_check() -> HealthStatus:
            checked.set()
            return HealthStatus(available=True, latency_ms=5)

        client.health_check.side_effect = health_check
        probe = RemoteHealthProbe(
            lambda: CONFIG,
            client_factory=lambda _config: client,
            check_interval=0.01,
        )

        probe.start()
        try:
            assert checked.wait(timeout=2.0)
        finally:
            probe.stop()

        assert probe.available is True
