"""Single-attempt media transfer.

This module provides:
- TransferExecutor: Protocol the queue processor drives
- HTTPTransferExecutor: Multipart upload over the media server API
- resolve_payload: Map a payload reference to a local path

An executor performs exactly one attempt per call and reports progress as
a non-decreasing integer percentage. It never touches persisted state; the
processor turns outcomes into queue and history updates.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from mediaqueue.client.api import (
    APIError,
    HTTPClient,
    InvalidResponseError,
    NetworkError,
    PermissionDeniedError,
)
from mediaqueue.client.upload.types import (
    PAYLOAD_MISSING_REASON,
    ConfigurationMissingError,
    PayloadMissingError,
    ProgressCallback,
    ResponseUnparseableError,
    ServerError,
    ServerRejectedError,
    TransferError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from mediaqueue.client.upload.types import QueueItem
    from mediaqueue.core.config import EndpointConfig

logger = logging.getLogger(__name__)


def resolve_payload(payload_ref: str) -> Path:
    """Map a payload reference to a local path.

    Accepts plain paths ("~/Pictures/a.jpg") and file:// URIs.
    """
    if payload_ref.startswith("file:"):
        parsed = urlparse(payload_ref)
        return Path(url2pathname(unquote(parsed.path)))
    return Path(payload_ref).expanduser()


class TransferExecutor(Protocol):
    """Protocol for transfer executors.

    Executors must implement this interface to be driven by the processor.
    """

    def payload_exists(self, item: QueueItem) -> bool:
        """Check that the item's media bytes are still on disk."""
        ...

    def execute(
        self,
        item: QueueItem,
        on_progress: ProgressCallback | None = None,
    ) -> Any:
        """Perform one upload attempt.

        Args:
            item: The item to upload.
            on_progress: Optional callback with a percentage 0-100.

        Returns:
            Server response payload on success.

        Raises:
            UploadError: One of its subclasses on failure.
        """
        ...


class _ProgressReporter:
    """Turns byte counts into non-decreasing percentages."""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self._last = -1

    def on_bytes(self, sent: int, total: int) -> None:
        if total <= 0:
            return
        self.report(min(100, sent * 100 // total))

    def report(self, percent: int) -> None:
        if self._callback is None or percent <= self._last:
            return
        self._last = percent
        self._callback(percent)

    def finish(self) -> None:
        self.report(100)


class HTTPTransferExecutor:
    """Uploads queue items to the media server."""

    def __init__(
        self,
        settings_provider: Callable[[], EndpointConfig | None],
        client_factory: Callable[[EndpointConfig], HTTPClient] = HTTPClient,
    ) -> None:
        """Initialize the executor.

        Args:
            settings_provider: Returns the current endpoint config, or None.
            client_factory: Builds an HTTP client for a config.
        """
        self._settings_provider = settings_provider
        self._client_factory = client_factory

    def payload_exists(self, item: QueueItem) -> bool:
        """Check that the item's media file still exists."""
        return resolve_payload(item.payload_ref).is_file()

    def execute(
        self,
        item: QueueItem,
        on_progress: ProgressCallback | None = None,
    ) -> Any:
        """Upload one item.

        Raises:
            ConfigurationMissingError: No endpoint or user key configured.
            PayloadMissingError: The media file is gone.
            ServerRejectedError: The server answered 403.
            ServerError: Any other non-2xx answer.
            TransferError: The request did not complete.
            ResponseUnparseableError: 2xx with a body that is not JSON.
        """
        config = self._settings_provider()
        if config is None:
            raise ConfigurationMissingError(
                "Settings not configured. Please set user key and base URL."
            )

        media_path = resolve_payload(item.payload_ref)
        if not media_path.is_file():
            raise PayloadMissingError(PAYLOAD_MISSING_REASON)

        reporter = _ProgressReporter(on_progress)
        reporter.report(0)
        overlays = [overlay.to_dict() for overlay in item.overlays] or None

        try:
            with self._client_factory(config) as client:
                result = client.upload_media(
                    media_path,
                    item.media_kind,
                    item.recipients,
                    item.timestamp,
                    overlays=overlays,
                    on_progress=reporter.on_bytes,
                )
        except PermissionDeniedError as e:
            raise ServerRejectedError(str(e)) from e
        except InvalidResponseError as e:
            raise ResponseUnparseableError(str(e)) from e
        except NetworkError as e:
            raise TransferError(f"Network error: {e}") from e
        except APIError as e:
            raise ServerError(str(e), e.status_code) from e
        except OSError as e:
            # The file vanished or became unreadable after the existence check
            if not media_path.is_file():
                raise PayloadMissingError(PAYLOAD_MISSING_REASON) from e
            raise TransferError(f"Could not read {media_path.name}: {e}") from e

        reporter.finish()
        logger.info("Uploaded item %s (%s)", item.id, item.media_kind.value)
        return result
