"""HTTP client for the media server API.

This module provides:
- HTTPClient: httpx-based client for the media server
- Health check with latency measurement
- Multipart media upload with byte-level progress
- Contacts lookup
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

    from mediaqueue.core.config import EndpointConfig
    from mediaqueue.core.types import MediaKind

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermissionDeniedError(APIError):
    """The server refused the request for this user (403)."""


class InvalidResponseError(APIError):
    """A successful response whose body could not be parsed."""


class NetworkError(APIError):
    """The request did not complete (connection failure or timeout)."""


@dataclass
class HealthStatus:
    """Result of a health check.

    Attributes:
        available: True when the server answered {"status": "ok"}.
        latency_ms: Round-trip time in milliseconds, None if no response.
    """

    available: bool
    latency_ms: int | None = None


class HTTPClient:
    """HTTP client for the media server API."""

    def __init__(self, config: EndpointConfig) -> None:
        """Initialize the client.

        Args:
            config: Endpoint configuration (base URL, user key, timeouts).
        """
        self._config = config
        self._client = httpx.Client(timeout=config.timeout)

    @property
    def config(self) -> EndpointConfig:
        """Get the endpoint configuration."""
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Health check ===

    def health_check(self) -> HealthStatus:
        """Check if the server is reachable and healthy.

        Any transport failure, timeout, non-2xx status or unexpected body
        counts as unavailable.

        Returns:
            HealthStatus with availability and latency.
        """
        start = time.perf_counter()
        try:
            response = self._client.get(
                self._config.health_url,
                timeout=self._config.health_timeout,
            )
        except httpx.TimeoutException:
            logger.debug("Health check timed out after %.1fs", self._config.health_timeout)
            return HealthStatus(available=False)
        except httpx.HTTPError as e:
            logger.debug("Health check failed: %s", e)
            return HealthStatus(available=False)

        latency_ms = round((time.perf_counter() - start) * 1000)
        if not response.is_success:
            return HealthStatus(available=False, latency_ms=latency_ms)
        try:
            data = response.json()
        except ValueError:
            logger.warning("Health check returned a non-JSON body")
            return HealthStatus(available=False, latency_ms=latency_ms)
        available = isinstance(data, dict) and data.get("status") == "ok"
        return HealthStatus(available=available, latency_ms=latency_ms)

    # === Uploads ===

    def upload_media(
        self,
        media_path: Path,
        media_kind: MediaKind,
        recipients: list[str],
        timestamp: int,
        overlays: list[dict[str, Any]] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> Any:
        """Upload one media file as a multipart form.

        Args:
            media_path: Local file to send.
            media_kind: Image or video (selects the content type).
            recipients: Recipient IDs, sent as a JSON array.
            timestamp: Creation time of the item in milliseconds.
            overlays: Optional overlay dicts, sent as a JSON array.
            on_progress: Optional callback (bytes_sent, total_bytes).

        Returns:
            Parsed JSON body of the server response.

        Raises:
            PermissionDeniedError: On 403.
            APIError: On any other non-2xx status.
            InvalidResponseError: If a 2xx body is not valid JSON.
            NetworkError: If the request did not complete.
        """
        fields = {
            "userKey": self._config.user_key,
            "mediaType": media_kind.value,
            "recipients": json.dumps(recipients),
            "timestamp": str(timestamp),
        }
        if overlays:
            fields["textOverlays"] = json.dumps(overlays)

        filename = f"media_{int(time.time() * 1000)}.{media_kind.extension}"

        logger.info("Uploading %s to %s", filename, self._config.upload_url)
        with media_path.open("rb") as media:
            request = self._client.build_request(
                "POST",
                self._config.upload_url,
                data=fields,
                files={"media": (filename, media, media_kind.content_type)},
            )
            if on_progress is not None:
                request = self._track_progress(request, on_progress)
            try:
                response = self._client.send(request)
            except httpx.HTTPError as e:
                raise NetworkError(str(e) or type(e).__name__) from e

        return self._handle_upload_response(response)

    def _track_progress(
        self,
        request: httpx.Request,
        on_progress: Callable[[int, int], None],
    ) -> httpx.Request:
        """Wrap a request body so each chunk read reports progress."""
        total = int(request.headers.get("Content-Length") or 0)
        stream = request.stream

        def body() -> Iterator[bytes]:
            sent = 0
            for chunk in stream:  # type: ignore[union-attr]
                sent += len(chunk)
                on_progress(sent, total)
                yield chunk

        return httpx.Request(
            request.method,
            request.url,
            headers=request.headers,
            content=body(),
            extensions=request.extensions,
        )

    def _handle_upload_response(self, response: httpx.Response) -> Any:
        """Map an upload response to a result or an exception."""
        if response.status_code == 403:
            raise PermissionDeniedError("Invalid permissions", 403)
        if not response.is_success:
            detail = response.text or response.reason_phrase
            logger.error("Upload rejected by server: %s - %s", response.status_code, detail)
            raise APIError(
                f"Server error: {response.status_code} - {detail}",
                response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"Failed to parse server response: {e}",
                response.status_code,
            ) from e

    # === Contacts ===

    def fetch_contacts(self) -> list[dict[str, Any]]:
        """Fetch the contacts of the configured user.

        Returns:
            List of {"id", "display_name"} dicts.

        Raises:
            APIError: On non-2xx status or unexpected body.
            NetworkError: If the request did not complete.
        """
        try:
            response = self._client.get(self._config.contacts_url)
        except httpx.HTTPError as e:
            raise NetworkError(str(e) or type(e).__name__) from e
        if not response.is_success:
            raise APIError(f"HTTP error! status: {response.status_code}", response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Failed to parse contacts: {e}", response.status_code) from e
        if not isinstance(data, list):
            raise InvalidResponseError("Contacts response is not a list", response.status_code)
        return [c for c in data if isinstance(c, dict)]
