"""Shared configuration classes for mediaqueue.

This module defines the endpoint configuration consumed by the HTTP client,
the health probe and the transfer executor, plus the processor policy knobs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

API_PREFIX = "/_api/v1"

DEFAULT_MAX_RETRIES = 3
DEFAULT_PROCESS_INTERVAL = 2.0  # seconds between drain passes
DEFAULT_HEALTH_TIMEOUT = 5.0  # seconds


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes and default to http:// when no scheme is given.

    Args:
        url: Base URL as typed by the user (e.g. "media.example.com/").

    Returns:
        Normalized URL (e.g. "http://media.example.com").
    """
    url = url.strip().rstrip("/")
    if url and not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url


@dataclass
class EndpointConfig:
    """Configuration for reaching the media server.

    Attributes:
        base_url: Base URL of the server (e.g., "https://media.example.com").
        user_key: Key identifying the sending user.
        timeout: Request timeout in seconds for uploads.
        health_timeout: Timeout in seconds for the health check.
    """

    base_url: str
    user_key: str
    timeout: float = 60.0
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT

    def __post_init__(self) -> None:
        """Normalize base URL."""
        self.base_url = normalize_base_url(self.base_url)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> EndpointConfig | None:
        """Build from a loaded config dict.

        Returns None when either the base URL or the user key is missing,
        so callers can fail closed.
        """
        base_url = str(data.get("base_url") or "").strip()
        user_key = str(data.get("user_key") or "").strip()
        if not base_url or not user_key:
            return None
        return cls(
            base_url=base_url,
            user_key=user_key,
            health_timeout=float(data.get("health_timeout", DEFAULT_HEALTH_TIMEOUT)),
        )

    @property
    def upload_url(self) -> str:
        """Get the multipart upload endpoint."""
        return f"{self.base_url}{API_PREFIX}/upload"

    @property
    def health_url(self) -> str:
        """Get the health check endpoint."""
        return f"{self.base_url}{API_PREFIX}/health"

    @property
    def contacts_url(self) -> str:
        """Get the contacts endpoint for this user."""
        return f"{self.base_url}{API_PREFIX}/contacts/{self.user_key}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.base_url.startswith("https://")


@dataclass
class ProcessorSettings:
    """Policy knobs for the queue processor.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        process_interval: Minimum seconds between two drain passes.
        unmetered_only: Only upload over unmetered links (wifi/ethernet).
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    process_interval: float = DEFAULT_PROCESS_INTERVAL
    unmetered_only: bool = True

    @classmethod
    def from_config(cls, data: dict[str, Any]) -> ProcessorSettings:
        """Build from a loaded config dict, falling back to defaults."""
        return cls(
            max_retries=int(data.get("max_retries", DEFAULT_MAX_RETRIES)),
            process_interval=float(data.get("process_interval", DEFAULT_PROCESS_INTERVAL)),
            unmetered_only=bool(data.get("unmetered_only", True)),
        )
