"""Core module - Shared configuration and types."""

from mediaqueue.core.config import (
    DEFAULT_HEALTH_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PROCESS_INTERVAL,
    EndpointConfig,
    ProcessorSettings,
    normalize_base_url,
)
from mediaqueue.core.types import MediaKind, TransportType, UploadStatus

__all__ = [
    # Config
    "DEFAULT_HEALTH_TIMEOUT",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_PROCESS_INTERVAL",
    "EndpointConfig",
    "ProcessorSettings",
    "normalize_base_url",
    # Types
    "MediaKind",
    "TransportType",
    "UploadStatus",
]
