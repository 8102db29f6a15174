"""Shared types for mediaqueue.

This module defines enums used across the client, the persisted blobs and
the wire format. Values are the strings stored on disk and sent to the server.
"""

from __future__ import annotations

from enum import Enum


class MediaKind(str, Enum):
    """Kind of media carried by a queue item."""

    IMAGE = "image"
    VIDEO = "video"

    @property
    def content_type(self) -> str:
        """MIME type sent with the media part."""
        return "image/jpeg" if self is MediaKind.IMAGE else "video/mp4"

    @property
    def extension(self) -> str:
        """File extension used for the uploaded file name."""
        return "jpg" if self is MediaKind.IMAGE else "mp4"


class UploadStatus(str, Enum):
    """Status of a queue item or history entry."""

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Completed and failed items leave the queue."""
        return self in (UploadStatus.COMPLETED, UploadStatus.FAILED)


class TransportType(str, Enum):
    """Kind of network link reported by the connectivity oracle."""

    NONE = "none"
    WIFI = "wifi"
    ETHERNET = "ethernet"
    CELLULAR = "cellular"
    UNKNOWN = "unknown"
