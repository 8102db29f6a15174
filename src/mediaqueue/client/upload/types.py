"""Shared types and dataclasses for the upload engine.

This module provides:
- UploadError and subclasses: Failure taxonomy with permanent/transient split
- TextOverlay: Overlay annotation sent alongside the media
- QueueItem: One unit of work awaiting delivery
- HistoryEntry: User-facing record of one upload's lifecycle
- QueueEvent: Notification emitted on every state transition
- DrainOutcome, DrainResult, ProcessorStats: Processor results
- Type aliases for callbacks
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mediaqueue.core.types import MediaKind, UploadStatus

# =============================================================================
# Errors
# =============================================================================


class FailureKind(str, Enum):
    """Why an upload attempt or a drain pass failed."""

    CONFIGURATION_MISSING = "configuration_missing"
    PAYLOAD_MISSING = "payload_missing"
    SERVER_REJECTED = "server_rejected"
    SERVER_ERROR = "server_error"
    TRANSPORT_ERROR = "transport_error"
    RESPONSE_UNPARSEABLE = "response_unparseable"
    CONNECTIVITY_UNAVAILABLE = "connectivity_unavailable"
    SERVER_UNAVAILABLE = "server_unavailable"


class UploadError(Exception):
    """Base exception for upload failures.

    Attributes:
        kind: Failure category.
        permanent: True when retrying cannot succeed.
    """

    kind: FailureKind = FailureKind.TRANSPORT_ERROR
    permanent: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationMissingError(UploadError):
    """No endpoint or user key configured. Fatal to the pass, not the item."""

    kind = FailureKind.CONFIGURATION_MISSING


class PayloadMissingError(UploadError):
    """The local media bytes no longer exist."""

    kind = FailureKind.PAYLOAD_MISSING
    permanent = True


class ServerRejectedError(UploadError):
    """The server refused the upload (403)."""

    kind = FailureKind.SERVER_REJECTED
    permanent = True


class ServerError(UploadError):
    """The server answered with a non-2xx status other than 403."""

    kind = FailureKind.SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransferError(UploadError):
    """The request never completed (connection refused, reset, timeout)."""

    kind = FailureKind.TRANSPORT_ERROR


class ResponseUnparseableError(UploadError):
    """A 2xx response whose body is not valid JSON."""

    kind = FailureKind.RESPONSE_UNPARSEABLE


# Human-readable reasons stored in history entries
PAYLOAD_MISSING_REASON = "payload missing"
INTERRUPTED_REASON = "interrupted"


# =============================================================================
# Data model
# =============================================================================


_id_lock = threading.Lock()
_last_id = 0


def new_item_id() -> tuple[str, int]:
    """Allocate a unique item ID that doubles as a creation timestamp.

    IDs are milliseconds since the epoch. Two items created in the same
    millisecond get consecutive values so IDs stay unique and ordered.

    Returns:
        (id, timestamp_ms) tuple.
    """
    global _last_id
    with _id_lock:
        now = int(time.time() * 1000)
        if now <= _last_id:
            now = _last_id + 1
        _last_id = now
    return str(now), now


@dataclass
class TextOverlay:
    """Text annotation drawn over the media by the recipient.

    Position and size are in the editor's screen coordinates.
    """

    id: str
    text: str
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    rotation: float = 0.0
    scale: float = 1.0
    color: str = "#FFFFFF"
    font_size: float = 24.0
    font_family: str = "System"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire/storage layout."""
        return {
            "id": self.id,
            "text": self.text,
            "position": {"x": self.x, "y": self.y},
            "size": {"width": self.width, "height": self.height},
            "rotation": self.rotation,
            "scale": self.scale,
            "color": self.color,
            "fontSize": self.font_size,
            "fontFamily": self.font_family,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TextOverlay:
        """Create from the wire/storage layout."""
        position = data.get("position") or {}
        size = data.get("size") or {}
        return cls(
            id=str(data.get("id", "")),
            text=str(data.get("text", "")),
            x=float(position.get("x", 0.0)),
            y=float(position.get("y", 0.0)),
            width=float(size.get("width", 0.0)),
            height=float(size.get("height", 0.0)),
            rotation=float(data.get("rotation", 0.0)),
            scale=float(data.get("scale", 1.0)),
            color=str(data.get("color", "#FFFFFF")),
            font_size=float(data.get("fontSize", 24.0)),
            font_family=str(data.get("fontFamily", "System")),
        )


@dataclass
class QueueItem:
    """A unit of work awaiting delivery.

    Attributes:
        id: Unique ID, also the creation time in milliseconds.
        payload_ref: Local path (or file:// URI) of the media bytes.
        media_kind: Image or video.
        recipients: Recipient IDs (may be empty).
        timestamp: Creation time in milliseconds; defines delivery order.
        status: Current status (pending or uploading while queued).
        retry_count: Failed attempts so far; None until first processed.
        overlays: Optional overlay annotations.
    """

    id: str
    payload_ref: str
    media_kind: MediaKind
    recipients: list[str]
    timestamp: int
    status: UploadStatus = UploadStatus.PENDING
    retry_count: int | None = None
    overlays: list[TextOverlay] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        payload_ref: str,
        media_kind: MediaKind,
        recipients: list[str] | None = None,
        overlays: list[TextOverlay] | None = None,
    ) -> QueueItem:
        """Create a new pending item with an auto-generated id and timestamp."""
        item_id, timestamp = new_item_id()
        return cls(
            id=item_id,
            payload_ref=payload_ref,
            media_kind=MediaKind(media_kind),
            recipients=list(recipients or []),
            timestamp=timestamp,
            overlays=list(overlays or []),
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted queue layout."""
        record: dict[str, Any] = {
            "id": self.id,
            "payloadRef": self.payload_ref,
            "mediaKind": self.media_kind.value,
            "recipients": list(self.recipients),
            "timestamp": self.timestamp,
            "status": self.status.value,
        }
        if self.retry_count is not None:
            record["retryCount"] = self.retry_count
        if self.overlays:
            record["overlays"] = [o.to_dict() for o in self.overlays]
        return record

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> QueueItem:
        """Create from the persisted queue layout."""
        retry_count = data.get("retryCount")
        return cls(
            id=str(data["id"]),
            payload_ref=data["payloadRef"],
            media_kind=MediaKind(data["mediaKind"]),
            recipients=[str(r) for r in data.get("recipients", [])],
            timestamp=int(data["timestamp"]),
            status=UploadStatus(data.get("status", UploadStatus.PENDING.value)),
            retry_count=int(retry_count) if retry_count is not None else None,
            overlays=[TextOverlay.from_dict(o) for o in data.get("overlays") or []],
        )

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"QueueItem({self.id}, {self.media_kind.value}, "
            f"status={self.status.value}, retries={self.retry_count})"
        )


@dataclass
class HistoryEntry:
    """User-facing record of an upload, keyed by the queue item ID.

    Attributes:
        id: Same ID as the originating queue item.
        timestamp: Creation time of the queue item in milliseconds.
        media_kind: Image or video.
        status: Current status.
        progress: Percentage 0-100, meaningful while uploading.
        error: Human-readable failure reason.
    """

    id: str
    timestamp: int
    media_kind: MediaKind
    status: UploadStatus = UploadStatus.PENDING
    progress: int | None = None
    error: str | None = None

    @classmethod
    def for_item(cls, item: QueueItem) -> HistoryEntry:
        """Create the initial entry for a queue item."""
        return cls(id=item.id, timestamp=item.timestamp, media_kind=item.media_kind)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted history layout."""
        record: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "mediaKind": self.media_kind.value,
        }
        if self.error is not None:
            record["error"] = self.error
        if self.progress is not None:
            record["progress"] = self.progress
        return record

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> HistoryEntry:
        """Create from the persisted history layout."""
        progress = data.get("progress")
        return cls(
            id=str(data["id"]),
            timestamp=int(data["timestamp"]),
            media_kind=MediaKind(data["mediaKind"]),
            status=UploadStatus(data["status"]),
            progress=int(progress) if progress is not None else None,
            error=data.get("error"),
        )


# Type alias for progress callback (integer percentage 0-100)
ProgressCallback = Callable[[int], None]


# =============================================================================
# Processor types
# =============================================================================


@dataclass
class QueueEvent:
    """A state transition or progress change for one item.

    Attributes:
        item_id: The queue item / history entry ID.
        status: Status after the transition.
        progress: Upload percentage, when known.
        error: Failure reason for failed items.
        retry_count: Retry count after the transition.
    """

    item_id: str
    status: UploadStatus
    progress: int | None = None
    error: str | None = None
    retry_count: int | None = None


# Type alias for processor listeners
QueueEventCallback = Callable[[QueueEvent], None]


class DrainOutcome(str, Enum):
    """How a drain pass ended."""

    COMPLETED = "completed"  # every pending item was considered
    BUSY = "busy"  # another pass was already running
    EMPTY = "empty"  # nothing to do
    CONFIGURATION_MISSING = FailureKind.CONFIGURATION_MISSING.value
    SERVER_UNAVAILABLE = FailureKind.SERVER_UNAVAILABLE.value
    CONNECTIVITY_UNAVAILABLE = FailureKind.CONNECTIVITY_UNAVAILABLE.value
    TRANSPORT_NOT_ALLOWED = "transport_not_allowed"
    STOPPED = "stopped"  # processor stopped mid-pass

    @property
    def gate_closed(self) -> bool:
        """True when a pre-flight gate aborted the pass."""
        return self in (
            DrainOutcome.CONFIGURATION_MISSING,
            DrainOutcome.SERVER_UNAVAILABLE,
            DrainOutcome.CONNECTIVITY_UNAVAILABLE,
            DrainOutcome.TRANSPORT_NOT_ALLOWED,
        )


@dataclass
class DrainResult:
    """Result of one drain pass."""

    outcome: DrainOutcome
    attempted: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)


@dataclass
class ProcessorStats:
    """Statistics for the queue processor."""

    passes_run: int = 0
    passes_gated: int = 0
    uploads_attempted: int = 0
    uploads_completed: int = 0
    uploads_failed: int = 0
    retries_scheduled: int = 0
