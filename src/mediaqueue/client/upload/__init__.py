"""Offline-tolerant upload engine.

Architecture:
    enqueue → QueueStore → QueueProcessor → TransferExecutor
                              ↓
                          HistoryLog

Components:
- **QueueStore**: Durable list of items still requiring action
- **HistoryLog**: Durable user-facing record of every upload
- **QueueProcessor**: Single-flight, rate-limited drain loop with pre-flight
  gates (configuration, server health, connectivity, transport policy)
- **TransferExecutor**: One upload attempt per call with progress
- **RetryPolicy**: Bounded retry budget per item
"""

from mediaqueue.client.upload.history import HistoryLog
from mediaqueue.client.upload.processor import HealthProbe, ProcessorState, QueueProcessor
from mediaqueue.client.upload.queue import QueueStore
from mediaqueue.client.upload.retry import RetryPolicy
from mediaqueue.client.upload.transfer import (
    HTTPTransferExecutor,
    TransferExecutor,
    resolve_payload,
)
from mediaqueue.client.upload.types import (
    INTERRUPTED_REASON,
    PAYLOAD_MISSING_REASON,
    ConfigurationMissingError,
    DrainOutcome,
    DrainResult,
    FailureKind,
    HistoryEntry,
    PayloadMissingError,
    ProcessorStats,
    ProgressCallback,
    QueueEvent,
    QueueEventCallback,
    QueueItem,
    ResponseUnparseableError,
    ServerError,
    ServerRejectedError,
    TextOverlay,
    TransferError,
    UploadError,
)

__all__ = [
    # Errors
    "ConfigurationMissingError",
    "FailureKind",
    "PayloadMissingError",
    "ResponseUnparseableError",
    "ServerError",
    "ServerRejectedError",
    "TransferError",
    "UploadError",
    "INTERRUPTED_REASON",
    "PAYLOAD_MISSING_REASON",
    # Data model
    "HistoryEntry",
    "QueueItem",
    "TextOverlay",
    "ProgressCallback",
    # Stores
    "HistoryLog",
    "QueueStore",
    # Processor
    "DrainOutcome",
    "DrainResult",
    "HealthProbe",
    "ProcessorState",
    "ProcessorStats",
    "QueueEvent",
    "QueueEventCallback",
    "QueueProcessor",
    "RetryPolicy",
    # Transfer
    "HTTPTransferExecutor",
    "TransferExecutor",
    "resolve_payload",
]
