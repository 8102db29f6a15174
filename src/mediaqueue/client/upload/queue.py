"""Durable upload queue.

This module provides:
- QueueStore: Thread- and process-safe persisted list of items still requiring action

The store holds only pending and in-flight items. Completed items and items
that failed for good are removed by the processor; their user-facing record
lives on in the HistoryLog.

Persistence:
    The whole queue is one JSON blob in LocalState. Each mutation re-reads
    the blob and writes it back inside one SQLite transaction, so writers in
    other threads or processes are never overwritten and a failed write
    leaves the stored queue untouched.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from mediaqueue.client.state import QUEUE_KEY
from mediaqueue.client.upload.types import QueueItem, TextOverlay
from mediaqueue.core.types import MediaKind, UploadStatus

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mediaqueue.client.state import LocalState

logger = logging.getLogger(__name__)


class QueueStore:
    """Persisted queue of upload items.

    Items are returned oldest first (creation timestamp ascending), which
    defines delivery order. Every call reads the blob afresh, so items queued
    by another process are visible here without a restart. Returned items are
    copies; change them through the store.
    """

    def __init__(self, state: LocalState, key: str = QUEUE_KEY) -> None:
        """Initialize the store.

        Args:
            state: Key-value state holding the queue blob.
            key: Key of the queue blob.
        """
        self._state = state
        self._key = key

        count = len(self._read())
        if count:
            logger.info("Loaded %d queued uploads from persistence", count)

    def _read(self) -> list[QueueItem]:
        """Load items from persistence, skipping unreadable records."""
        items: list[QueueItem] = []
        for record in self._state.load_records(self._key):
            try:
                items.append(QueueItem.from_record(record))
            except (KeyError, ValueError, TypeError) as e:
                logger.error("Dropping unreadable queue record %r: %s", record.get("id"), e)
        return items

    def _write(self, items: list[QueueItem]) -> None:
        self._state.save_records(self._key, [item.to_record() for item in items])

    @contextmanager
    def _mutate(self) -> Iterator[list[QueueItem]]:
        """Read-modify-write the blob inside one transaction.

        The block edits the yielded list in place; it is written back when
        the block exits normally and discarded if it raises.
        """
        with self._state.transaction():
            items = self._read()
            yield items
            self._write(items)

    def append(self, item: QueueItem) -> None:
        """Persist a new item.

        Raises:
            ValueError: If an item with the same ID is already queued.
        """
        with self._mutate() as items:
            if any(existing.id == item.id for existing in items):
                raise ValueError(f"Item {item.id} already queued")
            items.append(item)
            size = len(items)
        logger.debug("Queued upload: %r (queue size: %d)", item, size)

    def enqueue(
        self,
        payload_ref: str,
        media_kind: MediaKind,
        recipients: list[str] | None = None,
        overlays: list[TextOverlay] | None = None,
    ) -> QueueItem:
        """Create and persist a pending item.

        Returns:
            The new item.
        """
        item = QueueItem.create(payload_ref, media_kind, recipients, overlays)
        self.append(item)
        return item

    def list_pending(self) -> list[QueueItem]:
        """Get a snapshot of all queued items, oldest first."""
        return sorted(self._read(), key=lambda item: (item.timestamp, item.id))

    def get(self, item_id: str) -> QueueItem | None:
        """Get a queued item by ID."""
        return _find(self._read(), item_id)

    def remove(self, item_id: str) -> QueueItem | None:
        """Remove an item by ID.

        Returns:
            The removed item, or None if not found.
        """
        with self._mutate() as items:
            removed = _find(items, item_id)
            if removed is not None:
                items.remove(removed)
            size = len(items)
        if removed is not None:
            logger.debug("Removed upload %s (queue size: %d)", item_id, size)
        return removed

    def update_status(self, item_id: str, status: UploadStatus) -> bool:
        """Set an item's status.

        Returns:
            True if the item was found.
        """
        with self._mutate() as items:
            item = _find(items, item_id)
            if item is not None:
                item.status = status
        return item is not None

    def update_retry_count(self, item_id: str, count: int) -> bool:
        """Set an item's retry count.

        Returns:
            True if the item was found.
        """
        with self._mutate() as items:
            item = _find(items, item_id)
            if item is not None:
                item.retry_count = count
        return item is not None

    def reset_in_flight(self) -> list[str]:
        """Put items left "uploading" by a dead process back to pending.

        Returns:
            IDs of the items that were reset.
        """
        with self._mutate() as items:
            stuck = [item for item in items if item.status == UploadStatus.UPLOADING]
            for item in stuck:
                item.status = UploadStatus.PENDING
        if stuck:
            logger.warning("Reset %d uploads stuck in flight", len(stuck))
        return [item.id for item in stuck]

    def ids(self) -> set[str]:
        """Get the IDs of all queued items."""
        return {item.id for item in self._read()}

    def __len__(self) -> int:
        """Get number of queued items."""
        return len(self._read())

    def __bool__(self) -> bool:
        """Check if queue has items."""
        return len(self) > 0


def _find(items: list[QueueItem], item_id: str) -> QueueItem | None:
    for item in items:
        if item.id == item_id:
            return item
    return None
