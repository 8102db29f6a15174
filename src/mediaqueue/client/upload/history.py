"""Durable upload history.

This module provides:
- HistoryLog: Thread- and process-safe persisted log of upload lifecycles

Entries are keyed by queue item ID and outlive their queue items: an item
leaves the QueueStore when it completes or fails for good, but its history
entry stays until the user clears the log.

Reconciliation:
    After a crash, entries still marked pending/uploading whose item is no
    longer queued can never progress. reconcile() rewrites them to failed
    with reason "interrupted". It runs once at startup and is idempotent.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from mediaqueue.client.state import HISTORY_KEY
from mediaqueue.client.upload.types import INTERRUPTED_REASON, HistoryEntry
from mediaqueue.core.types import UploadStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from mediaqueue.client.state import LocalState
    from mediaqueue.client.upload.types import QueueItem

logger = logging.getLogger(__name__)


class HistoryLog:
    """Persisted upload history in insertion order.

    Like the QueueStore, every call reads the blob afresh and every mutation
    is one read-modify-write transaction. Returned entries are copies.
    """

    def __init__(self, state: LocalState, key: str = HISTORY_KEY) -> None:
        """Initialize the log.

        Args:
            state: Key-value state holding the history blob.
            key: Key of the history blob.
        """
        self._state = state
        self._key = key

    def _read(self) -> list[HistoryEntry]:
        entries: list[HistoryEntry] = []
        for record in self._state.load_records(self._key):
            try:
                entries.append(HistoryEntry.from_record(record))
            except (KeyError, ValueError, TypeError) as e:
                logger.error("Dropping unreadable history record %r: %s", record.get("id"), e)
        return entries

    @contextmanager
    def _mutate(self) -> Iterator[list[HistoryEntry]]:
        """Read-modify-write the blob; discarded if the block raises."""
        with self.transaction():
            entries = self._read()
            yield entries
            self._state.save_records(self._key, [entry.to_record() for entry in entries])

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold the database write lock.

        Used by recovery so the queue snapshot and the history rewrite
        happen without another writer in between.
        """
        with self._state.transaction():
            yield

    def get(self, entry_id: str) -> HistoryEntry | None:
        """Get an entry by ID."""
        return _find(self._read(), entry_id)

    def entries(self) -> list[HistoryEntry]:
        """Get a snapshot of all entries in insertion order."""
        return self._read()

    def insert_if_absent(self, item: QueueItem) -> HistoryEntry:
        """Create the entry for an item unless one already exists.

        Returns:
            The existing or newly created entry.
        """
        with self._mutate() as entries:
            entry = _find(entries, item.id)
            if entry is None:
                entry = HistoryEntry.for_item(item)
                entries.append(entry)
        return entry

    def update(
        self,
        entry_id: str,
        *,
        status: UploadStatus | None = None,
        progress: int | None = None,
        error: str | None = None,
        clear_progress: bool = False,
        clear_error: bool = False,
    ) -> HistoryEntry | None:
        """Update an entry.

        Only provided fields change. Nothing is changed if the write fails.

        Returns:
            The updated entry, or None if not found.
        """
        with self._mutate() as entries:
            entry = _find(entries, entry_id)
            if entry is None:
                return None
            if status is not None:
                entry.status = status
            if clear_progress:
                entry.progress = None
            elif progress is not None:
                entry.progress = max(0, min(100, progress))
            if clear_error:
                entry.error = None
            elif error is not None:
                entry.error = error
        return entry

    def mark_uploading(self, entry_id: str) -> HistoryEntry | None:
        """Mark an attempt as started with zero progress."""
        return self.update(
            entry_id, status=UploadStatus.UPLOADING, progress=0, clear_error=True
        )

    def mark_pending(self, entry_id: str, error: str | None = None) -> HistoryEntry | None:
        """Put an entry back to pending, keeping the last error if given."""
        return self.update(
            entry_id,
            status=UploadStatus.PENDING,
            clear_progress=True,
            error=error,
        )

    def mark_completed(self, entry_id: str) -> HistoryEntry | None:
        """Mark an upload completed."""
        return self.update(
            entry_id, status=UploadStatus.COMPLETED, progress=100, clear_error=True
        )

    def mark_failed(self, entry_id: str, error: str) -> HistoryEntry | None:
        """Mark an upload failed for good."""
        return self.update(entry_id, status=UploadStatus.FAILED, error=error)

    def set_progress(self, entry_id: str, progress: int) -> HistoryEntry | None:
        """Record upload progress."""
        return self.update(entry_id, progress=progress)

    def reconcile(self, queued_ids: Iterable[str]) -> list[str]:
        """Fail open entries whose queue item is gone.

        Args:
            queued_ids: IDs currently present in the reloaded queue.

        Returns:
            IDs of the entries rewritten to failed.
        """
        queued = set(queued_ids)
        with self._mutate() as entries:
            stale = [
                entry
                for entry in entries
                if not entry.status.is_terminal and entry.id not in queued
            ]
            for entry in stale:
                entry.status = UploadStatus.FAILED
                entry.error = INTERRUPTED_REASON
                entry.progress = None
        if stale:
            logger.warning("Marked %d interrupted uploads as failed", len(stale))
        return [entry.id for entry in stale]

    def clear(self) -> int:
        """Remove all entries.

        Returns:
            Number of entries removed.
        """
        with self._mutate() as entries:
            count = len(entries)
            entries.clear()
        logger.info("Cleared %d history entries", count)
        return count

    def __len__(self) -> int:
        """Get number of entries."""
        return len(self._read())


def _find(entries: list[HistoryEntry], entry_id: str) -> HistoryEntry | None:
    for entry in entries:
        if entry.id == entry_id:
            return entry
    return None
