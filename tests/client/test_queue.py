"""Tests for the durable upload queue."""

import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from mediaqueue.client.state import QUEUE_KEY, LocalState
from mediaqueue.client.upload.queue import QueueStore
from mediaqueue.client.upload.types import QueueItem, TextOverlay
from mediaqueue.core.types import MediaKind, UploadStatus


@pytest.fixture
def state() -> LocalState:
    """Create an in-memory state."""
    return LocalState(":memory:")


def make_item(item_id: str, timestamp: int, **kwargs) -> QueueItem:  # type: ignore[no-untyped-def]
    """Create a queue item with a fixed id and timestamp."""
    return QueueItem(
        id=item_id,
        payload_ref=f"/tmp/{item_id}.jpg",
        media_kind=MediaKind.IMAGE,
        recipients=["alice"],
        timestamp=timestamp,
        **kwargs,
    )


class TestQueueItem:
    """Tests for the QueueItem record layout."""

    def test_create_assigns_unique_ids(self) -> None:
        """Items created back to back should get distinct, ordered IDs."""
        items = [QueueItem.create("/tmp/a.jpg", MediaKind.IMAGE) for _ in range(50)]
        ids = [int(item.id) for item in items]

        assert len(set(ids)) == 50
        assert ids == sorted(ids)
        assert all(int(item.id) == item.timestamp for item in items)

    def test_new_item_defaults(self) -> None:
        """A new item is pending with no retry count."""
        item = QueueItem.create("/tmp/a.jpg", MediaKind.VIDEO, ["bob"])

        assert item.status == UploadStatus.PENDING
        assert item.retry_count is None
        assert item.recipients == ["bob"]
        assert item.overlays == []

    def test_record_layout(self) -> None:
        """Records should use the persisted camelCase keys."""
        overlay = TextOverlay(id="o1", text="hi", x=1, y=2, width=3, height=4, font_size=12)
        item = make_item("1", 1, retry_count=2, overlays=[overlay])

        record = item.to_record()

        assert record["payloadRef"] == "/tmp/1.jpg"
        assert record["mediaKind"] == "image"
        assert record["retryCount"] == 2
        assert record["overlays"][0]["position"] == {"x": 1, "y": 2}
        assert record["overlays"][0]["fontSize"] == 12
        assert QueueItem.from_record(record) == item

    def test_record_omits_unset_fields(self) -> None:
        """retryCount and overlays are omitted until set."""
        record = make_item("1", 1).to_record()

        assert "retryCount" not in record
        assert "overlays" not in record


class TestQueueStore:
    """Tests for QueueStore."""

    def test_enqueue_persists(self, state: LocalState) -> None:
        """Enqueued items should be written through to state."""
        store = QueueStore(state)
        item = store.enqueue("/tmp/a.jpg", MediaKind.IMAGE, ["alice"])

        records = state.load_records(QUEUE_KEY)
        assert [r["id"] for r in records] == [item.id]
        assert len(store) == 1

    def test_reload_from_state(self, state: LocalState) -> None:
        """A new store should see items written by a previous one."""
        item = QueueStore(state).enqueue("/tmp/a.jpg", MediaKind.IMAGE)

        reloaded = QueueStore(state)

        assert reloaded.get(item.id) == item

    def test_list_pending_sorted_by_timestamp(self, state: LocalState) -> None:
        """Items should be listed oldest first regardless of insertion order."""
        store = QueueStore(state)
        store.append(make_item("3", 300))
        store.append(make_item("1", 100))
        store.append(make_item("2", 200))

        assert [item.id for item in store.list_pending()] == ["1", "2", "3"]

    def test_append_duplicate_id(self, state: LocalState) -> None:
        """Appending an existing ID should fail."""
        store = QueueStore(state)
        store.append(make_item("1", 1))

        with pytest.raises(ValueError):
            store.append(make_item("1", 2))

    def test_remove(self, state: LocalState) -> None:
        """Removed items should be gone from state."""
        store = QueueStore(state)
        store.append(make_item("1", 1))

        removed = store.remove("1")

        assert removed is not None and removed.id == "1"
        assert store.get("1") is None
        assert state.load_records(QUEUE_KEY) == []

    def test_remove_missing(self, state: LocalState) -> None:
        """Removing an unknown ID should return None."""
        assert QueueStore(state).remove("nope") is None

    def test_update_status(self, state: LocalState) -> None:
        """Status updates should persist."""
        store = QueueStore(state)
        store.append(make_item("1", 1))

        assert store.update_status("1", UploadStatus.UPLOADING)

        assert QueueStore(state).get("1").status == UploadStatus.UPLOADING  # type: ignore[union-attr]

    def test_update_retry_count(self, state: LocalState) -> None:
        """Retry count updates should persist."""
        store = QueueStore(state)
        store.append(make_item("1", 1))

        assert store.update_retry_count("1", 2)

        assert QueueStore(state).get("1").retry_count == 2  # type: ignore[union-attr]

    def test_update_missing(self, state: LocalState) -> None:
        """Updates of unknown IDs should return False."""
        store = QueueStore(state)

        assert not store.update_status("nope", UploadStatus.FAILED)
        assert not store.update_retry_count("nope", 1)

    def test_failed_write_keeps_memory_consistent(self, state: LocalState) -> None:
        """A failed persistence write leaves the stored queue unchanged."""
        store = QueueStore(state)
        store.append(make_item("1", 1))

        with patch.object(state, "save_records", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.update_retry_count("1", 5)
            with pytest.raises(OSError):
                store.append(make_item("2", 2))

        assert store.get("1").retry_count is None  # type: ignore[union-attr]
        assert store.get("2") is None

    def test_reset_in_flight(self, state: LocalState) -> None:
        """Items left uploading should go back to pending."""
        store = QueueStore(state)
        store.append(make_item("1", 1, status=UploadStatus.UPLOADING))
        store.append(make_item("2", 2))

        assert store.reset_in_flight() == ["1"]
        assert all(item.status == UploadStatus.PENDING for item in store.list_pending())
        assert store.reset_in_flight() == []

    def test_unreadable_record_dropped(self, state: LocalState) -> None:
        """A record missing required keys should be skipped on load."""
        state.save_records(QUEUE_KEY, [{"id": "1"}, make_item("2", 2).to_record()])

        assert QueueStore(state).ids() == {"2"}

    def test_concurrent_enqueue_loses_nothing(self, state: LocalState) -> None:
        """Interleaved enqueues from several threads should all persist."""
        store = QueueStore(state)

        def worker() -> None:
            for _ in range(20):
                store.enqueue("/tmp/a.jpg", MediaKind.IMAGE)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 100
        assert len(state.load_records(QUEUE_KEY)) == 100

    def test_returned_items_are_copies(self, state: LocalState) -> None:
        """Changing a returned item does not change the queue."""
        store = QueueStore(state)
        store.append(make_item("1", 1))

        store.get("1").status = UploadStatus.FAILED  # type: ignore[union-attr]

        assert store.get("1").status == UploadStatus.PENDING  # type: ignore[union-attr]


class TestSharedDatabase:
    """Tests for two processes sharing one state database."""

    @pytest.fixture
    def db_path(self, tmp_path: Path) -> Path:
        """Path of a state database on disk."""
        return tmp_path / "state.db"

    def test_writes_from_both_connections_survive(self, db_path: Path) -> None:
        """An update on one connection keeps items the other one queued."""
        state_a, state_b = LocalState(db_path), LocalState(db_path)
        try:
            engine, sender = QueueStore(state_a), QueueStore(state_b)
            first = engine.enqueue("/tmp/a.jpg", MediaKind.IMAGE)
            second = sender.enqueue("/tmp/b.jpg", MediaKind.IMAGE)

            assert engine.update_status(first.id, UploadStatus.UPLOADING)
            engine.remove(first.id)

            assert [r["id"] for r in state_b.load_records(QUEUE_KEY)] == [second.id]
        finally:
            state_a.close()
            state_b.close()

    def test_items_queued_elsewhere_are_listed(self, db_path: Path) -> None:
        """A running store sees items another connection queued after it loaded."""
        state_a, state_b = LocalState(db_path), LocalState(db_path)
        try:
            engine = QueueStore(state_a)
            item = QueueStore(state_b).enqueue("/tmp/b.jpg", MediaKind.IMAGE)

            assert [i.id for i in engine.list_pending()] == [item.id]
            assert engine.ids() == {item.id}
        finally:
            state_a.close()
            state_b.close()
