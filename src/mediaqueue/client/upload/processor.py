"""Queue processor driving uploads from the durable queue.

This module provides:
- QueueProcessor: Single-flight, rate-limited drain loop over the QueueStore
- HealthProbe: Protocol for the server availability gate

Within a process the processor is the only writer of the QueueStore and the
HistoryLog; other processes may only append items, which refresh() picks up:
1. Accepts new items (enqueue) and triggers an immediate pass
2. Checks the pre-flight gates once per pass
3. Attempts each queued item in creation order through the executor
4. Converts every outcome into queue/history updates and events
5. Schedules the next pass while backlog remains and the gates are open

Item state machine:
    | From      | Outcome                    | To                            |
    |-----------|----------------------------|-------------------------------|
    | pending   | attempt starts             | uploading                     |
    | uploading | success                    | completed (removed)           |
    | uploading | transient error, budget    | pending, retry_count + 1      |
    | uploading | transient error, exhausted | failed (removed)              |
    | uploading | rejected / payload missing | failed (removed), count kept  |
    | uploading | configuration missing      | pending, pass aborted         |

Passes run on a background thread. A trigger while a pass is running is a
no-op; the running pass re-triggers on completion if backlog remains.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import IntEnum, auto
from typing import TYPE_CHECKING, Protocol

from mediaqueue.client.upload.retry import RetryPolicy
from mediaqueue.client.upload.types import (
    PAYLOAD_MISSING_REASON,
    ConfigurationMissingError,
    DrainOutcome,
    DrainResult,
    ProcessorStats,
    QueueEvent,
    UploadError,
)
from mediaqueue.core.config import ProcessorSettings
from mediaqueue.core.types import UploadStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from mediaqueue.client.connectivity import ConnectionState, ConnectivityOracle
    from mediaqueue.client.upload.history import HistoryLog
    from mediaqueue.client.upload.queue import QueueStore
    from mediaqueue.client.upload.transfer import TransferExecutor
    from mediaqueue.client.upload.types import (
        HistoryEntry,
        QueueEventCallback,
        QueueItem,
        TextOverlay,
    )
    from mediaqueue.core.config import EndpointConfig
    from mediaqueue.core.types import MediaKind

logger = logging.getLogger(__name__)


class HealthProbe(Protocol):
    """Protocol for the server availability gate."""

    @property
    def available(self) -> bool:
        """Availability from the last check."""
        ...

    @property
    def latency_ms(self) -> int:
        """Latency from the last check in milliseconds."""
        ...

    def check(self) -> bool:
        """Check the server now."""
        ...

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback for server-available-again signals."""
        ...

    def remove_listener(self, callback: Callable[[], None]) -> None:
        """Unregister a callback."""
        ...


class ProcessorState(IntEnum):
    """State of the processor."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


class _PassAborted(Exception):
    """Raised inside a pass to stop it without touching remaining items."""

    def __init__(self, outcome: DrainOutcome) -> None:
        super().__init__(outcome.value)
        self.outcome = outcome


class QueueProcessor:
    """Drains the upload queue under connectivity and retry constraints.

    Usage:
        processor = QueueProcessor(
            queue=QueueStore(state),
            history=HistoryLog(state),
            executor=HTTPTransferExecutor(get_endpoint_config),
            health_probe=RemoteHealthProbe(get_endpoint_config),
            connectivity=SocketConnectivityOracle(),
            settings_provider=get_endpoint_config,
        )
        processor.start()  # recovers history, then drains in background
        processor.enqueue("/tmp/photo.jpg", MediaKind.IMAGE, ["alice"])
        ...
        processor.stop()
    """

    def __init__(
        self,
        queue: QueueStore,
        history: HistoryLog,
        executor: TransferExecutor,
        health_probe: HealthProbe,
        connectivity: ConnectivityOracle,
        settings_provider: Callable[[], EndpointConfig | None],
        settings: ProcessorSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the processor.

        Args:
            queue: Durable queue store (owned by this processor).
            history: Durable history log (owned by this processor).
            executor: Performs one upload attempt per item.
            health_probe: Server availability gate.
            connectivity: Network reachability gate.
            settings_provider: Returns the endpoint config, or None if unset.
            settings: Retry/interval/transport policy.
            clock: Monotonic clock used for rate limiting.
        """
        self._queue = queue
        self._history = history
        self._executor = executor
        self._health_probe = health_probe
        self._connectivity = connectivity
        self._settings_provider = settings_provider
        self._settings = settings or ProcessorSettings()
        self._policy = RetryPolicy(self._settings.max_retries)
        self._clock = clock

        # Scheduling state
        self._state = ProcessorState.STOPPED
        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._stop_requested = threading.Event()
        self._pass_running = False
        self._pass_thread: threading.Thread | None = None
        self._rerun_requested = False
        self._timer: threading.Timer | None = None
        self._known_ids: set[str] = set()
        self._last_pass_at: float | None = None

        # Current transfer
        self._current_item_id: str | None = None
        self._current_progress = 0

        self._listeners: list[QueueEventCallback] = []
        self._stats = ProcessorStats()

    # === Properties ===

    @property
    def state(self) -> ProcessorState:
        """Get current processor state."""
        return self._state

    @property
    def stats(self) -> ProcessorStats:
        """Get processor statistics."""
        return self._stats

    @property
    def policy(self) -> RetryPolicy:
        """Get the retry policy."""
        return self._policy

    @property
    def is_busy(self) -> bool:
        """True while a pass is running."""
        return self._pass_running

    @property
    def current_item_id(self) -> str | None:
        """ID of the item being transferred, if any."""
        return self._current_item_id

    @property
    def current_progress(self) -> int:
        """Progress of the current transfer (0 when idle)."""
        return self._current_progress

    @property
    def server_available(self) -> bool:
        """Server availability from the last health check."""
        return self._health_probe.available

    @property
    def server_latency_ms(self) -> int:
        """Server latency from the last health check."""
        return self._health_probe.latency_ms

    # === Lifecycle ===

    def start(self) -> None:
        """Recover persisted state, subscribe to gates, start draining."""
        with self._lock:
            if self._state != ProcessorState.STOPPED:
                logger.warning("Processor already running")
                return

            self.recover()

            self._stop_requested.clear()
            self._state = ProcessorState.RUNNING
            self._connectivity.add_listener(self._on_connectivity_regained)
            self._health_probe.add_listener(self._on_server_available)
            logger.info("Processor started (%d queued)", len(self._queue))

            self.trigger(force=True)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop scheduling passes and wait for the current one.

        An in-flight transfer is not interrupted; the pass stops after it.

        Args:
            timeout: Maximum time to wait for the pass thread.
        """
        with self._lock:
            if self._state == ProcessorState.STOPPED:
                return

            self._state = ProcessorState.STOPPING
            self._stop_requested.set()
            self._cancel_timer()
            self._connectivity.remove_listener(self._on_connectivity_regained)
            self._health_probe.remove_listener(self._on_server_available)
            thread = self._pass_thread
            logger.info("Processor stopping...")

        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)

        with self._lock:
            self._state = ProcessorState.STOPPED
            self._pass_thread = None
            self._idle.notify_all()
            logger.info("Processor stopped")

    def recover(self) -> list[str]:
        """Repair persisted state left by a process that died mid-flight.

        Queue items stuck in "uploading" go back to pending (and so do their
        history entries). History entries still open whose item is no longer
        queued are failed with reason "interrupted". Idempotent.

        Returns:
            IDs of history entries marked interrupted.
        """
        with self._lock, self._history.transaction():
            for item_id in self._queue.reset_in_flight():
                self._history.mark_pending(item_id)
            interrupted = self._history.reconcile(self._queue.ids())
            self._known_ids = self._queue.ids()
        return interrupted

    # === Queue access ===

    def enqueue(
        self,
        payload_ref: str,
        media_kind: MediaKind,
        recipients: list[str] | None = None,
        overlays: list[TextOverlay] | None = None,
    ) -> str:
        """Durably record a new upload and trigger an immediate pass.

        Returns as soon as the item is persisted; the upload happens on
        the processor's background thread.

        Returns:
            The new item's ID.
        """
        with self._lock:
            item = self._queue.enqueue(payload_ref, media_kind, recipients, overlays)
            self._history.insert_if_absent(item)
            self._known_ids.add(item.id)
        logger.info("Enqueued %s for %d recipients", item.id, len(item.recipients))
        self._emit(QueueEvent(item_id=item.id, status=UploadStatus.PENDING))
        self.trigger(force=True)
        return item.id

    def refresh(self) -> bool:
        """Pick up items queued by another process.

        The queue is shared through the state database, so a `send` from a
        second process lands on disk without triggering this processor.
        Hosts call this periodically.

        Returns:
            True if unseen items were found and a pass was requested.
        """
        ids = self._queue.ids()
        with self._lock:
            new_ids = ids - self._known_ids
            self._known_ids = ids
        if not new_ids:
            return False
        logger.info("Found %d uploads queued elsewhere", len(new_ids))
        self.trigger(force=True)
        return True

    def pending_items(self) -> list[QueueItem]:
        """Get queued items, oldest first."""
        return self._queue.list_pending()

    def history_entries(self) -> list[HistoryEntry]:
        """Get the upload history."""
        return self._history.entries()

    def clear_history(self) -> int:
        """Bulk-clear the history log. The queue is not touched."""
        return self._history.clear()

    # === Listeners ===

    def add_listener(self, callback: QueueEventCallback) -> None:
        """Register a callback for every state transition."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: QueueEventCallback) -> None:
        """Unregister a callback."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _emit(self, event: QueueEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(event)
            except Exception:
                logger.exception("Queue listener failed for %s", event.item_id)

    # === Scheduling ===

    def trigger(self, force: bool = False) -> bool:
        """Request a drain pass.

        Args:
            force: Skip the minimum interval since the last pass.

        Returns:
            True if a pass was started now. False if one is already
            running, the pass was deferred, or the processor is stopped.
        """
        with self._lock:
            if self._state != ProcessorState.RUNNING:
                return False

            if force:
                self._last_pass_at = None

            if self._pass_running:
                if force:
                    # Items enqueued mid-pass are not in its snapshot
                    self._rerun_requested = True
                return False

            delay = self._delay_until_next_pass()
            if delay > 0:
                self._schedule(delay)
                return False

            self._cancel_timer()
            self._pass_running = True
            self._pass_thread = threading.Thread(
                target=self._run_pass,
                name="QueueProcessor",
                daemon=True,
            )
            self._pass_thread.start()
            return True

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no pass is running or scheduled.

        Args:
            timeout: Maximum seconds to wait (None = wait forever).

        Returns:
            True if idle, False on timeout.
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: not self._pass_running and self._timer is None,
                timeout=timeout,
            )

    def _delay_until_next_pass(self) -> float:
        if self._last_pass_at is None:
            return 0.0
        elapsed = self._clock() - self._last_pass_at
        return max(0.0, self._settings.process_interval - elapsed)

    def _schedule(self, delay: float) -> None:
        """Defer a pass, keeping an already scheduled one."""
        if self._timer is not None:
            return
        logger.debug("Next pass in %.2fs", delay)
        self._timer = threading.Timer(delay, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
            self.trigger()
            self._idle.notify_all()

    def _on_connectivity_regained(self, state: ConnectionState) -> None:
        logger.info("Connectivity regained (%s), resuming uploads", state.transport.value)
        self.trigger()

    def _on_server_available(self) -> None:
        logger.info("Server available again, resuming uploads")
        self.trigger()

    def _run_pass(self) -> None:
        """Pass thread body: drain, then re-trigger while backlog remains."""
        result: DrainResult | None = None
        try:
            result = self._drain()
        except Exception:
            logger.exception("Drain pass failed")
        finally:
            with self._lock:
                self._pass_running = False
                backlog = (
                    result is not None
                    and not result.outcome.gate_closed
                    and not self._has_transfer_in_flight()
                )
                rerun = self._rerun_requested
                self._rerun_requested = False
                if self._queue and (backlog or rerun):
                    self.trigger()
                self._idle.notify_all()

    def _has_transfer_in_flight(self) -> bool:
        return any(
            item.status == UploadStatus.UPLOADING for item in self._queue.list_pending()
        )

    # === Drain pass ===

    def drain(self) -> DrainResult:
        """Run one drain pass in the calling thread.

        Returns:
            DrainResult; outcome BUSY if another pass is running.
        """
        with self._lock:
            if self._pass_running:
                return DrainResult(outcome=DrainOutcome.BUSY)
            self._pass_running = True
        try:
            return self._drain()
        finally:
            with self._lock:
                self._pass_running = False
                if self._rerun_requested and self._queue:
                    self._rerun_requested = False
                    self.trigger()
                self._idle.notify_all()

    def _drain(self) -> DrainResult:
        self._last_pass_at = self._clock()
        self._stats.passes_run += 1

        items = self._queue.list_pending()
        if not items:
            return DrainResult(outcome=DrainOutcome.EMPTY)

        gate = self._check_gates()
        if gate is not None:
            self._stats.passes_gated += 1
            logger.info("Skipping %d queued uploads: %s", len(items), gate.value)
            return DrainResult(outcome=gate)

        logger.debug("Draining %d queued uploads", len(items))
        result = DrainResult(outcome=DrainOutcome.COMPLETED)
        for item in items:
            if self._stop_requested.is_set():
                result.outcome = DrainOutcome.STOPPED
                break
            try:
                self._process_item(item, result)
            except _PassAborted as e:
                result.outcome = e.outcome
                break
        return result

    def _check_gates(self) -> DrainOutcome | None:
        """Check the pre-flight gates; any failure aborts the whole pass."""
        if self._settings_provider() is None:
            return DrainOutcome.CONFIGURATION_MISSING

        try:
            available = self._health_probe.check()
        except Exception:
            logger.exception("Health check error")
            available = False
        if not available:
            return DrainOutcome.SERVER_UNAVAILABLE

        try:
            connection = self._connectivity.current()
        except Exception:
            logger.exception("Connectivity check error")
            return DrainOutcome.CONNECTIVITY_UNAVAILABLE
        if not connection.connected:
            return DrainOutcome.CONNECTIVITY_UNAVAILABLE

        if self._settings.unmetered_only and connection.is_metered:
            logger.info("Waiting for an unmetered connection before uploading")
            return DrainOutcome.TRANSPORT_NOT_ALLOWED

        return None

    def _process_item(self, item: QueueItem, result: DrainResult) -> None:
        """Attempt one item and record the outcome."""
        current = self._queue.get(item.id)
        if current is None:
            return
        item = current

        retry_count = item.retry_count
        if retry_count is None:
            retry_count = 0
            self._queue.update_retry_count(item.id, 0)

        self._history.insert_if_absent(item)

        if not self._executor.payload_exists(item):
            logger.warning("Payload for %s not found: %s", item.id, item.payload_ref)
            self._fail(item, PAYLOAD_MISSING_REASON, result)
            return

        if self._policy.is_exhausted(retry_count):
            logger.warning("Max retries reached for %s, marking as failed", item.id)
            self._fail(item, self._policy.exhausted_reason(retry_count), result)
            return

        self._queue.update_status(item.id, UploadStatus.UPLOADING)
        self._history.mark_uploading(item.id)
        self._current_item_id = item.id
        self._current_progress = 0
        self._emit(QueueEvent(
            item_id=item.id,
            status=UploadStatus.UPLOADING,
            progress=0,
            retry_count=retry_count,
        ))

        result.attempted += 1
        self._stats.uploads_attempted += 1
        logger.info(
            "Uploading %s (attempt %d/%d)",
            item.id,
            retry_count + 1,
            self._policy.max_attempts,
        )

        try:
            self._executor.execute(
                item,
                on_progress=lambda percent: self._on_progress(item.id, percent),
            )
        except ConfigurationMissingError:
            # Settings vanished mid-pass: not the item's fault
            self._queue.update_status(item.id, UploadStatus.PENDING)
            self._history.mark_pending(item.id)
            self._emit(QueueEvent(item_id=item.id, status=UploadStatus.PENDING))
            raise _PassAborted(DrainOutcome.CONFIGURATION_MISSING) from None
        except UploadError as e:
            if e.permanent:
                logger.warning("Upload %s failed permanently: %s", item.id, e.message)
                self._fail(item, e.message, result)
            else:
                logger.warning("Upload %s failed: %s", item.id, e.message)
                self._retry(item, retry_count, e.message, result)
        except Exception as e:
            logger.exception("Unexpected error uploading %s", item.id)
            self._retry(item, retry_count, str(e) or type(e).__name__, result)
        else:
            self._complete(item, result)
        finally:
            self._current_item_id = None
            self._current_progress = 0

    def _on_progress(self, item_id: str, percent: int) -> None:
        self._current_progress = percent
        self._history.set_progress(item_id, percent)
        self._emit(QueueEvent(item_id=item_id, status=UploadStatus.UPLOADING, progress=percent))

    def _complete(self, item: QueueItem, result: DrainResult) -> None:
        self._history.mark_completed(item.id)
        self._queue.remove(item.id)
        self._stats.uploads_completed += 1
        result.completed.append(item.id)
        logger.info("Upload %s completed", item.id)
        self._emit(QueueEvent(item_id=item.id, status=UploadStatus.COMPLETED, progress=100))

    def _fail(self, item: QueueItem, reason: str, result: DrainResult) -> None:
        self._history.mark_failed(item.id, reason)
        self._queue.remove(item.id)
        self._stats.uploads_failed += 1
        result.failed.append(item.id)
        self._emit(QueueEvent(
            item_id=item.id,
            status=UploadStatus.FAILED,
            error=reason,
            retry_count=item.retry_count,
        ))

    def _retry(self, item: QueueItem, retry_count: int, reason: str, result: DrainResult) -> None:
        """Record a transient failure, failing the item once out of budget."""
        new_count = retry_count + 1
        self._queue.update_retry_count(item.id, new_count)
        self._queue.update_status(item.id, UploadStatus.PENDING)
        item.retry_count = new_count

        if self._policy.is_exhausted(new_count):
            logger.warning("Upload %s exhausted its retries", item.id)
            self._fail(item, self._policy.exhausted_reason(new_count, reason), result)
            return

        self._history.mark_pending(item.id, error=reason)
        self._stats.retries_scheduled += 1
        result.retried.append(item.id)
        self._emit(QueueEvent(
            item_id=item.id,
            status=UploadStatus.PENDING,
            error=reason,
            retry_count=new_count,
        ))
