"""Bounded-concurrency batch runner with durable progress and cancellation."""

from __future__ import annotations

import concurrent.futures
import logging
import secrets
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from renamer.errors import (
    BatchInProgressError,
    FeedbackError,
    ItemProcessingError,
    QueueStoreError,
)
from renamer.feedback import FeedbackTracker
from renamer.processor import ItemProcessor, StageCallback
from renamer.queue_store import QueueStore
from renamer.schema import (
    BatchStatus,
    BatchSummary,
    ProcessResult,
    ProgressEvent,
)

batch_logger = logging.getLogger("renamer.batch")
# Bookkeeping failures are reported under the store's own logger.
store_logger = logging.getLogger("renamer.queue_store")

ProgressCallback = Callable[[ProgressEvent], None]
ItemCompleteCallback = Callable[[str, ProcessResult], None]
ItemFailedCallback = Callable[[str, str], None]
BatchCompleteCallback = Callable[[BatchSummary], None]

DEFAULT_CONCURRENCY = 3


def new_batch_id() -> str:
    return f"batch_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class ItemOutcome:
    file_path: str
    succeeded: bool
    error: str | None = None
    bookkeeping_errors: int = 0


class BatchHandle:
    """Reference to a running batch."""

    def __init__(
        self,
        batch_id: str,
        total: int,
        cancel_event: threading.Event,
    ) -> None:
        self.batch_id = batch_id
        self.total = total
        self._cancel_event = cancel_event
        self._done = threading.Event()
        self._summary: BatchSummary | None = None
        self._error: BaseException | None = None

    @property
    def is_running(self) -> bool:
        return not self._done.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop dispatching new groups; items already running finish."""
        if not self._cancel_event.is_set():
            batch_logger.info("Cancellation requested for batch %s", self.batch_id)
        self._cancel_event.set()

    def wait(self, timeout: float | None = None) -> BatchSummary:
        """Block until the batch finishes and return its summary."""
        if not self._done.wait(timeout):
            raise TimeoutError(f"Batch {self.batch_id} is still running")
        if self._error is not None:
            raise self._error
        if self._summary is None:
            raise RuntimeError(f"Batch {self.batch_id} finished without a summary")
        return self._summary

    def _finish(
        self, summary: BatchSummary | None, error: BaseException | None = None
    ) -> None:
        self._summary = summary
        self._error = error
        self._done.set()


class BatchProcessor:
    """Runs file paths through an :class:`ItemProcessor` in fixed-size groups.

    Each group of ``concurrency`` items is dispatched together and the next
    group starts only after every item of the current one has resolved. Item
    outcomes are written to the queue store as soon as they are known, and
    progress is derived from the stored statuses after each group.
    """

    def __init__(
        self,
        processor: ItemProcessor,
        queue_store: QueueStore,
        *,
        feedback: FeedbackTracker | None = None,
        default_concurrency: int = DEFAULT_CONCURRENCY,
        on_progress: ProgressCallback | None = None,
        on_item_complete: ItemCompleteCallback | None = None,
        on_item_failed: ItemFailedCallback | None = None,
        on_batch_complete: BatchCompleteCallback | None = None,
        on_item_stage: StageCallback | None = None,
    ) -> None:
        self.processor = processor
        self.queue_store = queue_store
        self.feedback = feedback
        self.default_concurrency = default_concurrency
        self.on_progress = on_progress
        self.on_item_complete = on_item_complete
        self.on_item_failed = on_item_failed
        self.on_batch_complete = on_batch_complete
        self.on_item_stage = on_item_stage
        self._lock = threading.Lock()
        self._active: BatchHandle | None = None

    @property
    def active_batch(self) -> BatchHandle | None:
        with self._lock:
            if self._active is not None and self._active.is_running:
                return self._active
            return None

    def start(
        self,
        file_paths: Sequence[str],
        concurrency: int | None = None,
        *,
        directory: str | None = None,
        batch_id: str | None = None,
    ) -> BatchHandle:
        """Create (or continue) a batch and start processing it in the background.

        With ``batch_id`` the existing batch is continued: only ``file_paths``
        are dispatched, while progress keeps counting against the batch's
        original total.
        """
        paths = list(dict.fromkeys(file_paths))
        if not paths:
            raise ValueError("file_paths must not be empty")
        if concurrency is None:
            concurrency = self.default_concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        with self._lock:
            if self._active is not None and self._active.is_running:
                raise BatchInProgressError(
                    f"Batch {self._active.batch_id} is still running"
                )

            if batch_id is None:
                batch_id = new_batch_id()
                batch = self.queue_store.create(batch_id, paths, directory=directory)
            else:
                batch = self.queue_store.get_batch(batch_id)
                if batch is None:
                    raise QueueStoreError(f"Unknown batch {batch_id}")
                unknown = set(paths) - set(batch.queue)
                if unknown:
                    raise ValueError(
                        f"{len(unknown)} paths are not part of batch {batch_id}"
                    )
                self.queue_store.set_status(batch_id, BatchStatus.RUNNING)

            handle = BatchHandle(batch_id, batch.total, threading.Event())
            thread = threading.Thread(
                target=self._run,
                args=(handle, paths, concurrency),
                name=f"renamer-{batch_id}",
                daemon=True,
            )
            self._active = handle

        batch_logger.info(
            "Starting batch %s: %d of %d files, concurrency %d",
            batch_id,
            len(paths),
            batch.total,
            concurrency,
        )
        thread.start()
        return handle

    def cancel(self) -> None:
        """Cancel the active batch, if any."""
        handle = self.active_batch
        if handle is not None:
            handle.cancel()

    def _run(self, handle: BatchHandle, paths: list[str], concurrency: int) -> None:
        run_logger = batch_logger.getChild("run")
        try:
            summary = self._run_groups(handle, paths, concurrency, run_logger)
        except BaseException as exc:  # pragma: no cover - surfaced through wait()
            run_logger.exception("Batch %s aborted unexpectedly", handle.batch_id)
            handle._finish(None, exc)
            return
        if self.on_batch_complete is not None:
            self._notify(self.on_batch_complete, summary)
        handle._finish(summary)

    def _run_groups(
        self,
        handle: BatchHandle,
        paths: list[str],
        concurrency: int,
        run_logger: logging.Logger,
    ) -> BatchSummary:
        batch_id = handle.batch_id
        summary = BatchSummary(batch_id=batch_id, total=handle.total)
        groups = [paths[i : i + concurrency] for i in range(0, len(paths), concurrency)]

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix="renamer-worker"
        ) as pool:
            for group_index, group in enumerate(groups, start=1):
                if handle.cancelled:
                    run_logger.info(
                        "Batch %s cancelled before group %d/%d",
                        batch_id,
                        group_index,
                        len(groups),
                    )
                    break
                run_logger.debug(
                    "Dispatching group %d/%d (%d files)",
                    group_index,
                    len(groups),
                    len(group),
                )
                futures = [
                    pool.submit(self._process_one, batch_id, path) for path in group
                ]
                summary.dispatched += len(futures)
                concurrent.futures.wait(futures)
                for future in futures:
                    outcome = future.result()
                    if outcome.succeeded:
                        summary.succeeded += 1
                    else:
                        summary.failed += 1
                    summary.bookkeeping_errors += outcome.bookkeeping_errors
                self._emit_progress(handle, group_index, summary)

        summary.cancelled = handle.cancelled
        summary.status = self._final_status(batch_id, summary)
        try:
            self.queue_store.set_status(batch_id, summary.status)
        except QueueStoreError as exc:
            store_logger.error("Could not finalize batch %s: %s", batch_id, exc)
            summary.bookkeeping_errors += 1

        run_logger.info(
            "Batch %s finished as %s: %d succeeded, %d failed, %d dispatched of %d",
            batch_id,
            summary.status.value,
            summary.succeeded,
            summary.failed,
            summary.dispatched,
            summary.total,
        )
        return summary

    def _final_status(self, batch_id: str, summary: BatchSummary) -> BatchStatus:
        try:
            remaining = self.queue_store.get_stats(batch_id).remaining
        except QueueStoreError as exc:
            store_logger.error("Could not count items of %s: %s", batch_id, exc)
            summary.bookkeeping_errors += 1
            return BatchStatus.INTERRUPTED
        if remaining == 0:
            return BatchStatus.COMPLETED
        return BatchStatus.INTERRUPTED

    def _emit_progress(
        self, handle: BatchHandle, group_index: int, summary: BatchSummary
    ) -> None:
        try:
            stats = self.queue_store.get_stats(handle.batch_id)
        except QueueStoreError as exc:
            store_logger.error(
                "Could not read progress of %s: %s", handle.batch_id, exc
            )
            summary.bookkeeping_errors += 1
            return
        event = ProgressEvent(
            batch_id=handle.batch_id,
            completed=stats.finished,
            failed=stats.failed,
            total=handle.total,
            group_index=group_index,
        )
        batch_logger.info(
            "Batch %s progress: %d/%d (%d failed)",
            event.batch_id,
            event.completed,
            event.total,
            event.failed,
        )
        if self.on_progress is not None:
            self._notify(self.on_progress, event)

    def _process_one(self, batch_id: str, file_path: str) -> ItemOutcome:
        worker_logger = batch_logger.getChild(threading.current_thread().name)
        outcome = ItemOutcome(file_path=file_path, succeeded=False)

        try:
            self.queue_store.mark_in_flight(batch_id, file_path)
        except QueueStoreError as exc:
            store_logger.error("Could not mark %s in flight: %s", file_path, exc)
            outcome.bookkeeping_errors += 1

        result: ProcessResult | None = None
        try:
            result = self.processor.process(file_path, on_stage=self.on_item_stage)
        except ItemProcessingError as exc:
            outcome.error = str(exc)
            worker_logger.warning("Failed %s: %s", file_path, exc)
        except Exception as exc:
            outcome.error = f"Unexpected error: {exc}"
            worker_logger.exception("Unexpected error processing %s", file_path)

        if result is not None:
            outcome.succeeded = True
            try:
                self.queue_store.mark_complete(batch_id, file_path, result)
            except QueueStoreError as exc:
                store_logger.error("Could not record result of %s: %s", file_path, exc)
                outcome.bookkeeping_errors += 1
            if self.feedback is not None:
                try:
                    self.feedback.log_suggestion(result, batch_id=batch_id)
                except FeedbackError as exc:
                    worker_logger.error(
                        "Could not log suggestion for %s: %s", file_path, exc
                    )
                    outcome.bookkeeping_errors += 1
            worker_logger.info(
                "Completed %s -> %s", file_path, result.ai_suggested_name
            )
            if self.on_item_complete is not None:
                self._notify(self.on_item_complete, file_path, result)
        else:
            try:
                self.queue_store.mark_failed(batch_id, file_path, outcome.error or "")
            except QueueStoreError as exc:
                store_logger.error("Could not record failure of %s: %s", file_path, exc)
                outcome.bookkeeping_errors += 1
            if self.on_item_failed is not None:
                self._notify(self.on_item_failed, file_path, outcome.error or "")
        return outcome

    @staticmethod
    def _notify(callback: Callable[..., None], *args: object) -> None:
        try:
            callback(*args)
        except Exception:
            batch_logger.exception("Batch callback %r raised", callback)
