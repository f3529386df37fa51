import threading
from unittest.mock import patch

import pytest

from renamer.batch_processor import BatchHandle, BatchProcessor
from renamer.errors import BatchInProgressError, QueueStoreError
from renamer.processor import ItemProcessor
from renamer.resume import ResumeController
from renamer.schema import BatchStatus, ItemStatus

from fakes import FakeProvider

WAIT_SECONDS = 10


class ConcurrencyCounter(FakeProvider):
    """Tracks how many files are being categorized at the same time."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.active = 0
        self.peak = 0
        self.counter_lock = threading.Lock()
        self.release = threading.Event()
        self.release.set()

    def categorize(self, file_ref, prompt, *, model):
        with self.counter_lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            self.release.wait(WAIT_SECONDS)
            return super().categorize(file_ref, prompt, model=model)
        finally:
            with self.counter_lock:
                self.active -= 1


def _batch_processor(provider, settings, queue_store, tracker=None, **callbacks):
    return BatchProcessor(
        ItemProcessor(provider, settings),
        queue_store,
        feedback=tracker,
        default_concurrency=settings.processing.parallel_files,
        **callbacks,
    )


def test_groups_are_fixed_size_and_awaited(settings, queue_store, make_files):
    paths = make_files(5)
    provider = ConcurrencyCounter()
    events = []
    processor = _batch_processor(
        provider, settings, queue_store, on_progress=events.append
    )

    summary = processor.start(paths, 2).wait(WAIT_SECONDS)

    assert [event.group_index for event in events] == [1, 2, 3]
    assert [event.completed for event in events] == [2, 4, 5]
    assert all(event.total == 5 for event in events)
    assert provider.peak <= 2
    assert summary.dispatched == 5
    assert summary.succeeded == 5
    assert summary.status == BatchStatus.COMPLETED
    assert queue_store.get_pending(summary.batch_id) == []


def test_failed_item_does_not_stop_the_batch(
    settings, queue_store, tracker, make_files
):
    paths = make_files(5)
    provider = FakeProvider(fail_on=[paths[2]])
    failed = []
    completed = []
    processor = _batch_processor(
        provider,
        settings,
        queue_store,
        tracker,
        on_item_failed=lambda path, error: failed.append((path, error)),
        on_item_complete=lambda path, result: completed.append(path),
    )

    summary = processor.start(paths, 2).wait(WAIT_SECONDS)

    assert summary.succeeded == 4
    assert summary.failed == 1
    assert summary.status == BatchStatus.COMPLETED
    assert [path for path, _ in failed] == [paths[2]]
    assert "connection refused" in failed[0][1]
    assert sorted(completed) == sorted(set(paths) - {paths[2]})

    items = {item.file_path: item for item in queue_store.get_items(summary.batch_id)}
    assert items[paths[2]].status == ItemStatus.FAILED
    assert items[paths[0]].status == ItemStatus.COMPLETE
    assert items[paths[0]].result.category == "invoice"
    assert tracker.get_latest(paths[0]).batch_id == summary.batch_id
    assert tracker.get_latest(paths[2]) is None


def test_cancel_then_resume_processes_only_the_rest(
    settings, queue_store, make_files
):
    paths = make_files(5)
    provider = FakeProvider()
    processor = _batch_processor(provider, settings, queue_store)

    def cancel_after_three(event):
        if event.completed == 3:
            processor.cancel()

    processor.on_progress = cancel_after_three
    summary = processor.start(paths, 1).wait(WAIT_SECONDS)

    assert summary.cancelled is True
    assert summary.dispatched == 3
    assert summary.status == BatchStatus.INTERRUPTED
    assert provider.calls["categorize"] == 3
    assert queue_store.get_pending(summary.batch_id) == paths[3:]

    processor.on_progress = None
    controller = ResumeController(queue_store, processor)
    interrupted = controller.check_for_interrupted_batch()
    assert interrupted.batch_id == summary.batch_id
    assert interrupted.remaining == 2
    assert interrupted.completed == 3

    resumed = controller.resume(interrupted).wait(WAIT_SECONDS)

    assert provider.calls["categorize"] == 5
    assert provider.categorized_paths[3:] == paths[3:]
    assert resumed.batch_id == summary.batch_id
    assert resumed.total == 5
    assert resumed.dispatched == 2
    assert resumed.status == BatchStatus.COMPLETED
    assert queue_store.get_pending(summary.batch_id) == []
    assert controller.check_for_interrupted_batch() is None


def test_second_batch_is_refused_while_one_runs(settings, queue_store, make_files):
    paths = make_files(3)
    provider = ConcurrencyCounter()
    provider.release.clear()
    processor = _batch_processor(provider, settings, queue_store)

    handle = processor.start(paths[:2], 2)
    try:
        assert processor.active_batch is handle
        with pytest.raises(BatchInProgressError):
            processor.start(paths[2:], 1)
    finally:
        provider.release.set()
    handle.wait(WAIT_SECONDS)

    assert processor.active_batch is None
    assert processor.start(paths[2:], 1).wait(WAIT_SECONDS).succeeded == 1


def test_invalid_arguments_are_rejected(settings, queue_store, make_files):
    processor = _batch_processor(FakeProvider(), settings, queue_store)

    with pytest.raises(ValueError):
        processor.start([])
    with pytest.raises(ValueError):
        processor.start(make_files(1), -1)


def test_zero_concurrency_is_rejected(settings, queue_store, make_files):
    processor = _batch_processor(FakeProvider(), settings, queue_store)

    with pytest.raises(ValueError, match="at least 1"):
        processor.start(make_files(2), 0)
    assert queue_store.list_batches() == []


def test_callback_errors_are_contained(settings, queue_store, make_files):
    paths = make_files(2)

    def broken(*_args):
        raise RuntimeError("display went away")

    processor = _batch_processor(
        FakeProvider(),
        settings,
        queue_store,
        on_progress=broken,
        on_item_complete=broken,
        on_batch_complete=broken,
    )

    summary = processor.start(paths, 2).wait(WAIT_SECONDS)

    assert summary.succeeded == 2
    assert summary.status == BatchStatus.COMPLETED


def test_store_failure_is_counted_not_fatal(settings, queue_store, make_files):
    paths = make_files(2)
    completed = []
    processor = _batch_processor(
        FakeProvider(),
        settings,
        queue_store,
        on_item_complete=lambda path, result: completed.append(path),
    )
    original = queue_store.mark_complete

    def flaky_mark_complete(batch_id, file_path, result):
        if file_path == paths[0]:
            raise QueueStoreError("disk full")
        return original(batch_id, file_path, result)

    with patch.object(queue_store, "mark_complete", side_effect=flaky_mark_complete):
        summary = processor.start(paths, 2).wait(WAIT_SECONDS)

    assert summary.succeeded == 2
    assert summary.bookkeeping_errors == 1
    assert sorted(completed) == sorted(paths)
    # The unrecorded item is still owed work, so the batch stays resumable.
    assert summary.status == BatchStatus.INTERRUPTED
    assert queue_store.get_pending(summary.batch_id) == [paths[0]]


def test_batch_complete_callback_receives_summary(settings, queue_store, make_files):
    summaries = []
    processor = _batch_processor(
        FakeProvider(), settings, queue_store, on_batch_complete=summaries.append
    )

    summary = processor.start(make_files(3)).wait(WAIT_SECONDS)

    assert summaries == [summary]
    assert summary.total == 3


def test_wait_without_summary_raises():
    handle = BatchHandle("batch_empty", 1, threading.Event())
    handle._finish(None)

    with pytest.raises(RuntimeError, match="without a summary"):
        handle.wait(0)
