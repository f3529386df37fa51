"""Detect batches left unfinished by a crash or cancel, and resume or dismiss them."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from renamer.batch_processor import BatchHandle, BatchProcessor
from renamer.queue_store import QueueStore
from renamer.schema import Batch, BatchStatus

logger = logging.getLogger(__name__)


@dataclass
class InterruptedBatch:
    batch: Batch
    remaining: int
    completed: int
    failed: int

    @property
    def batch_id(self) -> str:
        return self.batch.batch_id

    @property
    def total(self) -> int:
        return self.batch.total


def _batch_id(batch: InterruptedBatch | Batch | str) -> str:
    if isinstance(batch, str):
        return batch
    return batch.batch_id


class ResumeController:
    """Offers unfinished batches back to the user; never acts on its own."""

    def __init__(
        self, queue_store: QueueStore, batch_processor: BatchProcessor
    ) -> None:
        self.queue_store = queue_store
        self.batch_processor = batch_processor

    def check_for_interrupted_batch(self) -> InterruptedBatch | None:
        active = self.batch_processor.active_batch
        exclude = [active.batch_id] if active is not None else []
        batch = self.queue_store.get_interrupted(exclude=exclude)
        if batch is None:
            return None
        stats = self.queue_store.get_stats(batch.batch_id)
        logger.info(
            "Found interrupted batch %s: %d of %d remaining",
            batch.batch_id,
            stats.remaining,
            stats.total,
        )
        return InterruptedBatch(
            batch=batch,
            remaining=stats.remaining,
            completed=stats.complete,
            failed=stats.failed,
        )

    def resume(
        self,
        batch: InterruptedBatch | Batch | str,
        concurrency: int | None = None,
    ) -> BatchHandle:
        """Continue ``batch`` with exactly its pending items and original id."""
        batch_id = _batch_id(batch)
        stored = self.queue_store.get_batch(batch_id)
        if stored is None:
            raise ValueError(f"Unknown batch {batch_id}")
        if stored.status is BatchStatus.DISMISSED:
            raise ValueError(f"Batch {batch_id} was dismissed")

        pending = self.queue_store.get_pending(batch_id)
        if not pending:
            self.queue_store.set_status(batch_id, BatchStatus.COMPLETED)
            raise ValueError(f"Batch {batch_id} has nothing left to process")

        logger.info(
            "Resuming batch %s with %d of %d files",
            batch_id,
            len(pending),
            stored.total,
        )
        return self.batch_processor.start(
            pending,
            concurrency,
            directory=stored.directory,
            batch_id=batch_id,
        )

    def dismiss(self, batch: InterruptedBatch | Batch | str) -> None:
        batch_id = _batch_id(batch)
        self.queue_store.dismiss(batch_id)
        logger.info("Dismissed batch %s", batch_id)
