"""Durable, write-through record of each batch and the state of its items."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterable, Sequence
from datetime import timedelta

from renamer.database_manager import Database, from_db_time, to_db_time
from renamer.errors import QueueStoreError
from renamer.schema import (
    Batch,
    BatchStats,
    BatchStatus,
    ItemStatus,
    ProcessResult,
    QueueItem,
    utc_now,
)

logger = logging.getLogger(__name__)

_TERMINAL = (ItemStatus.COMPLETE.value, ItemStatus.FAILED.value)
_RESUMABLE = (BatchStatus.RUNNING.value, BatchStatus.INTERRUPTED.value)


def _batch_from_row(row: sqlite3.Row, queue: list[str]) -> Batch:
    return Batch(
        batch_id=row["batch_id"],
        directory=row["directory"],
        queue=queue,
        status=BatchStatus(row["status"]),
        started_at=from_db_time(row["started_at"]),
        last_updated_at=from_db_time(row["last_updated_at"]),
    )


def _item_from_row(row: sqlite3.Row) -> QueueItem:
    result = None
    if row["result_json"]:
        result = ProcessResult.model_validate_json(row["result_json"])
    return QueueItem(
        file_path=row["file_path"],
        position=row["position"],
        status=ItemStatus(row["status"]),
        error=row["error"],
        result=result,
        updated_at=from_db_time(row["updated_at"]),
    )


class QueueStore:
    """Batch and item state persisted in SQLite.

    Every transition is committed before the call returns, so a crash never
    loses a finished item. Each item owns its own row, which keeps concurrent
    workers from overwriting each other's updates.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def create(
        self,
        batch_id: str,
        file_paths: Sequence[str],
        directory: str | None = None,
    ) -> Batch:
        queue = list(dict.fromkeys(file_paths))
        if len(queue) != len(file_paths):
            logger.warning(
                "Dropped %d duplicate paths from batch %s",
                len(file_paths) - len(queue),
                batch_id,
            )
        if not queue:
            raise ValueError("A batch needs at least one file path")

        now = to_db_time(utc_now())
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO batches (batch_id, directory, status, total, "
                    "started_at, last_updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        batch_id,
                        directory,
                        BatchStatus.RUNNING.value,
                        len(queue),
                        now,
                        now,
                    ),
                )
                conn.executemany(
                    "INSERT INTO batch_items (batch_id, position, file_path, status, "
                    "updated_at) VALUES (?, ?, ?, ?, ?)",
                    [
                        (batch_id, position, path, ItemStatus.PENDING.value, now)
                        for position, path in enumerate(queue)
                    ],
                )
        except sqlite3.Error as exc:
            raise QueueStoreError(f"Could not create batch {batch_id}: {exc}") from exc
        logger.info("Created batch %s with %d files", batch_id, len(queue))
        return self._require_batch(batch_id)

    def _require_batch(self, batch_id: str) -> Batch:
        batch = self.get_batch(batch_id)
        if batch is None:
            raise QueueStoreError(f"Unknown batch {batch_id}")
        return batch

    def get_batch(self, batch_id: str) -> Batch | None:
        try:
            with self.db.reading() as conn:
                row = conn.execute(
                    "SELECT * FROM batches WHERE batch_id = ?", (batch_id,)
                ).fetchone()
                if row is None:
                    return None
                queue = [
                    item["file_path"]
                    for item in conn.execute(
                        "SELECT file_path FROM batch_items WHERE batch_id = ? "
                        "ORDER BY position",
                        (batch_id,),
                    )
                ]
        except sqlite3.Error as exc:
            raise QueueStoreError(f"Could not read batch {batch_id}: {exc}") from exc
        return _batch_from_row(row, queue)

    def get_items(self, batch_id: str) -> list[QueueItem]:
        try:
            with self.db.reading() as conn:
                rows = conn.execute(
                    "SELECT * FROM batch_items WHERE batch_id = ? ORDER BY position",
                    (batch_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise QueueStoreError(f"Could not read items of {batch_id}: {exc}") from exc
        return [_item_from_row(row) for row in rows]

    def _transition(
        self,
        batch_id: str,
        file_path: str,
        status: ItemStatus,
        *,
        error: str | None = None,
        result_json: str | None = None,
    ) -> None:
        now = to_db_time(utc_now())
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE batch_items SET status = ?, error = ?, result_json = ?, "
                    "updated_at = ? WHERE batch_id = ? AND file_path = ? "
                    "AND status NOT IN (?, ?)",
                    (
                        status.value,
                        error,
                        result_json,
                        now,
                        batch_id,
                        file_path,
                        *_TERMINAL,
                    ),
                )
                if cursor.rowcount == 0:
                    row = conn.execute(
                        "SELECT status FROM batch_items WHERE batch_id = ? "
                        "AND file_path = ?",
                        (batch_id, file_path),
                    ).fetchone()
                    if row is None:
                        raise QueueStoreError(
                            f"{file_path} is not part of batch {batch_id}"
                        )
                    logger.warning(
                        "Ignoring %s for %s in batch %s: item already %s",
                        status.value,
                        file_path,
                        batch_id,
                        row["status"],
                    )
                    return
                conn.execute(
                    "UPDATE batches SET last_updated_at = ? WHERE batch_id = ?",
                    (now, batch_id),
                )
        except sqlite3.Error as exc:
            raise QueueStoreError(
                f"Could not mark {file_path} {status.value} in {batch_id}: {exc}"
            ) from exc

    def mark_in_flight(self, batch_id: str, file_path: str) -> None:
        self._transition(batch_id, file_path, ItemStatus.IN_FLIGHT)

    def mark_complete(
        self, batch_id: str, file_path: str, result: ProcessResult
    ) -> None:
        self._transition(
            batch_id,
            file_path,
            ItemStatus.COMPLETE,
            result_json=result.model_dump_json(),
        )

    def mark_failed(self, batch_id: str, file_path: str, error: str) -> None:
        self._transition(batch_id, file_path, ItemStatus.FAILED, error=error)

    def get_pending(self, batch_id: str) -> list[str]:
        """Paths of the batch queue that are neither complete nor failed."""
        self._require_batch(batch_id)
        try:
            with self.db.reading() as conn:
                rows = conn.execute(
                    "SELECT file_path FROM batch_items WHERE batch_id = ? "
                    "AND status NOT IN (?, ?) ORDER BY position",
                    (batch_id, *_TERMINAL),
                ).fetchall()
        except sqlite3.Error as exc:
            raise QueueStoreError(
                f"Could not read pending items of {batch_id}: {exc}"
            ) from exc
        return [row["file_path"] for row in rows]

    def get_stats(self, batch_id: str) -> BatchStats:
        try:
            with self.db.reading() as conn:
                rows = conn.execute(
                    "SELECT status, COUNT(*) AS n FROM batch_items "
                    "WHERE batch_id = ? GROUP BY status",
                    (batch_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise QueueStoreError(
                f"Could not count items of {batch_id}: {exc}"
            ) from exc
        counts = {row["status"]: row["n"] for row in rows}
        return BatchStats(
            total=sum(counts.values()),
            pending=counts.get(ItemStatus.PENDING.value, 0),
            in_flight=counts.get(ItemStatus.IN_FLIGHT.value, 0),
            complete=counts.get(ItemStatus.COMPLETE.value, 0),
            failed=counts.get(ItemStatus.FAILED.value, 0),
        )

    def get_interrupted(self, exclude: Iterable[str] = ()) -> Batch | None:
        """Most recent running or interrupted batch that still has work left.

        A batch left ``running`` by a crashed process counts as interrupted.
        """
        excluded = set(exclude)
        try:
            with self.db.reading() as conn:
                rows = conn.execute(
                    "SELECT b.batch_id FROM batches b WHERE b.status IN (?, ?) "
                    "AND EXISTS (SELECT 1 FROM batch_items i WHERE "
                    "i.batch_id = b.batch_id AND i.status NOT IN (?, ?)) "
                    "ORDER BY b.last_updated_at DESC",
                    (*_RESUMABLE, *_TERMINAL),
                ).fetchall()
        except sqlite3.Error as exc:
            raise QueueStoreError(
                f"Could not look up interrupted batches: {exc}"
            ) from exc
        for row in rows:
            if row["batch_id"] not in excluded:
                return self.get_batch(row["batch_id"])
        return None

    def set_status(self, batch_id: str, status: BatchStatus) -> None:
        now = to_db_time(utc_now())
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE batches SET status = ?, last_updated_at = ? "
                    "WHERE batch_id = ?",
                    (status.value, now, batch_id),
                )
        except sqlite3.Error as exc:
            raise QueueStoreError(
                f"Could not set {batch_id} to {status.value}: {exc}"
            ) from exc
        if cursor.rowcount == 0:
            raise QueueStoreError(f"Unknown batch {batch_id}")
        logger.info("Batch %s is now %s", batch_id, status.value)

    def dismiss(self, batch_id: str) -> None:
        self.set_status(batch_id, BatchStatus.DISMISSED)

    def list_batches(self, limit: int = 10) -> list[Batch]:
        try:
            with self.db.reading() as conn:
                ids = [
                    row["batch_id"]
                    for row in conn.execute(
                        "SELECT batch_id FROM batches ORDER BY started_at DESC LIMIT ?",
                        (limit,),
                    )
                ]
        except sqlite3.Error as exc:
            raise QueueStoreError(f"Could not list batches: {exc}") from exc
        return [batch for batch in map(self.get_batch, ids) if batch is not None]

    def find_latest_result(self, file_path: str) -> ProcessResult | None:
        """Latest completed result for ``file_path`` across all batches."""
        try:
            with self.db.reading() as conn:
                row = conn.execute(
                    "SELECT result_json FROM batch_items WHERE file_path = ? "
                    "AND status = ? AND result_json IS NOT NULL "
                    "ORDER BY updated_at DESC LIMIT 1",
                    (file_path, ItemStatus.COMPLETE.value),
                ).fetchone()
        except sqlite3.Error as exc:
            raise QueueStoreError(f"Could not look up {file_path}: {exc}") from exc
        if row is None:
            return None
        return ProcessResult.model_validate_json(row["result_json"])

    def _rewrite_latest(
        self,
        file_path: str,
        change: Callable[[ProcessResult], ProcessResult],
    ) -> ProcessResult | None:
        now = to_db_time(utc_now())
        try:
            with self.db.transaction() as conn:
                row = conn.execute(
                    "SELECT batch_id, result_json FROM batch_items "
                    "WHERE file_path = ? AND status = ? AND result_json IS NOT NULL "
                    "ORDER BY updated_at DESC LIMIT 1",
                    (file_path, ItemStatus.COMPLETE.value),
                ).fetchone()
                if row is None:
                    return None
                updated = change(ProcessResult.model_validate_json(row["result_json"]))
                conn.execute(
                    "UPDATE batch_items SET result_json = ?, updated_at = ? "
                    "WHERE batch_id = ? AND file_path = ?",
                    (updated.model_dump_json(), now, row["batch_id"], file_path),
                )
        except sqlite3.Error as exc:
            raise QueueStoreError(
                f"Could not update result of {file_path}: {exc}"
            ) from exc
        return updated

    def update_result(
        self, file_path: str, result: ProcessResult
    ) -> ProcessResult | None:
        """Store a regenerated result for ``file_path``.

        The stored ``ai_suggested_name`` is kept; the new name becomes the
        ``suggested_name``. Returns the stored result, or ``None`` when the file
        has no completed result.
        """

        def merge(stored: ProcessResult) -> ProcessResult:
            return result.model_copy(
                update={
                    "ai_suggested_name": stored.ai_suggested_name,
                    "suggested_name": result.suggested_name,
                }
            )

        return self._rewrite_latest(file_path, merge)

    def update_suggested_name(
        self, file_path: str, name: str
    ) -> ProcessResult | None:
        """Save a user edit of the proposed name."""
        return self._rewrite_latest(
            file_path,
            lambda stored: stored.model_copy(update={"suggested_name": name}),
        )

    def cleanup_finished(self, older_than_days: int) -> int:
        """Delete completed or dismissed batches idle for ``older_than_days``."""
        cutoff = to_db_time(utc_now() - timedelta(days=older_than_days))
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM batches WHERE status IN (?, ?) "
                    "AND last_updated_at < ?",
                    (BatchStatus.COMPLETED.value, BatchStatus.DISMISSED.value, cutoff),
                )
        except sqlite3.Error as exc:
            raise QueueStoreError(f"Could not clean up batches: {exc}") from exc
        if cursor.rowcount:
            logger.info(
                "Removed %d finished batches older than %d days",
                cursor.rowcount,
                older_than_days,
            )
        return cursor.rowcount
