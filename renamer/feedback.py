"""Suggestion ledger and the effectiveness numbers derived from user feedback."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import timedelta
from pathlib import Path

from renamer.database_manager import Database, from_db_time, to_db_time
from renamer.errors import FeedbackError, QueueStoreError
from renamer.queue_store import QueueStore
from renamer.schema import (
    CategoryEffectiveness,
    FeedbackAction,
    FeedbackRecord,
    ProcessResult,
    RegenerationStats,
    SuggestionLog,
    TimeRange,
    utc_now,
)
from renamer.text_utils import edit_distance

logger = logging.getLogger(__name__)

IMPORTED_MODEL = "imported"
DEFAULT_LOW_PERFORMING_THRESHOLD = 50.0
DEFAULT_REJECTION_LIMIT = 10

_ACTION_COUNTS = """
    COUNT(*) AS total,
    SUM(CASE WHEN action = 'accepted' THEN 1 ELSE 0 END) AS accepted,
    SUM(CASE WHEN action = 'edited' THEN 1 ELSE 0 END) AS edited,
    SUM(CASE WHEN action = 'rejected' THEN 1 ELSE 0 END) AS rejected,
    SUM(CASE WHEN action = 'skipped' THEN 1 ELSE 0 END) AS skipped
"""


def _new_request_id() -> str:
    return f"req_{uuid.uuid4().hex}"


def _since(time_range: TimeRange | str) -> str | None:
    since = TimeRange(time_range).since()
    return to_db_time(since) if since is not None else None


def _log_from_row(row: sqlite3.Row) -> SuggestionLog:
    passed = row["validation_passed"]
    return SuggestionLog(
        request_id=row["request_id"],
        file_path=row["file_path"],
        original_name=row["original_name"],
        category=row["category"],
        ai_suggested_name=row["ai_suggested_name"],
        final_name=row["final_name"],
        action=FeedbackAction(row["action"]) if row["action"] else None,
        edit_distance=row["edit_distance"],
        model=row["model"],
        batch_id=row["batch_id"],
        is_regeneration=bool(row["is_regeneration"]),
        regeneration_feedback=row["regeneration_feedback"],
        rejected_name=row["rejected_name"],
        validation_passed=None if passed is None else bool(passed),
        total_ms=row["total_ms"],
        created_at=from_db_time(row["created_at"]),
        feedback_at=from_db_time(row["feedback_at"]),
    )


def acceptance_rate(accepted: int, total: int) -> float | None:
    """Percentage of accepted suggestions, rounded to one decimal."""
    if total <= 0:
        return None
    return round(100.0 * accepted / total, 1)


class FeedbackTracker:
    """Records every suggestion and what the user did with it."""

    def __init__(self, db: Database, queue_store: QueueStore) -> None:
        self.db = db
        self.queue_store = queue_store

    def log_suggestion(
        self,
        result: ProcessResult,
        *,
        batch_id: str | None = None,
        model: str | None = None,
    ) -> str:
        """Add a ledger row for a fresh suggestion and return its request id."""
        request_id = _new_request_id()
        validation_passed = result.validation_passed
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO suggestions (
                        request_id, file_path, original_name, category,
                        ai_suggested_name, model, batch_id, is_regeneration,
                        regeneration_feedback, rejected_name, validation_passed,
                        validation_attempts, models_json, prompts_json,
                        responses_json, total_ms, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        request_id,
                        result.file_path,
                        result.original_name,
                        result.category,
                        result.ai_suggested_name,
                        model or result.model_used,
                        batch_id,
                        int(result.is_regeneration),
                        result.feedback,
                        result.rejected_name,
                        None if validation_passed is None else int(validation_passed),
                        len(result.validation_attempts),
                        json.dumps(result.models),
                        json.dumps(result.prompts),
                        json.dumps(result.responses),
                        result.timings.total_ms,
                        to_db_time(utc_now()),
                    ),
                )
        except sqlite3.Error as exc:
            raise FeedbackError(
                f"Could not log suggestion for {result.file_path}: {exc}"
            ) from exc
        logger.debug("Logged suggestion %s for %s", request_id, result.file_path)
        return request_id

    def get_latest(self, file_path: str) -> SuggestionLog | None:
        try:
            with self.db.reading() as conn:
                row = conn.execute(
                    "SELECT * FROM suggestions WHERE file_path = ? "
                    "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                    (file_path,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise FeedbackError(
                f"Could not read ledger for {file_path}: {exc}"
            ) from exc
        return _log_from_row(row) if row is not None else None

    def upsert_or_create(self, file_path: str) -> SuggestionLog | None:
        """Return the latest ledger row for ``file_path``, backfilling if needed.

        A missing row is rebuilt from the most recent completed queue result and
        tagged with the ``imported`` model. Returns ``None`` when neither exists.
        """
        existing = self.get_latest(file_path)
        if existing is not None:
            return existing

        try:
            result = self.queue_store.find_latest_result(file_path)
        except QueueStoreError as exc:
            raise FeedbackError(f"Could not backfill {file_path}: {exc}") from exc
        if result is None:
            return None

        logger.info("Backfilling ledger row for %s from stored result", file_path)
        self.log_suggestion(result, model=IMPORTED_MODEL)
        return self.get_latest(file_path)

    def record(
        self,
        file_path: str,
        action: FeedbackAction | str,
        final_name: str | None = None,
    ) -> FeedbackRecord:
        """Attach the user's decision to the latest suggestion for ``file_path``."""
        action = FeedbackAction(action)
        if action is FeedbackAction.EDITED and not final_name:
            raise FeedbackError("An edited suggestion needs the final name")

        entry = self.upsert_or_create(file_path)
        if entry is None:
            raise FeedbackError(
                f"No suggestion or processed result exists for {file_path}"
            )

        distance: int | None = None
        if action is FeedbackAction.ACCEPTED:
            distance = 0
            final_name = final_name or entry.ai_suggested_name
        elif action is FeedbackAction.EDITED:
            distance = edit_distance(entry.ai_suggested_name, final_name)

        recorded_at = utc_now()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "UPDATE suggestions SET action = ?, final_name = ?, "
                    "edit_distance = ?, feedback_at = ? WHERE request_id = ?",
                    (
                        action.value,
                        final_name,
                        distance,
                        to_db_time(recorded_at),
                        entry.request_id,
                    ),
                )
        except sqlite3.Error as exc:
            raise FeedbackError(
                f"Could not record feedback for {file_path}: {exc}"
            ) from exc

        logger.info(
            "Recorded %s for %s (edit distance %s)", action.value, file_path, distance
        )
        return FeedbackRecord(
            request_id=entry.request_id,
            file_path=file_path,
            category=entry.category,
            ai_suggested_name=entry.ai_suggested_name,
            action=action,
            final_name=final_name,
            edit_distance=distance,
            recorded_at=recorded_at,
        )

    def get_effectiveness(
        self, time_range: TimeRange | str = TimeRange.ALL
    ) -> list[CategoryEffectiveness]:
        """Per-category counts of feedback actions, busiest category first."""
        since = _since(time_range)
        query = f"""
            SELECT
                COALESCE(category, 'unknown') AS category,
                {_ACTION_COUNTS},
                AVG(CASE WHEN action = 'edited' THEN edit_distance END)
                    AS avg_edit_distance
            FROM suggestions
            WHERE action IS NOT NULL AND (? IS NULL OR created_at >= ?)
            GROUP BY COALESCE(category, 'unknown')
            ORDER BY total DESC, category
        """
        try:
            with self.db.reading() as conn:
                rows = conn.execute(query, (since, since)).fetchall()
        except sqlite3.Error as exc:
            raise FeedbackError(f"Could not compute effectiveness: {exc}") from exc

        stats = []
        for row in rows:
            avg_distance = row["avg_edit_distance"]
            stats.append(
                CategoryEffectiveness(
                    category=row["category"],
                    total=row["total"],
                    accepted=row["accepted"],
                    edited=row["edited"],
                    rejected=row["rejected"],
                    skipped=row["skipped"],
                    acceptance_rate=acceptance_rate(row["accepted"], row["total"]),
                    avg_edit_distance=(
                        round(avg_distance, 1) if avg_distance is not None else None
                    ),
                )
            )
        return stats

    def get_low_performing(
        self,
        threshold: float = DEFAULT_LOW_PERFORMING_THRESHOLD,
        time_range: TimeRange | str = TimeRange.ALL,
    ) -> list[CategoryEffectiveness]:
        """Categories whose acceptance rate is below ``threshold`` percent."""
        return [
            stats
            for stats in self.get_effectiveness(time_range)
            if stats.acceptance_rate is not None and stats.acceptance_rate < threshold
        ]

    def get_recent_rejections(
        self,
        limit: int = DEFAULT_REJECTION_LIMIT,
        time_range: TimeRange | str = TimeRange.ALL,
    ) -> list[SuggestionLog]:
        """Rejected or edited suggestions, plus regenerations that carried feedback."""
        since = _since(time_range)
        try:
            with self.db.reading() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM suggestions
                    WHERE (
                        action IN ('rejected', 'edited')
                        OR (is_regeneration = 1 AND regeneration_feedback IS NOT NULL
                            AND regeneration_feedback != '')
                    )
                    AND (? IS NULL OR COALESCE(feedback_at, created_at) >= ?)
                    ORDER BY COALESCE(feedback_at, created_at) DESC
                    LIMIT ?
                    """,
                    (since, since, limit),
                ).fetchall()
        except sqlite3.Error as exc:
            raise FeedbackError(f"Could not read recent rejections: {exc}") from exc
        return [_log_from_row(row) for row in rows]

    def get_regeneration_stats(
        self, time_range: TimeRange | str = TimeRange.ALL
    ) -> tuple[RegenerationStats, list[RegenerationStats]]:
        """Overall and per-category outcomes of regenerated suggestions."""
        since = _since(time_range)
        select = f"""
            {_ACTION_COUNTS},
            SUM(CASE WHEN regeneration_feedback IS NOT NULL
                AND regeneration_feedback != '' THEN 1 ELSE 0 END) AS with_feedback
        """
        where = "WHERE is_regeneration = 1 AND (? IS NULL OR created_at >= ?)"
        try:
            with self.db.reading() as conn:
                overall_row = conn.execute(
                    f"SELECT {select} FROM suggestions {where}", (since, since)
                ).fetchone()
                category_rows = conn.execute(
                    f"SELECT COALESCE(category, 'unknown') AS category, {select} "
                    f"FROM suggestions {where} "
                    "GROUP BY COALESCE(category, 'unknown') ORDER BY total DESC",
                    (since, since),
                ).fetchall()
        except sqlite3.Error as exc:
            raise FeedbackError(f"Could not compute regeneration stats: {exc}") from exc

        def build(row: sqlite3.Row, category: str | None = None) -> RegenerationStats:
            return RegenerationStats(
                category=category,
                total=row["total"] or 0,
                with_feedback=row["with_feedback"] or 0,
                accepted=row["accepted"] or 0,
                edited=row["edited"] or 0,
                rejected=row["rejected"] or 0,
            )

        per_category = [build(row, row["category"]) for row in category_rows]
        return build(overall_row), per_category

    def cleanup_old_records(self, days: int = 30) -> int:
        """Delete ledger rows created more than ``days`` days ago."""
        cutoff = to_db_time(utc_now() - timedelta(days=days))
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM suggestions WHERE created_at < ?", (cutoff,)
                )
        except sqlite3.Error as exc:
            raise FeedbackError(f"Could not clean up the ledger: {exc}") from exc
        logger.info("Removed %d ledger rows older than %d days", cursor.rowcount, days)
        return cursor.rowcount

    def export_rows(self) -> list[dict]:
        """All ledger rows as plain dictionaries, newest first."""
        try:
            with self.db.reading() as conn:
                rows = conn.execute(
                    "SELECT * FROM suggestions ORDER BY created_at DESC"
                ).fetchall()
        except sqlite3.Error as exc:
            raise FeedbackError(f"Could not export the ledger: {exc}") from exc
        exported = []
        for row in rows:
            record = dict(row)
            record["file_name"] = Path(record["file_path"]).name
            exported.append(record)
        return exported
