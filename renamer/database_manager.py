"""SQLite storage shared by the queue store and the feedback ledger."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_MIGRATIONS: dict[int, str] = {
    1: """
    CREATE TABLE IF NOT EXISTS batches (
        batch_id TEXT PRIMARY KEY,
        directory TEXT,
        status TEXT NOT NULL,
        total INTEGER NOT NULL,
        started_at TEXT NOT NULL,
        last_updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS batches_status_idx ON batches(status);
    CREATE TABLE IF NOT EXISTS batch_items (
        batch_id TEXT NOT NULL REFERENCES batches(batch_id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        file_path TEXT NOT NULL,
        status TEXT NOT NULL,
        error TEXT,
        result_json TEXT,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (batch_id, file_path)
    );
    CREATE INDEX IF NOT EXISTS batch_items_path_idx ON batch_items(file_path);
    CREATE TABLE IF NOT EXISTS suggestions (
        request_id TEXT PRIMARY KEY,
        file_path TEXT NOT NULL,
        original_name TEXT NOT NULL,
        category TEXT,
        ai_suggested_name TEXT,
        final_name TEXT,
        action TEXT,
        edit_distance INTEGER,
        model TEXT,
        batch_id TEXT,
        is_regeneration INTEGER NOT NULL DEFAULT 0,
        regeneration_feedback TEXT,
        rejected_name TEXT,
        validation_passed INTEGER,
        validation_attempts INTEGER NOT NULL DEFAULT 0,
        models_json TEXT,
        prompts_json TEXT,
        responses_json TEXT,
        total_ms INTEGER,
        created_at TEXT NOT NULL,
        feedback_at TEXT
    );
    CREATE INDEX IF NOT EXISTS suggestions_path_idx ON suggestions(file_path);
    CREATE INDEX IF NOT EXISTS suggestions_category_idx ON suggestions(category);
    CREATE INDEX IF NOT EXISTS suggestions_created_idx ON suggestions(created_at);
    """,
}


def to_db_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _connect(path: Path) -> sqlite3.Connection:
    if str(path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    # Worker threads share one connection; Database serializes access.
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def apply_migrations(conn: sqlite3.Connection) -> None:
    """Bring the schema up to date, one version per transaction."""
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations "
        "(version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
    )
    current = conn.execute(
        "SELECT MAX(version) AS v FROM schema_migrations"
    ).fetchone()["v"]
    current_version = int(current or 0)
    for version in sorted(_MIGRATIONS):
        if version <= current_version:
            continue
        logger.info("Applying database migration %d", version)
        applied_at = to_db_time(datetime.now(timezone.utc))
        # executescript commits implicitly; the version row rides in the script.
        script = (
            f"BEGIN;\n{_MIGRATIONS[version]}\n"
            "INSERT INTO schema_migrations (version, applied_at) "
            f"VALUES ({int(version)}, '{applied_at}');\nCOMMIT;"
        )
        try:
            conn.executescript(script)
        except sqlite3.Error:
            if conn.in_transaction:
                conn.rollback()
            logger.error("Database migration %d failed", version)
            raise


class Database:
    """A migrated SQLite connection guarded by a lock."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        logger.info("Opening database at %s", self.path)
        self._conn = _connect(self.path)
        apply_migrations(self._conn)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection inside a committed-on-exit transaction."""
        with self._lock:
            with self._conn:
                yield self._conn

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            yield self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def initialize_db(path: Path | str) -> Database:
    """Open (creating if needed) the pipeline database at ``path``."""
    return Database(path)
