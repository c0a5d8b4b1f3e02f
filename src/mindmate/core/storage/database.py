"""SQLite database management for the MindMate wellbeing store.

Handles connection lifecycle, schema creation, migrations and explicit
transactions.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- Raw per-day health summaries from the health-data source (encrypted)
CREATE TABLE IF NOT EXISTS health_records (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL,
    record_date  TEXT NOT NULL,
    source       TEXT NOT NULL,
    payload_enc  TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    UNIQUE (user_id, record_date, source)
);

-- Append-only mood check-ins; free text is encrypted
CREATE TABLE IF NOT EXISTS check_ins (
    id                   TEXT PRIMARY KEY,
    user_id              TEXT NOT NULL,
    timestamp            TEXT NOT NULL,
    mood_score           INTEGER NOT NULL,
    mood_label           TEXT NOT NULL,
    mood_description_enc TEXT,
    activities_enc       TEXT,
    notes_enc            TEXT,
    created_at           TEXT NOT NULL
);

-- One cooldown timer per user
CREATE TABLE IF NOT EXISTS check_in_timers (
    user_id          TEXT PRIMARY KEY,
    last_check_in_at TEXT,
    cooldown_until   TEXT,
    reset_at         TEXT,
    updated_at       TEXT NOT NULL
);

-- Normalized per-day metric vectors; rows are superseded, never updated in place
CREATE TABLE IF NOT EXISTS metric_samples (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    sample_date      TEXT NOT NULL,
    sleep_hours      REAL,
    sleep_quality    REAL,
    steps_per_day    INTEGER,
    activity_level   TEXT,
    exercise_minutes REAL,
    mood_score       REAL,
    computed_at      TEXT NOT NULL,
    superseded_at    TEXT
);

CREATE TABLE IF NOT EXISTS baselines (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL,
    metric       TEXT NOT NULL,
    mean         REAL NOT NULL,
    variance     REAL NOT NULL,
    sample_count INTEGER NOT NULL,
    window_start TEXT NOT NULL,
    window_end   TEXT NOT NULL,
    computed_at  TEXT NOT NULL,
    active       INTEGER NOT NULL DEFAULT 1
);

-- Append-only audit history of analysis decisions
CREATE TABLE IF NOT EXISTS analysis_results (
    id                       TEXT PRIMARY KEY,
    user_id                  TEXT NOT NULL,
    status                   TEXT NOT NULL,
    confidence_score         REAL NOT NULL,
    needs_support            INTEGER NOT NULL,
    comparison_json          TEXT NOT NULL,
    significant_changes_json TEXT NOT NULL,
    evaluated_at             TEXT NOT NULL,
    window_days              INTEGER NOT NULL,
    window_start             TEXT NOT NULL,
    window_end               TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS support_requests (
    id                     TEXT PRIMARY KEY,
    requester_id           TEXT NOT NULL,
    triggering_analysis_id TEXT NOT NULL REFERENCES analysis_results(id),
    mental_health_status   TEXT NOT NULL,
    created_at             TEXT NOT NULL,
    state                  TEXT NOT NULL DEFAULT 'open',
    claimed_by             TEXT,
    claimed_at             TEXT,
    expired_at             TEXT
);

-- Messaging outbox; delivery happens outside this service
CREATE TABLE IF NOT EXISTS notifications (
    id         TEXT PRIMARY KEY,
    user_id    TEXT NOT NULL,
    kind       TEXT NOT NULL,
    message    TEXT NOT NULL,
    related_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS direct_channels (
    id           TEXT PRIMARY KEY,
    requester_id TEXT NOT NULL,
    buddy_id     TEXT NOT NULL,
    related_id   TEXT,
    opened_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_records_user_date  ON health_records(user_id, record_date);
CREATE INDEX IF NOT EXISTS idx_checkins_user_ts   ON check_ins(user_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_samples_user_date  ON metric_samples(user_id, sample_date);
CREATE INDEX IF NOT EXISTS idx_analysis_user_ts   ON analysis_results(user_id, evaluated_at);
CREATE INDEX IF NOT EXISTS idx_support_state      ON support_requests(state, created_at);
CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, created_at);

-- Invariants enforced by the engine itself
CREATE UNIQUE INDEX IF NOT EXISTS idx_samples_current
    ON metric_samples(user_id, sample_date) WHERE superseded_at IS NULL;
CREATE UNIQUE INDEX IF NOT EXISTS idx_baselines_active
    ON baselines(user_id, metric) WHERE active = 1;
CREATE UNIQUE INDEX IF NOT EXISTS idx_support_one_open
    ON support_requests(requester_id) WHERE state = 'open';
"""

# ---------------------------------------------------------------------------
# V2: PHI-free audit log
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    subject_hash    TEXT,
    analysis_id     TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_tool      ON audit_log(tool_name);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class MindMateDatabase:
    """SQLite database manager for the wellbeing store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    The connection runs in autocommit mode; multi-statement writes go
    through :meth:`transaction`, which takes the write lock up front
    (``BEGIN IMMEDIATE``) so check-then-write sequences are atomic.

    Usage::

        db = MindMateDatabase(":memory:")
        db.initialize()
        with db.transaction() as conn:
            conn.execute(...)
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.
        """
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file), isolation_level=None)
        else:
            self._conn = sqlite3.connect(":memory:", isolation_level=None)

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Wellbeing database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        conn.executescript(_SCHEMA_V1)

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        current_version = row[0] if row[0] is not None else 0

        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: audit_log table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        cursor = self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one atomic unit.

        Nested calls join the outermost transaction; only the outermost
        block commits or rolls back.
        """
        conn = self.connection
        if self._tx_depth == 0:
            conn.execute("BEGIN IMMEDIATE")
        self._tx_depth += 1
        try:
            yield conn
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            conn.commit()

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._tx_depth = 0
            logger.info("Wellbeing database closed")

    def __enter__(self) -> MindMateDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
