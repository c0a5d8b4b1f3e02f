"""Wellbeing repository: raw inputs, check-ins, cooldown timers and samples.

The repository mediates between domain records (CheckIn, MetricSample, ...)
and the SQLite database, using FieldEncryptor for raw health payloads and
the free-text parts of check-ins.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any

from mindmate.core.storage.database import MindMateDatabase
from mindmate.core.storage.encryption import FieldEncryptor
from mindmate.core.storage.models import (
    Activity,
    CheckIn,
    CheckInTimer,
    MetricSample,
    Mood,
    iso,
    parse_iso,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class WellbeingRepository:
    """CRUD repository for encrypted inputs and per-day metric samples.

    Usage::

        db = MindMateDatabase(":memory:")
        db.initialize()
        repo = WellbeingRepository(db, FieldEncryptor(key))

        repo.upsert_health_record("u1", {"date": "2026-10-01", "steps": {"count": 8000}})
        repo.get_health_records("u1", date(2026, 10, 1), date(2026, 10, 7))
    """

    def __init__(self, database: MindMateDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return iso(datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Raw health records
    # ------------------------------------------------------------------

    def upsert_health_record(
        self,
        user_id: str,
        record: dict[str, Any],
        *,
        source: str = "manual",
        now: datetime | None = None,
    ) -> str:
        """Store one raw per-day record, replacing the same day from the same source.

        Args:
            user_id: Owner of the record.
            record: Raw daily record; must carry an ISO ``date``.
            source: Data source label (e.g. 'manual', 'apple_health').

        Returns:
            The record ID.

        Raises:
            RepositoryError: If the record has no valid date.
        """
        try:
            record_date = date.fromisoformat(str(record["date"]))
        except (KeyError, ValueError) as exc:
            raise RepositoryError(f"Health record needs an ISO 'date': {exc}") from exc

        payload = {k: v for k, v in record.items() if k != "date"}
        updated_at = iso(now) if now else self._now_iso()
        rid = self._new_id()

        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO health_records
                   (id, user_id, record_date, source, payload_enc, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT (user_id, record_date, source) DO UPDATE SET
                       payload_enc = excluded.payload_enc,
                       updated_at = excluded.updated_at""",
                (
                    rid,
                    user_id,
                    record_date.isoformat(),
                    source,
                    self._enc.encrypt(payload),
                    updated_at,
                ),
            )
            row = conn.execute(
                """SELECT id FROM health_records
                   WHERE user_id = ? AND record_date = ? AND source = ?""",
                (user_id, record_date.isoformat(), source),
            ).fetchone()
        return row["id"]

    def get_health_records(
        self, user_id: str, start: date, end: date
    ) -> list[dict[str, Any]]:
        """Decrypted raw records in ``[start, end]``.

        Ordered by date, then most recently updated first, so that earlier
        records in a day take priority when merged.
        """
        rows = self._db.connection.execute(
            """SELECT record_date, source, payload_enc FROM health_records
               WHERE user_id = ? AND record_date >= ? AND record_date <= ?
               ORDER BY record_date ASC, updated_at DESC, source ASC""",
            (user_id, start.isoformat(), end.isoformat()),
        ).fetchall()

        records: list[dict[str, Any]] = []
        for row in rows:
            payload = self._enc.decrypt(row["payload_enc"]) or {}
            records.append({**payload, "date": row["record_date"], "source": row["source"]})
        return records

    def count_health_records(self, user_id: str | None = None) -> int:
        if user_id is None:
            row = self._db.connection.execute("SELECT COUNT(*) FROM health_records").fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM health_records WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row[0]

    def purge_health_records_before_days(
        self, days: int, *, today: date | None = None
    ) -> int:
        """Delete raw records older than *days* days.

        Derived samples, baselines and analysis results are kept; they are
        needed to audit past decisions.

        Returns:
            Number of records deleted.
        """
        today = today or datetime.now(timezone.utc).date()
        cutoff = (today - timedelta(days=days)).isoformat()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM health_records WHERE record_date < ?", (cutoff,)
            )
        deleted = cursor.rowcount
        logger.info("Purged %d raw health record(s) before %s", deleted, cutoff)
        return deleted

    # ------------------------------------------------------------------
    # Check-ins
    # ------------------------------------------------------------------

    def save_check_in(self, check_in: CheckIn) -> CheckIn:
        """Append a check-in and return it with its assigned ID."""
        cid = check_in.id or self._new_id()
        activities = [{"type": a.type, "level": a.level} for a in check_in.activities]

        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO check_ins
                   (id, user_id, timestamp, mood_score, mood_label,
                    mood_description_enc, activities_enc, notes_enc, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    cid,
                    check_in.user_id,
                    iso(check_in.timestamp),
                    check_in.mood.score,
                    check_in.mood.label,
                    self._enc.encrypt_text(check_in.mood.description),
                    self._enc.encrypt(activities) if activities else None,
                    self._enc.encrypt_text(check_in.notes),
                    self._now_iso(),
                ),
            )
        return CheckIn(
            user_id=check_in.user_id,
            timestamp=check_in.timestamp,
            mood=check_in.mood,
            activities=check_in.activities,
            notes=check_in.notes,
            id=cid,
        )

    def get_check_ins(
        self,
        user_id: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[CheckIn]:
        """Check-ins for a user in ``[since, until)``, oldest first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(iso(since))
        if until is not None:
            conditions.append("timestamp < ?")
            params.append(iso(until))

        query = (
            "SELECT * FROM check_ins WHERE "
            + " AND ".join(conditions)
            + " ORDER BY timestamp ASC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_check_in(row) for row in rows]

    def get_latest_check_in(self, user_id: str) -> CheckIn | None:
        row = self._db.connection.execute(
            "SELECT * FROM check_ins WHERE user_id = ? ORDER BY timestamp DESC LIMIT 1",
            (user_id,),
        ).fetchone()
        return self._row_to_check_in(row) if row else None

    def _row_to_check_in(self, row: Any) -> CheckIn:
        activities = self._enc.decrypt(row["activities_enc"]) or []
        return CheckIn(
            id=row["id"],
            user_id=row["user_id"],
            timestamp=parse_iso(row["timestamp"]),
            mood=Mood(
                score=row["mood_score"],
                label=row["mood_label"],
                description=self._enc.decrypt_text(row["mood_description_enc"]),
            ),
            activities=tuple(Activity(type=a["type"], level=a["level"]) for a in activities),
            notes=self._enc.decrypt_text(row["notes_enc"]),
        )

    # ------------------------------------------------------------------
    # Check-in timers
    # ------------------------------------------------------------------

    def get_timer(self, user_id: str) -> CheckInTimer | None:
        row = self._db.connection.execute(
            "SELECT * FROM check_in_timers WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return CheckInTimer(
            user_id=row["user_id"],
            last_check_in_at=parse_iso(row["last_check_in_at"]),
            cooldown_until=parse_iso(row["cooldown_until"]),
            reset_at=parse_iso(row["reset_at"]),
        )

    def try_start_cooldown(
        self, user_id: str, now: datetime, cooldown_until: datetime
    ) -> bool:
        """Move a user's timer to cooling if it is currently available.

        The check and the write are a single conditional UPDATE inside a
        write transaction, so of two concurrent attempts only one wins.

        Returns:
            True if the cooldown was started by this call.
        """
        now_iso = iso(now)
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO check_in_timers (user_id, updated_at) VALUES (?, ?)
                   ON CONFLICT (user_id) DO NOTHING""",
                (user_id, now_iso),
            )
            cursor = conn.execute(
                """UPDATE check_in_timers
                   SET last_check_in_at = ?, cooldown_until = ?, updated_at = ?
                   WHERE user_id = ?
                     AND (cooldown_until IS NULL OR cooldown_until <= ?)""",
                (now_iso, iso(cooldown_until), now_iso, user_id, now_iso),
            )
        return cursor.rowcount == 1

    def clear_cooldown(self, user_id: str, now: datetime) -> CheckInTimer:
        """Clear a user's cooldown (explicit reset). Creates the timer if missing."""
        now_iso = iso(now)
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO check_in_timers (user_id, reset_at, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT (user_id) DO UPDATE SET
                       cooldown_until = NULL,
                       reset_at = excluded.reset_at,
                       updated_at = excluded.updated_at""",
                (user_id, now_iso, now_iso),
            )
        return self.get_timer(user_id)

    # ------------------------------------------------------------------
    # Metric samples
    # ------------------------------------------------------------------

    def save_samples(self, samples: list[MetricSample], *, now: datetime) -> int:
        """Persist normalized samples, superseding changed days.

        An unchanged day is left alone. A changed day gets a new row and the
        previous current row is stamped ``superseded_at``.

        Returns:
            Number of new sample rows written.
        """
        written = 0
        now_iso = iso(now)
        with self._db.transaction() as conn:
            for sample in samples:
                row = conn.execute(
                    """SELECT * FROM metric_samples
                       WHERE user_id = ? AND sample_date = ? AND superseded_at IS NULL""",
                    (sample.user_id, sample.date.isoformat()),
                ).fetchone()
                if row is not None:
                    if self._row_to_sample(row) == sample:
                        continue
                    conn.execute(
                        "UPDATE metric_samples SET superseded_at = ? WHERE id = ?",
                        (now_iso, row["id"]),
                    )
                conn.execute(
                    """INSERT INTO metric_samples
                       (id, user_id, sample_date, sleep_hours, sleep_quality,
                        steps_per_day, activity_level, exercise_minutes, mood_score,
                        computed_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        self._new_id(),
                        sample.user_id,
                        sample.date.isoformat(),
                        sample.sleep_hours,
                        sample.sleep_quality,
                        sample.steps_per_day,
                        sample.activity_level,
                        sample.exercise_minutes,
                        sample.mood_score,
                        now_iso,
                    ),
                )
                written += 1
        if written:
            logger.debug("Stored %d metric sample(s)", written)
        return written

    def get_samples(self, user_id: str, start: date, end: date) -> list[MetricSample]:
        """Current (non-superseded) samples in ``[start, end]``, oldest first."""
        rows = self._db.connection.execute(
            """SELECT * FROM metric_samples
               WHERE user_id = ? AND sample_date >= ? AND sample_date <= ?
                 AND superseded_at IS NULL
               ORDER BY sample_date ASC""",
            (user_id, start.isoformat(), end.isoformat()),
        ).fetchall()
        return [self._row_to_sample(row) for row in rows]

    def count_sample_versions(self, user_id: str, day: date) -> int:
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM metric_samples WHERE user_id = ? AND sample_date = ?",
            (user_id, day.isoformat()),
        ).fetchone()
        return row[0]

    @staticmethod
    def _row_to_sample(row: Any) -> MetricSample:
        return MetricSample(
            user_id=row["user_id"],
            date=date.fromisoformat(row["sample_date"]),
            sleep_hours=row["sleep_hours"],
            sleep_quality=row["sleep_quality"],
            steps_per_day=row["steps_per_day"],
            activity_level=row["activity_level"],
            exercise_minutes=row["exercise_minutes"],
            mood_score=row["mood_score"],
        )

    # ------------------------------------------------------------------
    # Messaging outbox
    # ------------------------------------------------------------------

    def add_notification(
        self,
        user_id: str,
        message: str,
        *,
        kind: str,
        related_id: str | None = None,
    ) -> str:
        nid = self._new_id()
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO notifications (id, user_id, kind, message, related_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (nid, user_id, kind, message, related_id, self._now_iso()),
            )
        return nid

    def get_notifications(self, user_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
        rows = self._db.connection.execute(
            """SELECT * FROM notifications WHERE user_id = ?
               ORDER BY created_at DESC LIMIT ?""",
            (user_id, limit),
        ).fetchall()
        return [dict(row) for row in rows]

    def add_direct_channel(
        self, requester_id: str, buddy_id: str, *, related_id: str | None = None
    ) -> str:
        chid = self._new_id()
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO direct_channels (id, requester_id, buddy_id, related_id, opened_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (chid, requester_id, buddy_id, related_id, self._now_iso()),
            )
        return chid

    def get_direct_channels(self, user_id: str) -> list[dict[str, Any]]:
        rows = self._db.connection.execute(
            """SELECT * FROM direct_channels
               WHERE requester_id = ? OR buddy_id = ?
               ORDER BY opened_at DESC""",
            (user_id, user_id),
        ).fetchall()
        return [dict(row) for row in rows]
