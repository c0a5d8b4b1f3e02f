"""Decision repository: baselines, analysis results and support requests.

None of these rows carry raw health data, so nothing here is encrypted.
Baselines are swapped atomically, analysis results are append-only and
support request state changes are conditional UPDATEs.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime
from typing import Any, Iterable

from mindmate.core.storage.database import MindMateDatabase
from mindmate.core.storage.models import (
    AnalysisResult,
    Baseline,
    MetricComparison,
    SupportRequest,
    iso,
    parse_iso,
)

logger = logging.getLogger(__name__)


class DecisionRepository:
    """Persistence for the engine's outputs.

    Usage::

        repo = DecisionRepository(db)
        repo.swap_active_baselines("u1", baselines, now=now)
        repo.append_analysis(result)
        request, created = repo.open_support_request(...)
    """

    def __init__(self, database: MindMateDatabase) -> None:
        self._db = database

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def swap_active_baselines(
        self,
        user_id: str,
        baselines: list[Baseline],
        *,
        now: datetime,
        retire: Iterable[str] = (),
    ) -> list[Baseline]:
        """Replace the active baseline of each given metric in one transaction.

        Readers either see every old row or every new row. Metrics named in
        *retire* lose their active row without a replacement; any other
        metric not in *baselines* keeps its current active row.

        Returns:
            The stored baselines with ``id`` and ``computed_at`` filled in.
        """
        stored: list[Baseline] = []
        retired = 0
        now_iso = iso(now)
        with self._db.transaction() as conn:
            for metric in retire:
                retired += conn.execute(
                    """UPDATE baselines SET active = 0
                       WHERE user_id = ? AND metric = ? AND active = 1""",
                    (user_id, metric),
                ).rowcount
            for baseline in baselines:
                conn.execute(
                    """UPDATE baselines SET active = 0
                       WHERE user_id = ? AND metric = ? AND active = 1""",
                    (user_id, baseline.metric),
                )
                bid = self._new_id()
                conn.execute(
                    """INSERT INTO baselines
                       (id, user_id, metric, mean, variance, sample_count,
                        window_start, window_end, computed_at, active)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)""",
                    (
                        bid,
                        user_id,
                        baseline.metric,
                        baseline.mean,
                        baseline.variance,
                        baseline.sample_count,
                        baseline.window_start.isoformat(),
                        baseline.window_end.isoformat(),
                        now_iso,
                    ),
                )
                stored.append(Baseline(
                    user_id=user_id,
                    metric=baseline.metric,
                    mean=baseline.mean,
                    variance=baseline.variance,
                    sample_count=baseline.sample_count,
                    window_start=baseline.window_start,
                    window_end=baseline.window_end,
                    id=bid,
                    computed_at=now_iso,
                ))
        if stored:
            logger.info(
                "Swapped %d active baseline(s) for window ending %s",
                len(stored),
                stored[0].window_end.isoformat(),
            )
        if retired:
            logger.info("Retired %d stale baseline(s) without a replacement", retired)
        return stored

    def get_active_baselines(self, user_id: str) -> dict[str, Baseline]:
        """All active baselines for a user, read in a single statement."""
        rows = self._db.connection.execute(
            "SELECT * FROM baselines WHERE user_id = ? AND active = 1",
            (user_id,),
        ).fetchall()
        return {row["metric"]: self._row_to_baseline(row) for row in rows}

    def get_baseline_history(
        self, user_id: str, metric: str, *, limit: int = 30
    ) -> list[Baseline]:
        """Past and present baselines for one metric, newest first."""
        rows = self._db.connection.execute(
            """SELECT * FROM baselines WHERE user_id = ? AND metric = ?
               ORDER BY computed_at DESC LIMIT ?""",
            (user_id, metric, limit),
        ).fetchall()
        return [self._row_to_baseline(row) for row in rows]

    @staticmethod
    def _row_to_baseline(row: Any) -> Baseline:
        return Baseline(
            user_id=row["user_id"],
            metric=row["metric"],
            mean=row["mean"],
            variance=row["variance"],
            sample_count=row["sample_count"],
            window_start=date.fromisoformat(row["window_start"]),
            window_end=date.fromisoformat(row["window_end"]),
            id=row["id"],
            computed_at=row["computed_at"],
        )

    # ------------------------------------------------------------------
    # Analysis results
    # ------------------------------------------------------------------

    def append_analysis(self, result: AnalysisResult) -> str:
        """Append an analysis result to the history. Results are never edited."""
        comparison = {
            metric: {
                "current": c.current,
                "baseline": c.baseline,
                "delta": c.delta,
                "delta_sigma": c.delta_sigma,
                "significant": c.significant,
            }
            for metric, c in result.baseline_comparison.items()
        }
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO analysis_results
                   (id, user_id, status, confidence_score, needs_support,
                    comparison_json, significant_changes_json, evaluated_at,
                    window_days, window_start, window_end)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    result.id,
                    result.user_id,
                    result.status,
                    result.confidence_score,
                    1 if result.needs_support else 0,
                    json.dumps(comparison, separators=(",", ":"), sort_keys=True),
                    json.dumps(list(result.significant_changes), separators=(",", ":")),
                    iso(result.evaluated_at),
                    result.window_days,
                    result.window_start.isoformat(),
                    result.window_end.isoformat(),
                ),
            )
        return result.id

    def get_analysis(self, analysis_id: str) -> AnalysisResult | None:
        row = self._db.connection.execute(
            "SELECT * FROM analysis_results WHERE id = ?", (analysis_id,)
        ).fetchone()
        return self._row_to_analysis(row) if row else None

    def get_analyses(
        self,
        user_id: str,
        *,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[AnalysisResult]:
        """Analysis history for a user, newest first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if status:
            conditions.append("status = ?")
            params.append(status)
        if since is not None:
            conditions.append("evaluated_at >= ?")
            params.append(iso(since))

        query = (
            "SELECT * FROM analysis_results WHERE "
            + " AND ".join(conditions)
            + " ORDER BY evaluated_at DESC LIMIT ?"
        )
        params.append(limit)
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_analysis(row) for row in rows]

    def count_analyses(self, user_id: str) -> int:
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM analysis_results WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0]

    @staticmethod
    def _row_to_analysis(row: Any) -> AnalysisResult:
        comparison = json.loads(row["comparison_json"])
        return AnalysisResult(
            id=row["id"],
            user_id=row["user_id"],
            status=row["status"],
            confidence_score=row["confidence_score"],
            needs_support=bool(row["needs_support"]),
            baseline_comparison={
                metric: MetricComparison(metric=metric, **values)
                for metric, values in comparison.items()
            },
            significant_changes=tuple(json.loads(row["significant_changes_json"])),
            evaluated_at=parse_iso(row["evaluated_at"]),
            window_days=row["window_days"],
            window_start=date.fromisoformat(row["window_start"]),
            window_end=date.fromisoformat(row["window_end"]),
        )

    # ------------------------------------------------------------------
    # Support requests
    # ------------------------------------------------------------------

    def open_support_request(
        self,
        requester_id: str,
        triggering_analysis_id: str,
        mental_health_status: str,
        *,
        now: datetime,
        stale_before: datetime,
    ) -> tuple[SupportRequest, bool]:
        """Open a request unless the requester already has a live open one.

        Check and insert run in one write transaction. An open request
        created at or before *stale_before* is expired first and replaced.

        Returns:
            ``(request, created)``; ``created`` is False when an existing
            open request was returned instead.
        """
        now_iso = iso(now)
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM support_requests WHERE requester_id = ? AND state = 'open'",
                (requester_id,),
            ).fetchone()
            if row is not None:
                if row["created_at"] > iso(stale_before):
                    return self._row_to_support_request(row), False
                conn.execute(
                    """UPDATE support_requests SET state = 'expired', expired_at = ?
                       WHERE id = ? AND state = 'open'""",
                    (now_iso, row["id"]),
                )
                logger.info("Expired stale support request %s before reopening", row["id"])

            rid = self._new_id()
            conn.execute(
                """INSERT INTO support_requests
                   (id, requester_id, triggering_analysis_id, mental_health_status,
                    created_at, state)
                   VALUES (?, ?, ?, ?, ?, 'open')""",
                (rid, requester_id, triggering_analysis_id, mental_health_status, now_iso),
            )
        return SupportRequest(
            id=rid,
            requester_id=requester_id,
            triggering_analysis_id=triggering_analysis_id,
            mental_health_status=mental_health_status,
            created_at=parse_iso(now_iso),
        ), True

    def get_support_request(self, request_id: str) -> SupportRequest | None:
        row = self._db.connection.execute(
            "SELECT * FROM support_requests WHERE id = ?", (request_id,)
        ).fetchone()
        return self._row_to_support_request(row) if row else None

    def list_support_requests(
        self,
        *,
        state: str | None = "open",
        created_after: datetime | None = None,
        requester_id: str | None = None,
        limit: int = 100,
    ) -> list[SupportRequest]:
        """Support requests, oldest first so the longest-waiting user is seen first."""
        conditions: list[str] = []
        params: list[Any] = []
        if state:
            conditions.append("state = ?")
            params.append(state)
        if created_after is not None:
            conditions.append("created_at > ?")
            params.append(iso(created_after))
        if requester_id:
            conditions.append("requester_id = ?")
            params.append(requester_id)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM support_requests{where} ORDER BY created_at ASC LIMIT ?"
        params.append(limit)
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_support_request(row) for row in rows]

    def claim_support_request(
        self,
        request_id: str,
        buddy_id: str,
        *,
        now: datetime,
        created_after: datetime,
    ) -> bool:
        """Set ``claimed_by`` if the request is open and still within its TTL.

        A single conditional UPDATE: ``claimed_by`` can only ever be set once.

        Returns:
            True if this call claimed the request.
        """
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE support_requests
                   SET state = 'claimed', claimed_by = ?, claimed_at = ?
                   WHERE id = ? AND state = 'open' AND created_at > ?""",
                (buddy_id, iso(now), request_id, iso(created_after)),
            )
        return cursor.rowcount == 1

    def expire_support_request(self, request_id: str, *, now: datetime) -> bool:
        """Move an open request to ``expired``. Returns True if it changed."""
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE support_requests SET state = 'expired', expired_at = ?
                   WHERE id = ? AND state = 'open'""",
                (iso(now), request_id),
            )
        return cursor.rowcount == 1

    def expire_open_before(self, cutoff: datetime, *, now: datetime) -> list[str]:
        """Expire every open request created at or before *cutoff*.

        Returns:
            IDs of the requests that were expired.
        """
        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM support_requests WHERE state = 'open' AND created_at <= ?",
                (iso(cutoff),),
            ).fetchall()
            ids = [row["id"] for row in rows]
            for rid in ids:
                conn.execute(
                    """UPDATE support_requests SET state = 'expired', expired_at = ?
                       WHERE id = ? AND state = 'open'""",
                    (iso(now), rid),
                )
        return ids

    @staticmethod
    def _row_to_support_request(row: Any) -> SupportRequest:
        return SupportRequest(
            id=row["id"],
            requester_id=row["requester_id"],
            triggering_analysis_id=row["triggering_analysis_id"],
            mental_health_status=row["mental_health_status"],
            created_at=parse_iso(row["created_at"]),
            state=row["state"],
            claimed_by=row["claimed_by"],
            claimed_at=parse_iso(row["claimed_at"]),
            expired_at=parse_iso(row["expired_at"]),
        )
