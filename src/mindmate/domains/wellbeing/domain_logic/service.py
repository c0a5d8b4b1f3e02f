"""Wellbeing service: the triggerable operations of the engine.

Pipeline for one evaluation, serialized per user::

    health source + check-ins -> MetricNormalizer -> BaselineStore
        -> compare() -> classify() -> append result -> SupportRequestBroker

Check-ins go through the rate limiter and never touch the analysis path.
"""

from __future__ import annotations

import logging
import statistics
import uuid
from collections import Counter
from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from mindmate.core.audit.logger import AuditLogger
from mindmate.core.storage.database import MindMateDatabase
from mindmate.core.storage.decision_repository import DecisionRepository
from mindmate.core.storage.models import (
    AnalysisResult,
    Baseline,
    CheckIn,
    CheckInTimer,
    MetricSample,
    SupportRequest,
)
from mindmate.core.storage.repository import RepositoryError, WellbeingRepository
from mindmate.domains.wellbeing.connectors import (
    BuddyDirectory,
    HealthDataSource,
    Messenger,
    no_buddies,
)
from mindmate.domains.wellbeing.domain_logic.baseline import BaselineStore
from mindmate.domains.wellbeing.domain_logic.classifier import classify
from mindmate.domains.wellbeing.domain_logic.comparator import compare
from mindmate.domains.wellbeing.domain_logic.concurrency import UserLockRegistry
from mindmate.domains.wellbeing.domain_logic.errors import (
    InsufficientDataError,
    ValidationError,
)
from mindmate.domains.wellbeing.domain_logic.normalizer import MetricNormalizer
from mindmate.domains.wellbeing.domain_logic.policy import AnalysisPolicy
from mindmate.domains.wellbeing.domain_logic.rate_limiter import (
    CheckInRateLimiter,
    CheckInStatus,
)
from mindmate.domains.wellbeing.domain_logic.support_broker import SupportRequestBroker
from mindmate.domains.wellbeing.domain_logic.validation import validate_check_in

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class WellbeingService:
    """Facade over the engine's components.

    Every collaborator is passed in, so tests swap in an in-memory
    database, a fixed clock and fake sources without global state.

    Usage::

        service = WellbeingService(
            database=db, repository=repo, decisions=decisions,
            health_source=source, messenger=messenger, policy=policy,
        )
        result = await service.analyze_recent("u1")
    """

    def __init__(
        self,
        *,
        database: MindMateDatabase,
        repository: WellbeingRepository,
        decisions: DecisionRepository,
        health_source: HealthDataSource,
        messenger: Messenger,
        policy: AnalysisPolicy,
        audit: AuditLogger | None = None,
        clock: Clock = utc_now,
        buddy_directory: BuddyDirectory = no_buddies,
        privileged_user_ids: set[str] | frozenset[str] = frozenset(),
        allow_self_timer_reset: bool = False,
    ) -> None:
        self._db = database
        self._repo = repository
        self._decisions = decisions
        self._source = health_source
        self._policy = policy
        self._audit = audit
        self._clock = clock

        self._normalizer = MetricNormalizer()
        self._baselines = BaselineStore(repository, decisions, policy)
        self._limiter = CheckInRateLimiter(
            repository,
            policy,
            privileged_user_ids=privileged_user_ids,
            allow_self_reset=allow_self_timer_reset,
        )
        self._broker = SupportRequestBroker(
            decisions, messenger, policy, buddy_directory=buddy_directory
        )
        self._locks = UserLockRegistry()

    @property
    def policy(self) -> AnalysisPolicy:
        return self._policy

    @property
    def locks(self) -> UserLockRegistry:
        return self._locks

    @property
    def health_source(self) -> HealthDataSource:
        return self._source

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def windows(self, today: date) -> tuple[date, date, date, date]:
        """``(baseline_start, baseline_end, recent_start, recent_end)`` for *today*.

        The recent window ends today; the baseline window ends the day
        before it starts, so the two never overlap.
        """
        recent_end = today
        recent_start = today - timedelta(days=self._policy.recent_window_days - 1)
        baseline_end = recent_start - timedelta(days=1)
        baseline_start = baseline_end - timedelta(days=self._policy.baseline_window_days - 1)
        return baseline_start, baseline_end, recent_start, recent_end

    async def _load_samples(
        self, user_id: str, start: date, end: date, now: datetime
    ) -> list[MetricSample]:
        # Source failures propagate unchanged; the caller owns retries.
        records = await self._source.get_daily_records(user_id, start, end)
        check_ins = self._repo.get_check_ins(
            user_id, since=_day_start(start), until=_day_start(end + timedelta(days=1))
        )
        samples = self._normalizer.normalize(user_id, records, check_ins, start, end)
        self._repo.save_samples(samples, now=now)
        return samples

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze_recent(self, user_id: str, *, trigger: str = "on_demand") -> AnalysisResult:
        """Evaluate the user's recent window against their baseline.

        Raises:
            InsufficientDataError: No data at all in the recent window.
        """
        async with self._locks.hold(user_id):
            now = self._clock()
            baseline_start, baseline_end, recent_start, recent_end = self.windows(now.date())

            try:
                samples = await self._load_samples(user_id, baseline_start, recent_end, now)
            except InsufficientDataError:
                raise InsufficientDataError(
                    f"No wellbeing data in the last {self._policy.recent_window_days} day(s)"
                ) from None

            recent = [s for s in samples if s.date >= recent_start]
            if not recent:
                raise InsufficientDataError(
                    f"No wellbeing data in the last {self._policy.recent_window_days} day(s)"
                )

            baselines = self._baselines.active(user_id)
            if not baselines or any(b.window_end != baseline_end for b in baselines.values()):
                history = [s for s in samples if s.date <= baseline_end]
                baselines = self._baselines.refresh(
                    user_id, baseline_start, baseline_end, now=now, samples=history
                )

            report = compare(recent, baselines, self._policy)
            outcome = classify(report, baselines, recent, self._policy)
            result = AnalysisResult(
                id=str(uuid.uuid4()),
                user_id=user_id,
                status=outcome.status,
                confidence_score=outcome.confidence_score,
                needs_support=outcome.needs_support,
                baseline_comparison=report.comparisons,
                significant_changes=report.significant_changes,
                evaluated_at=now,
                window_days=self._policy.recent_window_days,
                window_start=recent_start,
                window_end=recent_end,
            )
            self._decisions.append_analysis(result)
            self._broker.open_for(result, now=now)

        logger.info(
            "Analysis %s: status=%s confidence=%.2f needs_support=%s",
            result.id,
            result.status,
            result.confidence_score,
            result.needs_support,
        )
        if self._audit is not None:
            self._audit.log_decision(result, trigger=trigger)
        return result

    def analysis_history(
        self, user_id: str, *, limit: int = 20, status: str | None = None
    ) -> list[AnalysisResult]:
        return self._decisions.get_analyses(user_id, status=status, limit=limit)

    def analysis_stats(self, user_id: str, *, days: int = 30) -> dict[str, Any]:
        """Summary of recent analyses and check-ins for a dashboard view."""
        now = self._clock()
        since = now - timedelta(days=days)
        results = self._decisions.get_analyses(user_id, since=since, limit=1000)
        check_ins = self._repo.get_check_ins(user_id, since=since)

        counts = Counter(r.status for r in results)
        return {
            "days": days,
            "analyses": len(results),
            "status_counts": {s: counts.get(s, 0) for s in ("stable", "declining", "critical")},
            "latest_status": results[0].status if results else None,
            "mean_confidence": (
                round(statistics.fmean(r.confidence_score for r in results), 4)
                if results else None
            ),
            "support_flags": sum(1 for r in results if r.needs_support),
            "check_ins": len(check_ins),
            "mean_mood": (
                round(statistics.fmean(c.mood.score for c in check_ins), 2)
                if check_ins else None
            ),
            "trend": [
                {
                    "evaluated_at": r.evaluated_at.isoformat(),
                    "status": r.status,
                    "confidence_score": round(r.confidence_score, 4),
                }
                for r in reversed(results[:30])
            ],
        }

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    async def establish_baseline(self, user_id: str) -> dict[str, Baseline]:
        """Recompute all baselines over the current baseline window now.

        Raises:
            InsufficientDataError: No data at all in the baseline window.
        """
        async with self._locks.hold(user_id):
            now = self._clock()
            baseline_start, baseline_end, _, _ = self.windows(now.date())
            samples = await self._load_samples(user_id, baseline_start, baseline_end, now)
            return self._baselines.refresh(
                user_id, baseline_start, baseline_end, now=now, samples=samples
            )

    def get_active_baselines(self, user_id: str) -> dict[str, Baseline]:
        return self._baselines.active(user_id)

    def baseline_history(self, user_id: str, metric: str, *, limit: int = 30) -> list[Baseline]:
        try:
            return self._baselines.history(user_id, metric, limit=limit)
        except KeyError as exc:
            raise ValidationError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Check-ins
    # ------------------------------------------------------------------

    def submit_check_in(self, user_id: str, payload: Any) -> CheckIn:
        """Validate and store a check-in, starting the user's cooldown.

        Raises:
            ValidationError: Malformed payload; nothing is stored.
            CooldownActiveError: The user checked in too recently.
        """
        now = self._clock()
        check_in = validate_check_in(user_id, payload, now=now)
        with self._db.transaction():
            self._limiter.acquire(user_id, now)
            saved = self._repo.save_check_in(check_in)
        logger.info("Stored check-in %s", saved.id)
        return saved

    def get_check_in_status(self, user_id: str) -> CheckInStatus:
        return self._limiter.status(user_id, self._clock())

    def reset_check_in_timer(self, user_id: str, *, requested_by: str) -> CheckInTimer:
        """Clear a user's cooldown.

        Raises:
            PermissionDeniedError: *requested_by* is not allowed to reset it.
        """
        timer = self._limiter.reset(user_id, requested_by=requested_by, now=self._clock())
        if self._audit is not None:
            self._audit.log_timer_reset(user_id, requested_by=requested_by)
        return timer

    def recent_check_ins(self, user_id: str, *, days: int = 7) -> list[CheckIn]:
        """Check-ins from the last *days* days, newest first."""
        since = self._clock() - timedelta(days=days)
        return list(reversed(self._repo.get_check_ins(user_id, since=since)))

    # ------------------------------------------------------------------
    # Support requests
    # ------------------------------------------------------------------

    def list_open_support_requests(self, *, viewer_id: str | None = None) -> list[SupportRequest]:
        return self._broker.list_open(now=self._clock(), viewer_id=viewer_id)

    def open_support_request_for(self, user_id: str) -> SupportRequest | None:
        requests = self._decisions.list_support_requests(state="open", requester_id=user_id)
        return requests[0] if requests else None

    def claim_support_request(self, request_id: str, buddy_id: str) -> SupportRequest:
        return self._broker.claim(request_id, buddy_id, now=self._clock())

    def expire_support_request(self, request_id: str) -> SupportRequest:
        return self._broker.expire(request_id, now=self._clock())

    def expire_stale_support_requests(self) -> list[str]:
        return self._broker.expire_stale(now=self._clock())

    # ------------------------------------------------------------------
    # Raw data
    # ------------------------------------------------------------------

    def sync_health_data(
        self, user_id: str, records: Any, *, source: str = "manual"
    ) -> int:
        """Ingest raw per-day records; all or nothing.

        Returns:
            Number of records stored.

        Raises:
            ValidationError: If any record is malformed; none are stored.
        """
        if not isinstance(records, list) or not records:
            raise ValidationError("records must be a non-empty list")
        today = self._clock().date()
        for i, record in enumerate(records):
            if not isinstance(record, dict):
                raise ValidationError(f"records[{i}] must be an object")
            try:
                day = date.fromisoformat(str(record.get("date")))
            except ValueError as exc:
                raise ValidationError(f"records[{i}].date must be YYYY-MM-DD") from exc
            if day > today:
                raise ValidationError(f"records[{i}].date is in the future")

        now = self._clock()
        try:
            with self._db.transaction():
                for record in records:
                    self._repo.upsert_health_record(user_id, record, source=source, now=now)
        except RepositoryError as exc:
            raise ValidationError(str(exc)) from exc
        logger.info("Synced %d health record(s) from %s", len(records), source)
        return len(records)

    def purge_health_records(self, days: int) -> int:
        if days < 1:
            raise ValidationError("days must be at least 1")
        deleted = self._repo.purge_health_records_before_days(days, today=self._clock().date())
        if self._audit is not None:
            self._audit.log_data_delete(
                tool_name="purge_health_records", count=deleted, metadata={"older_than_days": days}
            )
        return deleted
