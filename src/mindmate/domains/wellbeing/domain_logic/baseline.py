"""Baseline store: per-user, per-metric mean and variance over a trailing window."""

from __future__ import annotations

import logging
import statistics
from datetime import date, datetime

from mindmate.core.storage.decision_repository import DecisionRepository
from mindmate.core.storage.models import Baseline, MetricSample
from mindmate.core.storage.repository import WellbeingRepository
from mindmate.domains.wellbeing.domain_logic.errors import InsufficientBaselineError
from mindmate.domains.wellbeing.domain_logic.metric_models import (
    METRIC_NAMES,
    metric_value,
)
from mindmate.domains.wellbeing.domain_logic.policy import AnalysisPolicy

logger = logging.getLogger(__name__)


class BaselineStore:
    """Computes baselines and swaps them in atomically.

    Readers call :meth:`active`, which reads all of a user's active rows in
    one statement, so they never see a half-replaced set.

    Usage::

        store = BaselineStore(samples_repo, decisions_repo, policy)
        store.refresh("u1", window_start, window_end, now=now)
        baselines = store.active("u1")
    """

    def __init__(
        self,
        samples: WellbeingRepository,
        decisions: DecisionRepository,
        policy: AnalysisPolicy,
    ) -> None:
        self._samples = samples
        self._decisions = decisions
        self._policy = policy

    def compute_baseline(
        self,
        user_id: str,
        metric: str,
        window_start: date,
        window_end: date,
        samples: list[MetricSample] | None = None,
    ) -> Baseline:
        """Compute one metric's baseline over ``[window_start, window_end]``.

        Pure given the samples: identical inputs give an identical Baseline.

        Args:
            samples: Pre-loaded samples; loaded from storage when omitted.
                Samples outside the window are ignored.

        Raises:
            InsufficientBaselineError: Fewer than ``min_baseline_samples``
                days carry this metric.
        """
        if samples is None:
            samples = self._samples.get_samples(user_id, window_start, window_end)

        values: list[float] = []
        for sample in sorted(samples, key=lambda s: s.date):
            if not window_start <= sample.date <= window_end:
                continue
            value = metric_value(sample, metric)
            if value is not None:
                values.append(value)
        if len(values) < self._policy.min_baseline_samples:
            raise InsufficientBaselineError(metric, len(values), self._policy.min_baseline_samples)

        return Baseline(
            user_id=user_id,
            metric=metric,
            mean=statistics.fmean(values),
            variance=statistics.variance(values),
            sample_count=len(values),
            window_start=window_start,
            window_end=window_end,
        )

    def refresh(
        self,
        user_id: str,
        window_start: date,
        window_end: date,
        *,
        now: datetime,
        samples: list[MetricSample] | None = None,
    ) -> dict[str, Baseline]:
        """Recompute every metric and swap the whole set in together.

        A metric without enough history in the new window has no baseline
        afterwards: its previous row is retired in the same transaction, so
        it is treated as unknown rather than compared against an old window.

        Returns:
            The active baselines after the swap.
        """
        if samples is None:
            samples = self._samples.get_samples(user_id, window_start, window_end)

        computed: list[Baseline] = []
        insufficient: list[str] = []
        for metric in METRIC_NAMES:
            try:
                computed.append(
                    self.compute_baseline(user_id, metric, window_start, window_end, samples)
                )
            except InsufficientBaselineError as exc:
                logger.debug("No baseline: %s", exc)
                insufficient.append(metric)

        if not computed:
            logger.info(
                "No metric has enough history for a baseline ending %s",
                window_end.isoformat(),
            )
        self._decisions.swap_active_baselines(
            user_id, computed, now=now, retire=insufficient
        )
        return self.active(user_id)

    def active(self, user_id: str) -> dict[str, Baseline]:
        return self._decisions.get_active_baselines(user_id)

    def history(self, user_id: str, metric: str, *, limit: int = 30) -> list[Baseline]:
        if metric not in METRIC_NAMES:
            raise KeyError(f"Unknown metric: {metric}")
        return self._decisions.get_baseline_history(user_id, metric, limit=limit)
