"""Comparator: current-window metrics against the user's own baseline."""

from __future__ import annotations

import logging
import math
import statistics
from dataclasses import dataclass, field

from mindmate.core.storage.models import Baseline, MetricComparison, MetricSample
from mindmate.domains.wellbeing.domain_logic.metric_models import (
    MAX_DELTA_SIGMA,
    METRIC_NAMES,
    metric_value,
)
from mindmate.domains.wellbeing.domain_logic.policy import AnalysisPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComparisonReport:
    comparisons: dict[str, MetricComparison] = field(default_factory=dict)
    significant_changes: tuple[str, ...] = ()

    @property
    def evaluated_metrics(self) -> tuple[str, ...]:
        return tuple(self.comparisons)


def delta_sigma(current: float, mean: float, variance: float) -> float:
    """Standardized deviation of *current* from *mean*, capped at ``MAX_DELTA_SIGMA``.

    Against a zero-variance baseline any nonzero delta is maximally
    significant (signed ``MAX_DELTA_SIGMA``) and a zero delta is zero. No
    other baseline can report a larger magnitude.
    """
    delta = current - mean
    if variance <= 0.0:
        if delta == 0.0:
            return 0.0
        return math.copysign(MAX_DELTA_SIGMA, delta)
    return max(-MAX_DELTA_SIGMA, min(MAX_DELTA_SIGMA, delta / math.sqrt(variance)))


def window_mean(samples: list[MetricSample], metric: str) -> float | None:
    values = [v for v in (metric_value(s, metric) for s in samples) if v is not None]
    if not values:
        return None
    return statistics.fmean(values)


def compare(
    recent: list[MetricSample],
    baselines: dict[str, Baseline],
    policy: AnalysisPolicy,
) -> ComparisonReport:
    """Compare every metric that has both a current value and an active baseline.

    A metric is significant when ``|deltaSigma| >= significance_threshold``
    and its raw delta exceeds the metric's minimum practical magnitude.
    Significant metrics are ordered by descending ``|deltaSigma|``, ties in
    catalogue order.
    """
    comparisons: dict[str, MetricComparison] = {}
    for metric in METRIC_NAMES:
        baseline = baselines.get(metric)
        if baseline is None:
            continue
        current = window_mean(recent, metric)
        if current is None:
            continue

        ds = delta_sigma(current, baseline.mean, baseline.variance)
        delta = current - baseline.mean
        significant = (
            abs(ds) >= policy.significance_threshold
            and abs(delta) > policy.practical_delta(metric)
        )
        comparisons[metric] = MetricComparison(
            metric=metric,
            current=current,
            baseline=baseline.mean,
            delta=delta,
            delta_sigma=ds,
            significant=significant,
        )

    order = {name: i for i, name in enumerate(METRIC_NAMES)}
    significant = sorted(
        (c for c in comparisons.values() if c.significant),
        key=lambda c: (-abs(c.delta_sigma), order[c.metric]),
    )
    logger.debug(
        "Compared %d metric(s), %d significant", len(comparisons), len(significant)
    )
    return ComparisonReport(
        comparisons=comparisons,
        significant_changes=tuple(c.metric for c in significant),
    )
