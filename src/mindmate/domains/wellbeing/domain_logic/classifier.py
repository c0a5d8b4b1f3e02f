"""Status classifier: deterministic rule cascade over a comparison report.

1. No baseline at all (cold start): ``stable``, confidence 0.
2. Significant metrics moving in the unhealthy direction set the tier:
   0 is ``stable``, 1-2 ``declining``, ``critical_change_count`` or more
   ``critical``. A mood at or below ``critical_mood_score`` on
   ``critical_mood_days`` consecutive days is ``critical`` regardless.
3. Confidence grows with the largest significant ``|deltaSigma|``
   (saturating) and is capped by the shortest baseline history involved.
4. ``needs_support`` is critical, or declining with enough confidence.

Ties resolve toward the milder outcome: a zero delta is never unhealthy
and a raw delta exactly at its practical minimum is not significant.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta

from mindmate.core.storage.models import Baseline, MentalHealthStatus, MetricSample
from mindmate.domains.wellbeing.domain_logic.comparator import ComparisonReport
from mindmate.domains.wellbeing.domain_logic.metric_models import UNHEALTHY_DIRECTION
from mindmate.domains.wellbeing.domain_logic.policy import AnalysisPolicy


@dataclass(frozen=True)
class Classification:
    status: MentalHealthStatus
    confidence_score: float
    needs_support: bool
    unhealthy_changes: tuple[str, ...] = ()
    mood_streak: bool = False


def unhealthy_changes(report: ComparisonReport) -> tuple[str, ...]:
    """Significant metrics whose delta points in the unhealthy direction."""
    changes = []
    for metric in report.significant_changes:
        delta = report.comparisons[metric].delta
        if delta * UNHEALTHY_DIRECTION[metric] > 0:
            changes.append(metric)
    return tuple(changes)


def has_critical_mood_streak(recent: list[MetricSample], policy: AnalysisPolicy) -> bool:
    """True if mood stayed at or below the critical score for enough consecutive days."""
    streak = 0
    previous = None
    for sample in sorted(recent, key=lambda s: s.date):
        low = sample.mood_score is not None and sample.mood_score <= policy.critical_mood_score
        if low and previous is not None and sample.date - previous == timedelta(days=1):
            streak += 1
        elif low:
            streak = 1
        else:
            streak = 0
        previous = sample.date if low else None
        if streak >= policy.critical_mood_days:
            return True
    return False


def confidence_score(
    report: ComparisonReport,
    baselines: dict[str, Baseline],
    policy: AnalysisPolicy,
) -> float:
    """Confidence in [0, 1]; 0 when nothing is significant.

    Non-decreasing in the largest significant ``|deltaSigma|`` and in the
    baseline sample count.
    """
    if not report.significant_changes:
        return 0.0
    magnitude = max(
        abs(report.comparisons[m].delta_sigma) for m in report.significant_changes
    )
    strength = 1.0 - math.exp(-magnitude / policy.confidence_saturation_sigma)

    counts = [
        baselines[m].sample_count for m in report.evaluated_metrics if m in baselines
    ]
    history = min(1.0, min(counts) / policy.full_confidence_samples) if counts else 0.0
    return max(0.0, min(1.0, strength * history))


def classify(
    report: ComparisonReport,
    baselines: dict[str, Baseline],
    recent: list[MetricSample],
    policy: AnalysisPolicy,
) -> Classification:
    """Classify one evaluation. Pure: same inputs, same output."""
    if not baselines:
        return Classification(status="stable", confidence_score=0.0, needs_support=False)

    unhealthy = unhealthy_changes(report)
    streak = has_critical_mood_streak(recent, policy)

    status: MentalHealthStatus
    if len(unhealthy) >= policy.critical_change_count or streak:
        status = "critical"
    elif unhealthy:
        status = "declining"
    else:
        status = "stable"

    confidence = confidence_score(report, baselines, policy)
    needs_support = status == "critical" or (
        status == "declining" and confidence >= policy.support_threshold
    )
    return Classification(
        status=status,
        confidence_score=confidence,
        needs_support=needs_support,
        unhealthy_changes=unhealthy,
        mood_streak=streak,
    )
