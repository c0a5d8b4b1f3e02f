"""Metric catalogue for the wellbeing engine.

Every metric is numeric for the purposes of baselines and comparison;
``activity_level`` is scored low=1, moderate=2, high=3.
"""

from __future__ import annotations

from mindmate.core.storage.models import MetricSample

# Evaluation order; also breaks ties between equally deviating metrics.
METRIC_NAMES: tuple[str, ...] = (
    "sleep_hours",
    "sleep_quality",
    "steps_per_day",
    "activity_level",
    "exercise_minutes",
    "mood_score",
)

ACTIVITY_LEVEL_SCORES: dict[str, float] = {"low": 1.0, "moderate": 2.0, "high": 3.0}

SLEEP_QUALITY_SCORES: dict[str, float] = {"poor": 0.0, "fair": 0.5, "good": 1.0}

# Sign of a change that counts as unhealthy. All tracked metrics are
# "more is better", so a drop is the unhealthy direction.
UNHEALTHY_DIRECTION: dict[str, int] = {name: -1 for name in METRIC_NAMES}

# Raw deltas at or below these magnitudes are never significant.
DEFAULT_MIN_PRACTICAL_DELTA: dict[str, float] = {
    "sleep_hours": 0.5,
    "sleep_quality": 0.1,
    "steps_per_day": 1000.0,
    "activity_level": 0.5,
    "exercise_minutes": 10.0,
    "mood_score": 0.5,
}

# Largest |deltaSigma| reported; a nonzero change against a zero-variance
# baseline always gets it.
MAX_DELTA_SIGMA = 10.0

MOOD_LABELS: tuple[str, ...] = ("Very Low", "Low", "Neutral", "Good", "Very Good")

ACTIVITY_TYPES: tuple[str, ...] = ("Sleep", "Exercise", "Social", "Work")


def mood_label_for(score: int) -> str:
    return MOOD_LABELS[score - 1]


def metric_value(sample: MetricSample, metric: str) -> float | None:
    """Numeric value of *metric* in *sample*, or None when it was not measured."""
    if metric not in METRIC_NAMES:
        raise KeyError(f"Unknown metric: {metric}")
    value = getattr(sample, metric)
    if value is None:
        return None
    if metric == "activity_level":
        return ACTIVITY_LEVEL_SCORES[value]
    return float(value)
