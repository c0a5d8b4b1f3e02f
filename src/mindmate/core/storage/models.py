"""Record types shared by the wellbeing engine and its persistence layer.

Everything except ``CheckInTimer`` is immutable: a changed day produces a
new ``MetricSample``, a new baseline replaces the old one, and analysis
results are only ever appended.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Literal

MentalHealthStatus = Literal["stable", "declining", "critical"]
SupportRequestState = Literal["open", "claimed", "expired"]
ActivityLevel = Literal["low", "moderate", "high"]

ACTIVITY_LEVELS: tuple[str, ...] = ("low", "moderate", "high")


def iso(value: datetime | None) -> str | None:
    """Fixed-width ISO 8601 so stored timestamps compare correctly as text."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class MetricSample:
    """One day's normalized readings for one user."""

    user_id: str
    date: date
    sleep_hours: float | None = None
    sleep_quality: float | None = None      # 0-1
    steps_per_day: int | None = None
    activity_level: ActivityLevel | None = None
    exercise_minutes: float | None = None
    mood_score: float | None = None         # 1-5, mean of the day's check-ins

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "sleep_hours": self.sleep_hours,
            "sleep_quality": self.sleep_quality,
            "steps_per_day": self.steps_per_day,
            "activity_level": self.activity_level,
            "exercise_minutes": self.exercise_minutes,
            "mood_score": self.mood_score,
        }


@dataclass(frozen=True)
class Baseline:
    """Per-user, per-metric summary over a trailing window.

    ``id`` and ``computed_at`` are bookkeeping and do not take part in
    equality, so recomputing from the same inputs compares equal.
    """

    user_id: str
    metric: str
    mean: float
    variance: float
    sample_count: int
    window_start: date
    window_end: date
    id: str = field(default="", compare=False)
    computed_at: str = field(default="", compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "mean": self.mean,
            "variance": self.variance,
            "sample_count": self.sample_count,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "computed_at": self.computed_at,
        }


@dataclass(frozen=True)
class MetricComparison:
    """Current-window value of one metric against its baseline."""

    metric: str
    current: float
    baseline: float
    delta: float
    delta_sigma: float
    significant: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": round(self.current, 4),
            "baseline": round(self.baseline, 4),
            "delta": round(self.delta, 4),
            "delta_sigma": round(self.delta_sigma, 4),
            "significant": self.significant,
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one evaluation of a user's recent window."""

    id: str
    user_id: str
    status: MentalHealthStatus
    confidence_score: float
    needs_support: bool
    baseline_comparison: dict[str, MetricComparison]
    significant_changes: tuple[str, ...]
    evaluated_at: datetime
    window_days: int
    window_start: date
    window_end: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "confidence_score": round(self.confidence_score, 4),
            "needs_support": self.needs_support,
            "baseline_comparison": {
                metric: comparison.to_dict()
                for metric, comparison in self.baseline_comparison.items()
            },
            "significant_changes": list(self.significant_changes),
            "evaluated_at": iso(self.evaluated_at),
            "window_days": self.window_days,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
        }


@dataclass(frozen=True)
class Mood:
    score: int                 # 1-5
    label: str
    description: str | None = None


@dataclass(frozen=True)
class Activity:
    type: str
    level: ActivityLevel


@dataclass(frozen=True)
class CheckIn:
    """A user's mood/activity self-report."""

    user_id: str
    timestamp: datetime
    mood: Mood
    activities: tuple[Activity, ...] = ()
    notes: str | None = None
    id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": iso(self.timestamp),
            "mood": {
                "score": self.mood.score,
                "label": self.mood.label,
                "description": self.mood.description,
            },
            "activities": [{"type": a.type, "level": a.level} for a in self.activities],
            "notes": self.notes,
        }


@dataclass
class CheckInTimer:
    """Per-user cooldown state for check-ins."""

    user_id: str
    last_check_in_at: datetime | None = None
    cooldown_until: datetime | None = None
    reset_at: datetime | None = None

    def is_cooling(self, now: datetime) -> bool:
        return self.cooldown_until is not None and now < self.cooldown_until


@dataclass(frozen=True)
class SupportRequest:
    """A claimable request inviting a buddy to reach out."""

    id: str
    requester_id: str
    triggering_analysis_id: str
    mental_health_status: MentalHealthStatus
    created_at: datetime
    state: SupportRequestState = "open"
    claimed_by: str | None = None
    claimed_at: datetime | None = None
    expired_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "triggering_analysis_id": self.triggering_analysis_id,
            "mental_health_status": self.mental_health_status,
            "created_at": iso(self.created_at),
            "state": self.state,
            "claimed_by": self.claimed_by,
            "claimed_at": iso(self.claimed_at),
            "expired_at": iso(self.expired_at),
        }
