"""Analysis policy: every tunable threshold in one immutable object.

Values come from :class:`~mindmate.core.config.settings.Settings` and may be
overridden by a YAML policy file::

    significance_threshold: 2.0
    min_practical_delta:
      steps_per_day: 1500
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from mindmate.domains.wellbeing.domain_logic.metric_models import (
    DEFAULT_MIN_PRACTICAL_DELTA,
    METRIC_NAMES,
)

logger = logging.getLogger(__name__)


class PolicyError(Exception):
    """Raised when a policy file is unreadable or contains unknown keys."""


@dataclass(frozen=True)
class AnalysisPolicy:
    check_in_cooldown: timedelta = timedelta(hours=4)
    significance_threshold: float = 1.5
    min_baseline_samples: int = 5
    baseline_window_days: int = 28
    recent_window_days: int = 3
    support_threshold: float = 0.6
    support_request_ttl: timedelta = timedelta(hours=24)
    critical_change_count: int = 3
    critical_mood_score: float = 1.0
    critical_mood_days: int = 2
    confidence_saturation_sigma: float = 2.0
    full_confidence_samples: int = 14
    min_practical_delta: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_MIN_PRACTICAL_DELTA)
    )

    def __post_init__(self) -> None:
        if self.min_baseline_samples < 2:
            raise PolicyError("min_baseline_samples must be at least 2 to estimate variance")
        if self.recent_window_days < 1 or self.baseline_window_days < 1:
            raise PolicyError("window lengths must be at least one day")
        if not 0.0 <= self.support_threshold <= 1.0:
            raise PolicyError("support_threshold must be within [0, 1]")
        if self.confidence_saturation_sigma <= 0 or self.full_confidence_samples < 1:
            raise PolicyError("confidence scales must be positive")
        unknown = set(self.min_practical_delta) - set(METRIC_NAMES)
        if unknown:
            raise PolicyError(f"Unknown metrics in min_practical_delta: {sorted(unknown)}")

    @classmethod
    def from_settings(cls, settings: Any) -> AnalysisPolicy:
        """Build a policy from ``Settings``, applying ``policy_file`` if set."""
        policy = cls(
            check_in_cooldown=timedelta(hours=settings.check_in_cooldown_hours),
            significance_threshold=settings.significance_threshold,
            min_baseline_samples=settings.min_baseline_samples,
            baseline_window_days=settings.baseline_window_days,
            recent_window_days=settings.recent_window_days,
            support_threshold=settings.support_threshold,
            support_request_ttl=timedelta(hours=settings.support_request_ttl_hours),
            critical_change_count=settings.critical_change_count,
            critical_mood_score=settings.critical_mood_score,
            critical_mood_days=settings.critical_mood_days,
            confidence_saturation_sigma=settings.confidence_saturation_sigma,
            full_confidence_samples=settings.full_confidence_samples,
        )
        if settings.policy_file:
            policy = load_policy_file(settings.policy_file, base=policy)
        return policy

    def practical_delta(self, metric: str) -> float:
        return self.min_practical_delta.get(metric, 0.0)


_DURATION_KEYS = {
    "check_in_cooldown_hours": "check_in_cooldown",
    "support_request_ttl_hours": "support_request_ttl",
}


def load_policy_file(path: str | Path, *, base: AnalysisPolicy | None = None) -> AnalysisPolicy:
    """Overlay the values in a YAML policy file on *base* (defaults if omitted).

    Raises:
        PolicyError: If the file cannot be read or parsed, or has unknown keys.
    """
    base = base or AnalysisPolicy()
    policy_path = Path(path).expanduser()
    try:
        with open(policy_path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise PolicyError(f"Cannot load policy file {policy_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise PolicyError(f"Policy file {policy_path} must contain a mapping")

    known = {f.name for f in fields(AnalysisPolicy)}
    overrides: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _DURATION_KEYS:
            overrides[_DURATION_KEYS[key]] = timedelta(hours=float(value))
        elif key == "min_practical_delta":
            if not isinstance(value, dict):
                raise PolicyError("min_practical_delta must be a mapping")
            overrides[key] = {**base.min_practical_delta, **{k: float(v) for k, v in value.items()}}
        elif key in known and key not in _DURATION_KEYS.values():
            overrides[key] = value
        else:
            raise PolicyError(f"Unknown policy key: {key}")

    logger.info("Loaded analysis policy overrides from %s: %s", policy_path, sorted(overrides))
    return replace(base, **overrides)
