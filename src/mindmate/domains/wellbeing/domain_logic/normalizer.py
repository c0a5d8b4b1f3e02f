"""Metric normalizer: raw daily records and check-ins to per-day samples.

Absence is never turned into zero. A day with no sleep record has
``sleep_hours=None``; a day with an explicit empty exercise list has
``exercise_minutes=0.0``; a day with no data at all produces no sample.
"""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from datetime import date
from typing import Any

from mindmate.core.storage.models import CheckIn, MetricSample
from mindmate.domains.wellbeing.domain_logic.errors import InsufficientDataError
from mindmate.domains.wellbeing.domain_logic.metric_models import (
    ACTIVITY_LEVEL_SCORES,
    SLEEP_QUALITY_SCORES,
)

logger = logging.getLogger(__name__)

HIGH_ACTIVITY_STEPS = 10_000
MODERATE_ACTIVITY_STEPS = 5_000
HIGH_ACTIVITY_EXERCISE_MINUTES = 45.0
MODERATE_ACTIVITY_EXERCISE_MINUTES = 20.0

_RAW_FIELDS = ("sleep_hours", "sleep_quality", "steps_per_day", "exercise_minutes")


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value < 0:
        return None
    return float(value)


def _parse_sleep(sleep: Any) -> dict[str, float]:
    if not isinstance(sleep, dict):
        return {}
    parsed: dict[str, float] = {}

    seconds = _number(sleep.get("duration_seconds"))
    if seconds is not None:
        parsed["sleep_hours"] = seconds / 3600.0
    elif _number(sleep.get("hours")) is not None:
        parsed["sleep_hours"] = _number(sleep.get("hours"))

    quality = sleep.get("quality")
    if isinstance(quality, str) and quality.lower() in SLEEP_QUALITY_SCORES:
        parsed["sleep_quality"] = SLEEP_QUALITY_SCORES[quality.lower()]
    elif _number(quality) is not None and quality <= 1:
        parsed["sleep_quality"] = float(quality)
    return parsed


def _parse_record(record: dict[str, Any]) -> dict[str, float]:
    """Extract the numeric fields present in one raw record."""
    fields = _parse_sleep(record.get("sleep"))

    steps = record.get("steps")
    if isinstance(steps, dict):
        count = _number(steps.get("count"))
        if count is not None:
            fields["steps_per_day"] = int(count)

    # The key being present, even with an empty list, means exercise was tracked.
    if "exercises" in record and isinstance(record["exercises"], list):
        total_seconds = 0.0
        for session in record["exercises"]:
            if isinstance(session, dict):
                total_seconds += _number(session.get("duration_seconds")) or 0.0
        fields["exercise_minutes"] = total_seconds / 60.0
    return fields


def classify_activity_level(
    steps: int | None, exercise_minutes: float | None
) -> str | None:
    """Map steps and exercise minutes to low/moderate/high, or None if neither is known."""
    if steps is None and exercise_minutes is None:
        return None
    steps = steps or 0
    exercise_minutes = exercise_minutes or 0.0
    if steps >= HIGH_ACTIVITY_STEPS or exercise_minutes >= HIGH_ACTIVITY_EXERCISE_MINUTES:
        return "high"
    if steps >= MODERATE_ACTIVITY_STEPS or exercise_minutes >= MODERATE_ACTIVITY_EXERCISE_MINUTES:
        return "moderate"
    return "low"


class MetricNormalizer:
    """Builds one ``MetricSample`` per calendar day that has any data.

    Usage::

        samples = MetricNormalizer().normalize("u1", records, check_ins, start, end)
    """

    def normalize(
        self,
        user_id: str,
        health_records: list[dict[str, Any]],
        check_ins: list[CheckIn],
        start: date,
        end: date,
    ) -> list[MetricSample]:
        """Normalize raw inputs for ``[start, end]``.

        Records for the same day are merged in the order given: the first
        record that carries a field wins.

        Raises:
            InsufficientDataError: If no day in the range has any data.
        """
        by_day: dict[date, dict[str, float]] = defaultdict(dict)

        for record in health_records:
            try:
                day = date.fromisoformat(str(record.get("date")))
            except ValueError:
                logger.warning("Skipping health record with malformed date")
                continue
            if not start <= day <= end:
                continue
            merged = by_day[day]
            for name, value in _parse_record(record).items():
                merged.setdefault(name, value)

        moods: dict[date, list[int]] = defaultdict(list)
        exercise_levels: dict[date, list[str]] = defaultdict(list)
        for check_in in check_ins:
            day = check_in.timestamp.date()
            if not start <= day <= end:
                continue
            moods[day].append(check_in.mood.score)
            for activity in check_in.activities:
                if activity.type.lower() == "exercise":
                    exercise_levels[day].append(activity.level)

        samples: list[MetricSample] = []
        for day in sorted(set(by_day) | set(moods)):
            fields = by_day.get(day, {})
            steps = fields.get("steps_per_day")
            exercise = fields.get("exercise_minutes")

            level = classify_activity_level(steps, exercise)
            if level is None and exercise_levels.get(day):
                level = max(exercise_levels[day], key=ACTIVITY_LEVEL_SCORES.__getitem__)

            mood = statistics.fmean(moods[day]) if moods.get(day) else None

            if not any(fields.get(name) is not None for name in _RAW_FIELDS) and (
                mood is None and level is None
            ):
                continue

            samples.append(MetricSample(
                user_id=user_id,
                date=day,
                sleep_hours=fields.get("sleep_hours"),
                sleep_quality=fields.get("sleep_quality"),
                steps_per_day=int(steps) if steps is not None else None,
                activity_level=level,
                exercise_minutes=exercise,
                mood_score=mood,
            ))

        if not samples:
            raise InsufficientDataError(
                f"No wellbeing data between {start.isoformat()} and {end.isoformat()}"
            )

        logger.debug("Normalized %d day(s) of data", len(samples))
        return samples
