"""Boundary validation for check-in payloads.

A check-in is either fully valid or rejected with ``ValidationError``;
nothing is partially stored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from mindmate.core.storage.models import ACTIVITY_LEVELS, Activity, CheckIn, Mood
from mindmate.domains.wellbeing.domain_logic.errors import ValidationError
from mindmate.domains.wellbeing.domain_logic.metric_models import (
    MOOD_LABELS,
    mood_label_for,
)

MAX_NOTES_LENGTH = 2000


def _validate_mood(mood: Any) -> Mood:
    if not isinstance(mood, dict):
        raise ValidationError("mood is required and must be an object")

    score = mood.get("score")
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError("mood.score is required and must be an integer 1-5")
    if not 1 <= score <= 5:
        raise ValidationError(f"mood.score must be between 1 and 5, got {score}")

    label = mood.get("label")
    if label is None:
        label = mood_label_for(score)
    elif label not in MOOD_LABELS:
        raise ValidationError(f"mood.label must be one of {list(MOOD_LABELS)}")

    description = mood.get("description")
    if description is not None and not isinstance(description, str):
        raise ValidationError("mood.description must be a string")

    return Mood(score=score, label=label, description=description or None)


def _validate_activities(activities: Any) -> tuple[Activity, ...]:
    if activities is None:
        return ()
    if not isinstance(activities, list):
        raise ValidationError("activities must be a list")

    parsed: list[Activity] = []
    for i, item in enumerate(activities):
        if not isinstance(item, dict):
            raise ValidationError(f"activities[{i}] must be an object")
        activity_type = item.get("type")
        level = item.get("level")
        if not isinstance(activity_type, str) or not activity_type.strip():
            raise ValidationError(f"activities[{i}].type is required")
        if level not in ACTIVITY_LEVELS:
            raise ValidationError(
                f"activities[{i}].level must be one of {list(ACTIVITY_LEVELS)}"
            )
        parsed.append(Activity(type=activity_type.strip(), level=level))
    return tuple(parsed)


def validate_check_in(user_id: str, payload: Any, *, now: datetime) -> CheckIn:
    """Turn an inbound check-in payload into a ``CheckIn`` stamped *now*.

    Args:
        user_id: Authenticated user the check-in belongs to.
        payload: ``{"mood": {"score", "label"?, "description"?},
            "activities"?: [{"type", "level"}], "notes"?}``.
        now: Server time; client-supplied timestamps are ignored.

    Raises:
        ValidationError: On any malformed field.
    """
    if not user_id:
        raise ValidationError("user_id is required")
    if not isinstance(payload, dict):
        raise ValidationError("check-in must be an object")

    mood = _validate_mood(payload.get("mood"))
    activities = _validate_activities(payload.get("activities"))

    notes = payload.get("notes")
    if notes is not None:
        if not isinstance(notes, str):
            raise ValidationError("notes must be a string")
        if len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"notes must be at most {MAX_NOTES_LENGTH} characters")
        notes = notes or None

    return CheckIn(
        user_id=user_id,
        timestamp=now,
        mood=mood,
        activities=activities,
        notes=notes,
    )
