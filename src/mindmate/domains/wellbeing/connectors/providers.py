"""Concrete HealthDataSource implementations."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from mindmate.core.storage.repository import WellbeingRepository


class StoredHealthDataSource:
    """Reads records previously ingested through ``sync_health_data``."""

    def __init__(self, repository: WellbeingRepository) -> None:
        self._repo = repository

    async def get_daily_records(
        self, user_id: str, start: date, end: date
    ) -> list[dict[str, Any]]:
        return self._repo.get_health_records(user_id, start, end)

    @property
    def data_source(self) -> str:
        return "stored"


class MockHealthDataSource:
    """Deterministic synthetic days for demos. Always available.

    Represents a steady, moderately active adult: the same user and date
    always give the same record, so analyses over mock data stay stable.
    """

    async def get_daily_records(
        self, user_id: str, start: date, end: date
    ) -> list[dict[str, Any]]:
        records = []
        day = start
        while day <= end:
            records.append(mock_daily_record(day))
            day += timedelta(days=1)
        return records

    @property
    def data_source(self) -> str:
        return "mock"


def mock_daily_record(day: date) -> dict[str, Any]:
    """Return one mock day; varies gently with the day of the week."""
    weekday = day.weekday()
    weekend = weekday >= 5
    exercises = []
    if weekday % 2 == 0:
        exercises.append({"type": "walk", "duration_seconds": 1800 + 300 * (weekday % 3)})
    return {
        "date": day.isoformat(),
        "sleep": {
            "duration_seconds": (8.0 if weekend else 7.0 + 0.1 * weekday) * 3600,
            "quality": "good" if weekend else "fair",
        },
        "steps": {"count": 6500 + 400 * weekday},
        "exercises": exercises,
    }
