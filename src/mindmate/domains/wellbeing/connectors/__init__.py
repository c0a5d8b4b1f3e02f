"""Wellbeing connectors: abstraction layer for the engine's external collaborators."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from typing import Any, Protocol, runtime_checkable

# user_id -> buddy user IDs who should hear about that user's support requests
BuddyDirectory = Callable[[str], list[str]]


def no_buddies(user_id: str) -> list[str]:
    return []


@runtime_checkable
class HealthDataSource(Protocol):
    """Supplies raw per-day health records for a user.

    Each record looks like::

        {"date": "2026-10-01",
         "sleep": {"duration_seconds": 27000, "quality": "good"},
         "steps": {"count": 8200},
         "exercises": [{"type": "run", "duration_seconds": 1800}]}

    Any part may be missing, and days without data are simply absent.
    Connection failures propagate to the caller; sources do not retry.
    """

    async def get_daily_records(
        self, user_id: str, start: date, end: date
    ) -> list[dict[str, Any]]:
        ...

    @property
    def data_source(self) -> str:
        """Label for the source: 'stored', 'mock', ..."""
        ...


@runtime_checkable
class Messenger(Protocol):
    """Fire-and-forget messaging; the engine never awaits delivery."""

    def send(
        self, user_id: str, message: str, *, kind: str, related_id: str | None = None
    ) -> None:
        ...

    def open_channel(
        self, requester_id: str, buddy_id: str, *, related_id: str | None = None
    ) -> None:
        ...
