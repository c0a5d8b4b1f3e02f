"""Shared test fixtures for MindMate wellbeing tests."""

from __future__ import annotations

import asyncio
import sys
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("POLICY_FILE", "")
    monkeypatch.setenv("HEALTH_DATA_SOURCE", "stored")
    monkeypatch.setenv("PRIVILEGED_USER_IDS", "[]")
    monkeypatch.setenv("ALLOW_SELF_TIMER_RESET", "false")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from mindmate.core.storage.models import Activity, CheckIn, MetricSample, Mood  # noqa: E402
from mindmate.domains.wellbeing.domain_logic.policy import AnalysisPolicy  # noqa: E402

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMessenger:
    """Records messages and channel openings; can be told to fail for some users."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.channels: list[tuple[str, str, str | None]] = []
        self.fail_for = fail_for or set()

    def send(self, user_id: str, message: str, *, kind: str, related_id: str | None = None) -> None:
        if user_id in self.fail_for:
            raise ConnectionError(f"push gateway unavailable for {user_id}")
        self.sent.append({"user_id": user_id, "message": message, "kind": kind,
                          "related_id": related_id})

    def open_channel(
        self, requester_id: str, buddy_id: str, *, related_id: str | None = None
    ) -> None:
        self.channels.append((requester_id, buddy_id, related_id))


class FakeHealthSource:
    """In-memory health data source keyed by user, with failure injection."""

    def __init__(self) -> None:
        self.records: dict[str, list[dict[str, Any]]] = {}
        self.fail = False
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def add(self, user_id: str, record: dict[str, Any]) -> None:
        self.records.setdefault(user_id, []).append(record)

    async def get_daily_records(self, user_id: str, start: date, end: date) -> list[dict[str, Any]]:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.fail:
                raise ConnectionError("health data source unreachable")
            return [
                r for r in self.records.get(user_id, [])
                if start <= date.fromisoformat(r["date"]) <= end
            ]
        finally:
            self.in_flight -= 1

    @property
    def data_source(self) -> str:
        return "fake"


def daily_record(
    day: date,
    *,
    sleep_hours: float | None = None,
    quality: str | None = None,
    steps: int | None = None,
    exercise_minutes: float | None = None,
) -> dict[str, Any]:
    """Build a raw per-day record in the health-source shape."""
    record: dict[str, Any] = {"date": day.isoformat()}
    if sleep_hours is not None or quality is not None:
        record["sleep"] = {}
        if sleep_hours is not None:
            record["sleep"]["duration_seconds"] = sleep_hours * 3600
        if quality is not None:
            record["sleep"]["quality"] = quality
    if steps is not None:
        record["steps"] = {"count": steps}
    if exercise_minutes is not None:
        record["exercises"] = [{"type": "run", "duration_seconds": exercise_minutes * 60}]
    return record


def make_check_in(
    user_id: str,
    when: datetime,
    score: int,
    activities: tuple[Activity, ...] = (),
    notes: str | None = None,
) -> CheckIn:
    labels = ("Very Low", "Low", "Neutral", "Good", "Very Good")
    return CheckIn(
        user_id=user_id,
        timestamp=when,
        mood=Mood(score=score, label=labels[score - 1]),
        activities=activities,
        notes=notes,
    )


def make_sample(user_id: str, day: date, **fields: Any) -> MetricSample:
    return MetricSample(user_id=user_id, date=day, **fields)


BASELINE_SLEEP = [7.0, 8.0, 7.5, 7.0, 8.0, 7.5, 7.5]


def noon(day: date) -> datetime:
    return datetime.combine(day, time(12), tzinfo=timezone.utc)


def seed_baseline(health_source, repository, user_id="u1", mood=4):
    """Seven days (today-9 .. today-3) averaging 7.5h sleep with a steady mood."""
    for i, hours in enumerate(BASELINE_SLEEP):
        day = TODAY - timedelta(days=9 - i)
        health_source.add(user_id, daily_record(day, sleep_hours=hours))
        repository.save_check_in(make_check_in(user_id, noon(day), mood))


def seed_recent(health_source, repository, moods, user_id="u1", sleep_hours=4.0):
    """The recent window (today-2 .. today), one mood per day."""
    for offset, mood in zip((2, 1, 0), moods):
        day = TODAY - timedelta(days=offset)
        health_source.add(user_id, daily_record(day, sleep_hours=sleep_hours))
        if mood is not None:
            repository.save_check_in(make_check_in(user_id, noon(day), mood))


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def wellbeing_db():
    """Create an in-memory MindMateDatabase for testing."""
    from mindmate.core.storage.database import MindMateDatabase

    db = MindMateDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from mindmate.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def repository(wellbeing_db, field_encryptor):
    """Create a WellbeingRepository backed by in-memory SQLite."""
    from mindmate.core.storage.repository import WellbeingRepository

    return WellbeingRepository(wellbeing_db, field_encryptor)


@pytest.fixture
def decisions(wellbeing_db):
    from mindmate.core.storage.decision_repository import DecisionRepository

    return DecisionRepository(wellbeing_db)


@pytest.fixture
def audit_logger(wellbeing_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from mindmate.core.audit.logger import AuditLogger

    return AuditLogger(wellbeing_db)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def policy() -> AnalysisPolicy:
    return AnalysisPolicy()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def health_source() -> FakeHealthSource:
    return FakeHealthSource()


@pytest.fixture
def buddies() -> dict[str, list[str]]:
    """Mutable buddy directory; tests add entries as needed."""
    return {}


@pytest.fixture
def service(
    wellbeing_db, repository, decisions, health_source, messenger, policy,
    audit_logger, clock, buddies,
):
    """A WellbeingService wired entirely to in-memory fakes."""
    from mindmate.domains.wellbeing.domain_logic.service import WellbeingService

    return WellbeingService(
        database=wellbeing_db,
        repository=repository,
        decisions=decisions,
        health_source=health_source,
        messenger=messenger,
        policy=policy,
        audit=audit_logger,
        clock=clock,
        buddy_directory=lambda user_id: buddies.get(user_id, []),
        privileged_user_ids={"support-ops"},
    )
