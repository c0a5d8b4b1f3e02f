"""Tests for the check-in cooldown state machine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from mindmate.domains.wellbeing.domain_logic.errors import (
    CooldownActiveError,
    PermissionDeniedError,
)
from mindmate.domains.wellbeing.domain_logic.rate_limiter import CheckInRateLimiter


@pytest.fixture
def limiter(repository, policy) -> CheckInRateLimiter:
    return CheckInRateLimiter(repository, policy, privileged_user_ids={"ops"})


class TestAcquire:
    def test_new_user_is_available(self, limiter):
        status = limiter.status("u1", NOW)
        assert status.can_check_in
        assert status.next_check_in_time is None

    def test_acquire_starts_cooldown(self, limiter):
        until = limiter.acquire("u1", NOW)
        assert until == NOW + timedelta(hours=4)
        status = limiter.status("u1", NOW + timedelta(hours=1))
        assert not status.can_check_in
        assert status.next_check_in_time == until

    def test_second_acquire_refused_with_next_time(self, limiter):
        limiter.acquire("u1", NOW)
        with pytest.raises(CooldownActiveError) as exc_info:
            limiter.acquire("u1", NOW + timedelta(hours=3, minutes=59))
        assert exc_info.value.next_available_at == NOW + timedelta(hours=4)

    def test_available_again_at_cooldown_end(self, limiter):
        limiter.acquire("u1", NOW)
        later = NOW + timedelta(hours=4)
        assert limiter.status("u1", later).can_check_in
        assert limiter.acquire("u1", later) == later + timedelta(hours=4)

    def test_users_are_independent(self, limiter):
        limiter.acquire("u1", NOW)
        limiter.acquire("u2", NOW)

    def test_status_to_dict(self, limiter):
        limiter.acquire("u1", NOW)
        data = limiter.status("u1", NOW).to_dict()
        assert data["can_check_in"] is False
        assert data["next_check_in_time"].startswith("2026-10-19T16:00:00")


class TestReset:
    def test_privileged_reset_clears_cooldown(self, limiter, repository):
        limiter.acquire("u1", NOW)
        timer = limiter.reset("u1", requested_by="ops", now=NOW + timedelta(minutes=1))
        assert timer.cooldown_until is None
        assert timer.last_check_in_at == NOW
        assert limiter.status("u1", NOW + timedelta(minutes=1)).can_check_in

    def test_self_reset_refused_by_default(self, limiter):
        limiter.acquire("u1", NOW)
        with pytest.raises(PermissionDeniedError):
            limiter.reset("u1", requested_by="u1", now=NOW)
        assert not limiter.status("u1", NOW).can_check_in

    def test_self_reset_when_allowed(self, repository, policy):
        limiter = CheckInRateLimiter(repository, policy, allow_self_reset=True)
        limiter.acquire("u1", NOW)
        limiter.reset("u1", requested_by="u1", now=NOW)
        assert limiter.can_reset("u1", "u1")
        assert not limiter.can_reset("u1", "u2")
        assert limiter.status("u1", NOW).can_check_in
