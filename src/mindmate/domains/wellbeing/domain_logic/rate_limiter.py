"""Check-in rate limiter: one check-in per cooldown window per user.

States per user are ``available`` and ``cooling``; the stored
``cooldown_until`` is the only state, so ``cooling -> available`` happens by
itself once the clock passes it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from mindmate.core.storage.models import CheckInTimer, iso
from mindmate.core.storage.repository import WellbeingRepository
from mindmate.domains.wellbeing.domain_logic.errors import (
    CooldownActiveError,
    PermissionDeniedError,
)
from mindmate.domains.wellbeing.domain_logic.policy import AnalysisPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckInStatus:
    can_check_in: bool
    next_check_in_time: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "can_check_in": self.can_check_in,
            "next_check_in_time": iso(self.next_check_in_time),
        }


class CheckInRateLimiter:
    """Atomic check-and-set of the per-user cooldown.

    Usage::

        limiter = CheckInRateLimiter(repo, policy, privileged_user_ids={"ops"})
        limiter.acquire("u1", now)              # raises CooldownActiveError if cooling
        limiter.reset("u1", requested_by="ops", now=now)
    """

    def __init__(
        self,
        repository: WellbeingRepository,
        policy: AnalysisPolicy,
        *,
        privileged_user_ids: set[str] | frozenset[str] = frozenset(),
        allow_self_reset: bool = False,
    ) -> None:
        self._repo = repository
        self._policy = policy
        self._privileged = frozenset(privileged_user_ids)
        self._allow_self_reset = allow_self_reset

    def status(self, user_id: str, now: datetime) -> CheckInStatus:
        timer = self._repo.get_timer(user_id)
        if timer is None or not timer.is_cooling(now):
            return CheckInStatus(can_check_in=True)
        return CheckInStatus(can_check_in=False, next_check_in_time=timer.cooldown_until)

    def acquire(self, user_id: str, now: datetime) -> datetime:
        """Start the cooldown for a check-in happening at *now*.

        Returns:
            The new ``cooldown_until``.

        Raises:
            CooldownActiveError: The timer is cooling; nothing is queued.
        """
        cooldown_until = now + self._policy.check_in_cooldown
        if self._repo.try_start_cooldown(user_id, now, cooldown_until):
            return cooldown_until

        timer = self._repo.get_timer(user_id)
        next_at = timer.cooldown_until if timer and timer.cooldown_until else now
        logger.warning("Check-in refused: cooldown active")
        raise CooldownActiveError(next_at)

    def can_reset(self, user_id: str, requested_by: str) -> bool:
        if requested_by in self._privileged:
            return True
        return self._allow_self_reset and requested_by == user_id

    def reset(self, user_id: str, *, requested_by: str, now: datetime) -> CheckInTimer:
        """Clear the cooldown immediately. Restricted to support tooling.

        Raises:
            PermissionDeniedError: *requested_by* may not reset this timer.
        """
        if not self.can_reset(user_id, requested_by):
            logger.warning("Timer reset refused: requester lacks privilege")
            raise PermissionDeniedError("Resetting the check-in timer requires privilege")
        timer = self._repo.clear_cooldown(user_id, now)
        logger.info("Check-in timer reset")
        return timer
