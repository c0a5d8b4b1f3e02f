"""Support request broker: open, list, claim and expire peer-support requests.

Lifecycle: ``open -> claimed`` on a buddy's claim, ``open -> expired`` once
the TTL passes unclaimed. Both are terminal. A user has at most one open
request; asking again while one is open returns the existing request.
"""

from __future__ import annotations

import logging
from datetime import datetime

from mindmate.core.storage.decision_repository import DecisionRepository
from mindmate.core.storage.models import AnalysisResult, SupportRequest
from mindmate.domains.wellbeing.connectors import BuddyDirectory, Messenger, no_buddies
from mindmate.domains.wellbeing.domain_logic.errors import (
    AlreadyClaimedError,
    AlreadyExpiredError,
    SupportRequestNotFoundError,
    ValidationError,
)
from mindmate.domains.wellbeing.domain_logic.policy import AnalysisPolicy

logger = logging.getLogger(__name__)

BUDDY_MESSAGE = "Someone in your circle could use a check-in. Open MindMate to reach out."
CLAIMED_MESSAGE = "A buddy is reaching out to you. A direct conversation is now open."


class SupportRequestBroker:
    """Coordinates support requests between a requester and their buddies.

    Usage::

        broker = SupportRequestBroker(decisions, messenger, policy, buddy_directory=lookup)
        request = broker.open_for(result, now=now)
        broker.claim(request.id, "buddy-1", now=now)
    """

    def __init__(
        self,
        decisions: DecisionRepository,
        messenger: Messenger,
        policy: AnalysisPolicy,
        *,
        buddy_directory: BuddyDirectory = no_buddies,
    ) -> None:
        self._decisions = decisions
        self._messenger = messenger
        self._policy = policy
        self._buddies = buddy_directory

    def open_for(self, result: AnalysisResult, *, now: datetime) -> SupportRequest | None:
        """Open (or return the existing) request for a result that needs support."""
        if not result.needs_support:
            return None

        request, created = self._decisions.open_support_request(
            result.user_id,
            result.id,
            result.status,
            now=now,
            stale_before=now - self._policy.support_request_ttl,
        )
        if created:
            logger.info(
                "Opened support request %s (status=%s)", request.id, request.mental_health_status
            )
            self._notify_buddies(request)
        else:
            logger.info("Support request %s already open; not duplicating", request.id)
        return request

    def _notify_buddies(self, request: SupportRequest) -> None:
        try:
            buddies = [b for b in self._buddies(request.requester_id) if b != request.requester_id]
        except Exception:
            logger.exception("Buddy lookup failed for support request %s", request.id)
            return

        if not buddies:
            logger.info("No buddies on file; request %s is listed for the community", request.id)
            return

        for buddy_id in buddies:
            try:
                self._messenger.send(
                    buddy_id, BUDDY_MESSAGE, kind="support_request", related_id=request.id
                )
            except Exception:
                logger.exception("Failed to notify a buddy about request %s", request.id)

    def list_open(
        self, *, now: datetime, viewer_id: str | None = None
    ) -> list[SupportRequest]:
        """Open requests still within their TTL, oldest first.

        The viewer's own request is left out when *viewer_id* is given.
        """
        requests = self._decisions.list_support_requests(
            state="open", created_after=now - self._policy.support_request_ttl
        )
        if viewer_id:
            requests = [r for r in requests if r.requester_id != viewer_id]
        return requests

    def claim(self, request_id: str, buddy_id: str, *, now: datetime) -> SupportRequest:
        """Claim an open request for *buddy_id* and open a direct channel.

        Raises:
            SupportRequestNotFoundError: No such request.
            ValidationError: The requester tried to claim their own request.
            AlreadyClaimedError: Someone claimed it first; ``claimed_by`` is unchanged.
            AlreadyExpiredError: The request expired, or its TTL has just passed.
        """
        existing = self._decisions.get_support_request(request_id)
        if existing is None:
            raise SupportRequestNotFoundError(request_id)
        if existing.requester_id == buddy_id:
            raise ValidationError("A user cannot claim their own support request")

        claimed = self._decisions.claim_support_request(
            request_id,
            buddy_id,
            now=now,
            created_after=now - self._policy.support_request_ttl,
        )
        current = self._decisions.get_support_request(request_id)

        if not claimed:
            if current.state == "claimed":
                logger.info("Support request %s was already claimed", request_id)
                raise AlreadyClaimedError(request_id, current.claimed_by)
            if current.state == "open":
                self._decisions.expire_support_request(request_id, now=now)
                logger.info("Support request %s expired before it could be claimed", request_id)
            raise AlreadyExpiredError(request_id)

        logger.info("Support request %s claimed", request_id)
        try:
            self._messenger.open_channel(current.requester_id, buddy_id, related_id=request_id)
        except Exception:
            logger.exception("Failed to open direct channel for request %s", request_id)
        try:
            self._messenger.send(
                current.requester_id, CLAIMED_MESSAGE, kind="support_claimed", related_id=request_id
            )
        except Exception:
            logger.exception("Failed to notify requester about claim of %s", request_id)
        return current

    def expire(self, request_id: str, *, now: datetime) -> SupportRequest:
        """Expire a request whose TTL has elapsed.

        Idempotent: a claimed or expired request is returned unchanged, as
        is an open request still within its TTL.

        Raises:
            SupportRequestNotFoundError: No such request.
        """
        request = self._decisions.get_support_request(request_id)
        if request is None:
            raise SupportRequestNotFoundError(request_id)
        if request.state != "open":
            return request
        if request.created_at > now - self._policy.support_request_ttl:
            return request

        if self._decisions.expire_support_request(request_id, now=now):
            logger.info("Support request %s expired", request_id)
        return self._decisions.get_support_request(request_id)

    def expire_stale(self, *, now: datetime) -> list[str]:
        """Expire every open request past its TTL. Returns the expired IDs."""
        expired = self._decisions.expire_open_before(
            now - self._policy.support_request_ttl, now=now
        )
        if expired:
            logger.info("Expired %d stale support request(s)", len(expired))
        return expired
