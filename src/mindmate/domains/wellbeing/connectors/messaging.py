"""Outbox messenger: records notifications and channel openings for delivery elsewhere."""

from __future__ import annotations

import logging

from mindmate.core.storage.repository import WellbeingRepository

logger = logging.getLogger(__name__)


class OutboxMessenger:
    """Messenger backed by the ``notifications`` and ``direct_channels`` tables.

    Push delivery is out of scope; an external worker drains the outbox.
    """

    def __init__(self, repository: WellbeingRepository) -> None:
        self._repo = repository

    def send(
        self, user_id: str, message: str, *, kind: str, related_id: str | None = None
    ) -> None:
        self._repo.add_notification(user_id, message, kind=kind, related_id=related_id)
        logger.debug("Queued %s notification", kind)

    def open_channel(
        self, requester_id: str, buddy_id: str, *, related_id: str | None = None
    ) -> None:
        self._repo.add_direct_channel(requester_id, buddy_id, related_id=related_id)
        logger.debug("Queued direct channel opening")
