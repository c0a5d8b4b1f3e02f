"""Periodic analysis scheduler built on asyncio tasks.

The engine only exposes ``analyze_recent``; this module decides cadence.
One task per scheduled user; users run concurrently, and the service's
per-user lock keeps on-demand and scheduled runs for one user apart.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from mindmate.core.storage.models import AnalysisResult
from mindmate.domains.wellbeing.domain_logic.errors import InsufficientDataError
from mindmate.domains.wellbeing.domain_logic.service import WellbeingService

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    task: asyncio.Task
    stop: asyncio.Event = field(default_factory=asyncio.Event)


class AnalysisScheduler:
    """Runs ``analyze_recent`` for each scheduled user every *interval_seconds*.

    Cancelling a user removes them from the schedule but never interrupts a
    run already in progress: that run completes and its result is stored.

    Usage::

        scheduler = AnalysisScheduler(service, interval_seconds=3600)
        scheduler.schedule("u1")
        ...
        await scheduler.cancel("u1")
        await scheduler.shutdown()
    """

    def __init__(self, service: WellbeingService, *, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._service = service
        self._interval = interval_seconds
        self._entries: dict[str, _Entry] = {}

    @property
    def scheduled_users(self) -> list[str]:
        return sorted(self._entries)

    def is_scheduled(self, user_id: str) -> bool:
        return user_id in self._entries

    def schedule(self, user_id: str) -> bool:
        """Start periodic evaluation for *user_id*. Must be called inside a running loop.

        Returns:
            False if the user was already scheduled.
        """
        if user_id in self._entries:
            return False
        stop = asyncio.Event()
        task = asyncio.create_task(self._loop(user_id, stop), name=f"analysis:{user_id}")
        self._entries[user_id] = _Entry(task=task, stop=stop)
        logger.info("Scheduled periodic analysis every %.0fs", self._interval)
        return True

    async def cancel(self, user_id: str) -> bool:
        """Remove *user_id* from the schedule, letting any in-flight run finish.

        Returns:
            False if the user was not scheduled.
        """
        entry = self._entries.pop(user_id, None)
        if entry is None:
            return False
        entry.stop.set()
        await entry.task
        logger.info("Cancelled periodic analysis")
        return True

    async def shutdown(self) -> None:
        for user_id in list(self._entries):
            await self.cancel(user_id)

    async def run_once(self, user_id: str) -> AnalysisResult | None:
        """One scheduled evaluation; expected and unexpected failures are logged, not raised."""
        try:
            return await self._service.analyze_recent(user_id, trigger="scheduled")
        except InsufficientDataError as exc:
            logger.info("Scheduled analysis skipped: %s", exc)
        except Exception:
            logger.exception("Scheduled analysis failed")
        return None

    async def run_all(self, user_ids: list[str]) -> dict[str, AnalysisResult | None]:
        """Evaluate several users concurrently, one task each."""
        results = await asyncio.gather(*(self.run_once(u) for u in user_ids))
        return dict(zip(user_ids, results))

    async def _loop(self, user_id: str, stop: asyncio.Event) -> None:
        while not stop.is_set():
            await self.run_once(user_id)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
