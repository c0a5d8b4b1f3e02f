"""MCP tools for mood check-ins and the check-in cooldown."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from mindmate.core.storage.models import iso
from mindmate.domains.wellbeing.domain_logic.errors import WellbeingError
from mindmate.domains.wellbeing.tools.results import error_result, record_call, tagged

if TYPE_CHECKING:
    from mindmate.core.audit.logger import AuditLogger
    from mindmate.domains.wellbeing.domain_logic.service import WellbeingService

logger = logging.getLogger(__name__)


def register_check_in_tools(
    mcp: FastMCP,
    service: WellbeingService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register check-in tools on the MCP server."""

    @mcp.tool
    async def submit_check_in(
        ctx: Context,
        user_id: str,
        mood_score: int,
        mood_label: str = "",
        mood_description: str = "",
        activities: list[dict[str, Any]] | None = None,
        notes: str = "",
    ) -> str:
        """Record how the user is feeling right now.

        One check-in is allowed per cooldown period; a second attempt
        returns ``cooldown_active`` with the time the next one is allowed.

        Args:
            user_id: Authenticated user.
            mood_score: 1 (Very Low) to 5 (Very Good).
            mood_label: Optional label; derived from the score when empty.
            mood_description: Optional free-text description (stored encrypted).
            activities: Optional list of {"type": "Sleep|Exercise|Social|Work",
                "level": "low|moderate|high"}.
            notes: Optional notes (stored encrypted).
        """
        start_time = time.monotonic()
        mood: dict[str, Any] = {"score": mood_score}
        if mood_label:
            mood["label"] = mood_label
        if mood_description:
            mood["description"] = mood_description
        payload: dict[str, Any] = {"mood": mood, "activities": activities or []}
        if notes:
            payload["notes"] = notes

        try:
            check_in = service.submit_check_in(user_id, payload)
        except WellbeingError as exc:
            record_call(audit_logger, "submit_check_in", {"user_id": user_id},
                        start_time=start_time, user_id=user_id, status=exc.status)
            return error_result(exc)

        record_call(audit_logger, "submit_check_in", {"user_id": user_id},
                    start_time=start_time, user_id=user_id)
        status = service.get_check_in_status(user_id)
        return tagged(
            "saved",
            check_in=check_in.to_dict(),
            next_check_in_time=iso(status.next_check_in_time),
        )

    @mcp.tool
    async def check_in_status(ctx: Context, user_id: str) -> str:
        """Whether the user can check in now, and if not, when.

        Args:
            user_id: Authenticated user.
        """
        return tagged("ok", **service.get_check_in_status(user_id).to_dict())

    @mcp.tool
    async def reset_check_in_timer(ctx: Context, user_id: str, requested_by: str) -> str:
        """Clear a user's check-in cooldown. Support tooling only.

        Args:
            user_id: User whose timer to reset.
            requested_by: Authenticated caller; must be privileged.
        """
        start_time = time.monotonic()
        try:
            service.reset_check_in_timer(user_id, requested_by=requested_by)
        except WellbeingError as exc:
            record_call(audit_logger, "reset_check_in_timer", {"user_id": user_id},
                        start_time=start_time, user_id=requested_by, status=exc.status)
            return error_result(exc)

        record_call(audit_logger, "reset_check_in_timer", {"user_id": user_id},
                    start_time=start_time, user_id=requested_by)
        return tagged("reset", **service.get_check_in_status(user_id).to_dict())

    @mcp.tool
    async def recent_check_ins(ctx: Context, user_id: str, days: int = 7) -> str:
        """List the user's own check-ins from the last few days, newest first.

        Args:
            user_id: Authenticated user.
            days: Number of days to look back (default: 7).
        """
        check_ins = service.recent_check_ins(user_id, days=days)
        return tagged("ok", count=len(check_ins), check_ins=[c.to_dict() for c in check_ins])
