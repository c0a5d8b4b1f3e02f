"""MCP tools for viewing the audit trail.

The audit log is PHI-free: tool inputs and user IDs are hashed, and
decisions record only status, confidence and which metrics changed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from mindmate.core.storage.models import iso

if TYPE_CHECKING:
    from mindmate.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def register_audit_tools(
    mcp: FastMCP,
    audit_logger: AuditLogger,
) -> None:
    """Register audit trail tools on the MCP server."""

    @mcp.tool
    async def audit_summary(
        ctx: Context,
        days: int = 30,
    ) -> str:
        """View recent tool usage, analysis decisions and timer resets.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = iso(datetime.now(timezone.utc) - timedelta(days=days))

        recent_events = audit_logger.get_events(since=since, limit=20)
        display_events = []
        for event in recent_events:
            display_events.append({
                "timestamp": event.get("timestamp"),
                "action": event.get("action"),
                "tool_name": event.get("tool_name"),
                "status": event.get("status"),
                "duration_ms": event.get("duration_ms"),
            })

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": audit_logger.count_events(since=since),
            "analysis_decisions": audit_logger.count_events(
                action="analysis_decision", since=since
            ),
            "timer_resets": audit_logger.count_events(action="timer_reset", since=since),
            "recent_events": display_events,
            "note": "This audit trail contains no wellbeing data, only hashed references.",
        }, indent=2)
