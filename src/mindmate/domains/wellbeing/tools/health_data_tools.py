"""MCP tools for ingesting and retaining raw per-day health records.

Raw records are stored encrypted and only kept as long as the retention
window needs them; derived samples and decisions stay for auditing.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from mindmate.domains.wellbeing.domain_logic.errors import WellbeingError
from mindmate.domains.wellbeing.tools.results import error_result, record_call, tagged

if TYPE_CHECKING:
    from mindmate.core.audit.logger import AuditLogger
    from mindmate.domains.wellbeing.domain_logic.service import WellbeingService

logger = logging.getLogger(__name__)


def register_health_data_tools(
    mcp: FastMCP,
    service: WellbeingService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register health data ingestion and retention tools on the MCP server."""

    @mcp.tool
    async def sync_health_data(
        ctx: Context,
        user_id: str,
        records: list[dict[str, Any]],
        source: str = "manual",
    ) -> str:
        """Store raw per-day sleep, step and exercise summaries.

        Each record: {"date": "YYYY-MM-DD", "sleep": {"duration_seconds",
        "quality"}, "steps": {"count"}, "exercises": [{"type",
        "duration_seconds"}]}; every part is optional. A day sent again
        from the same source replaces the earlier one. If any record is
        malformed nothing is stored.

        Args:
            user_id: Authenticated user.
            records: Per-day records.
            source: Source label (e.g. 'manual', 'apple_health').
        """
        start_time = time.monotonic()
        try:
            stored = service.sync_health_data(user_id, records, source=source)
        except WellbeingError as exc:
            record_call(audit_logger, "sync_health_data", {"user_id": user_id, "source": source},
                        start_time=start_time, user_id=user_id, status=exc.status)
            return error_result(exc)

        record_call(audit_logger, "sync_health_data", {"user_id": user_id, "source": source},
                    start_time=start_time, user_id=user_id)
        return tagged("saved", records_stored=stored, source=source)

    @mcp.tool
    async def purge_health_records(ctx: Context, older_than_days: int = 120) -> str:
        """Delete raw health records older than a number of days.

        Args:
            older_than_days: Delete records older than this many days (default: 120).
        """
        try:
            count = service.purge_health_records(older_than_days)
        except WellbeingError as exc:
            return error_result(exc)
        return tagged("purged", records_deleted=count, older_than_days=older_than_days)
