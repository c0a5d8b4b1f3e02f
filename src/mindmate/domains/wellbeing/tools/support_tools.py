"""MCP tools for the peer-support workflow.

Claim conflicts (already claimed, already expired) are reported as tagged
results, not failures: a buddy who lost the race just sees who won.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from mindmate.domains.wellbeing.domain_logic.errors import WellbeingError
from mindmate.domains.wellbeing.tools.results import error_result, record_call, tagged

if TYPE_CHECKING:
    from mindmate.core.audit.logger import AuditLogger
    from mindmate.domains.wellbeing.domain_logic.service import WellbeingService

logger = logging.getLogger(__name__)


def register_support_tools(
    mcp: FastMCP,
    service: WellbeingService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register support request tools on the MCP server."""

    @mcp.tool
    async def list_open_support_requests(ctx: Context, viewer_id: str = "") -> str:
        """List open support requests that a buddy could pick up, oldest first.

        Args:
            viewer_id: Optional authenticated viewer; their own request is hidden.
        """
        requests = service.list_open_support_requests(viewer_id=viewer_id or None)
        return tagged("ok", count=len(requests), requests=[r.to_dict() for r in requests])

    @mcp.tool
    async def claim_support_request(ctx: Context, request_id: str, buddy_id: str) -> str:
        """Claim an open support request and open a direct conversation.

        Args:
            request_id: The support request to claim.
            buddy_id: Authenticated buddy claiming it.
        """
        start_time = time.monotonic()
        try:
            request = service.claim_support_request(request_id, buddy_id)
        except WellbeingError as exc:
            record_call(audit_logger, "claim_support_request", {"request_id": request_id},
                        start_time=start_time, user_id=buddy_id, status=exc.status)
            return error_result(exc)

        record_call(audit_logger, "claim_support_request", {"request_id": request_id},
                    start_time=start_time, user_id=buddy_id)
        return tagged("claimed", request=request.to_dict())

    @mcp.tool
    async def expire_support_request(ctx: Context, request_id: str) -> str:
        """Expire a support request whose time-to-live has passed.

        Already claimed or expired requests are returned unchanged.

        Args:
            request_id: The support request to expire.
        """
        try:
            request = service.expire_support_request(request_id)
        except WellbeingError as exc:
            return error_result(exc)
        return tagged(request.state, request=request.to_dict())

    @mcp.tool
    async def expire_stale_support_requests(ctx: Context) -> str:
        """Expire every open support request that has outlived its time-to-live."""
        expired = service.expire_stale_support_requests()
        return tagged("ok", expired=len(expired), request_ids=expired)
