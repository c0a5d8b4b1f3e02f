"""Tagged JSON results shared by the wellbeing MCP tools.

Expected conditions come back as ``{"status": "<tag>", ...}`` so every
caller handles them explicitly; only unexpected failures raise.
"""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any

from mindmate.core.storage.models import iso
from mindmate.domains.wellbeing.domain_logic.errors import (
    AlreadyClaimedError,
    CooldownActiveError,
    InsufficientBaselineError,
    SupportRequestError,
    WellbeingError,
)

if TYPE_CHECKING:
    from mindmate.core.audit.logger import AuditLogger

NOT_ENOUGH_DATA_NOTE = (
    "Not enough data yet. Keep syncing health data and checking in; "
    "analysis becomes available after a few days."
)


def tagged(status: str, **payload: Any) -> str:
    return json.dumps({"status": status, **payload}, indent=2)


def error_result(exc: WellbeingError) -> str:
    """Render an expected engine condition as a tagged result."""
    payload: dict[str, Any] = {"message": str(exc)}
    if isinstance(exc, CooldownActiveError):
        payload["next_available_at"] = iso(exc.next_available_at)
    if isinstance(exc, SupportRequestError):
        payload["request_id"] = exc.request_id
    if isinstance(exc, AlreadyClaimedError):
        payload["claimed_by"] = exc.claimed_by
    if isinstance(exc, InsufficientBaselineError):
        payload["sample_count"] = exc.sample_count
        payload["required"] = exc.required
    if exc.status in ("insufficient_data", "insufficient_baseline"):
        payload["note"] = NOT_ENOUGH_DATA_NOTE
    return tagged(exc.status, **payload)


def record_call(
    audit_logger: AuditLogger | None,
    tool_name: str,
    tool_input: Any,
    *,
    start_time: float,
    user_id: str | None = None,
    status: str = "success",
    error_type: str | None = None,
    analysis_id: str | None = None,
) -> None:
    """Write the tool invocation to the audit trail, if one is configured."""
    if audit_logger is None:
        return
    audit_logger.log_tool_call(
        tool_name,
        tool_input,
        user_id=user_id,
        analysis_id=analysis_id,
        duration_ms=round((time.monotonic() - start_time) * 1000, 1),
        status=status,
        error_type=error_type,
    )
