"""MCP tools for wellbeing analysis, baselines and periodic scheduling.

``analyze_recent`` is the engine's single evaluable unit. Scheduling only
decides when it runs.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from mindmate.domains.wellbeing.domain_logic.errors import WellbeingError
from mindmate.domains.wellbeing.domain_logic.metric_models import METRIC_NAMES
from mindmate.domains.wellbeing.tools.results import (
    NOT_ENOUGH_DATA_NOTE,
    error_result,
    record_call,
    tagged,
)

if TYPE_CHECKING:
    from mindmate.core.audit.logger import AuditLogger
    from mindmate.domains.wellbeing.domain_logic.scheduler import AnalysisScheduler
    from mindmate.domains.wellbeing.domain_logic.service import WellbeingService

logger = logging.getLogger(__name__)


def register_analysis_tools(
    mcp: FastMCP,
    service: WellbeingService,
    scheduler: AnalysisScheduler,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register analysis, baseline and scheduling tools on the MCP server."""

    @mcp.tool
    async def analyze_recent(ctx: Context, user_id: str) -> str:
        """Evaluate a user's recent days against their own historical baseline.

        Returns a status (stable, declining or critical), a confidence
        score, the per-metric comparison and whether peer support was
        requested. This is a behavioral-trend signal, not a diagnosis.

        Args:
            user_id: Authenticated user to evaluate.
        """
        start_time = time.monotonic()
        try:
            result = await service.analyze_recent(user_id)
        except WellbeingError as exc:
            record_call(audit_logger, "analyze_recent", {"user_id": user_id},
                        start_time=start_time, user_id=user_id, status=exc.status)
            return error_result(exc)
        except Exception as exc:
            record_call(audit_logger, "analyze_recent", {"user_id": user_id},
                        start_time=start_time, user_id=user_id, status="failure",
                        error_type=type(exc).__name__)
            raise

        request = service.open_support_request_for(user_id) if result.needs_support else None
        record_call(audit_logger, "analyze_recent", {"user_id": user_id},
                    start_time=start_time, user_id=user_id, analysis_id=result.id)

        payload = result.to_dict()
        payload["support_request"] = request.to_dict() if request else None
        if not result.baseline_comparison:
            payload["note"] = NOT_ENOUGH_DATA_NOTE
        return tagged("ok", result=payload)

    @mcp.tool
    async def establish_baseline(ctx: Context, user_id: str) -> str:
        """Recompute a user's baselines now over the trailing baseline window.

        Metrics without enough history keep their previous baseline.

        Args:
            user_id: Authenticated user.
        """
        start_time = time.monotonic()
        try:
            baselines = await service.establish_baseline(user_id)
        except WellbeingError as exc:
            record_call(audit_logger, "establish_baseline", {"user_id": user_id},
                        start_time=start_time, user_id=user_id, status=exc.status)
            return error_result(exc)

        record_call(audit_logger, "establish_baseline", {"user_id": user_id},
                    start_time=start_time, user_id=user_id)
        return tagged(
            "ok",
            baselines={m: b.to_dict() for m, b in baselines.items()},
            missing_metrics=[m for m in METRIC_NAMES if m not in baselines],
            min_samples=service.policy.min_baseline_samples,
        )

    @mcp.tool
    async def get_baseline(ctx: Context, user_id: str, metric: str = "") -> str:
        """Show a user's active baselines, or the history of one metric.

        Args:
            user_id: Authenticated user.
            metric: Optional metric name (e.g. 'sleep_hours') for its baseline history.
        """
        if metric:
            try:
                history = service.baseline_history(user_id, metric)
            except WellbeingError as exc:
                return error_result(exc)
            return tagged("ok", metric=metric, history=[b.to_dict() for b in history])

        baselines = service.get_active_baselines(user_id)
        if not baselines:
            return tagged("insufficient_baseline", message="No baseline yet.",
                          note=NOT_ENOUGH_DATA_NOTE)
        return tagged("ok", baselines={m: b.to_dict() for m, b in baselines.items()})

    @mcp.tool
    async def analysis_history(
        ctx: Context,
        user_id: str,
        limit: int = 10,
        status: str = "",
    ) -> str:
        """List past analysis results, newest first.

        Args:
            user_id: Authenticated user.
            limit: Maximum number of results (default: 10).
            status: Optional filter: 'stable', 'declining' or 'critical'.
        """
        if status and status not in ("stable", "declining", "critical"):
            return tagged("invalid", message=f"Unknown status filter: {status}")
        results = service.analysis_history(user_id, limit=limit, status=status or None)
        return tagged("ok", count=len(results), results=[r.to_dict() for r in results])

    @mcp.tool
    async def analysis_stats(ctx: Context, user_id: str, days: int = 30) -> str:
        """Summarize recent analyses and check-ins.

        Args:
            user_id: Authenticated user.
            days: Number of days to look back (default: 30).
        """
        return tagged("ok", stats=service.analysis_stats(user_id, days=days))

    @mcp.tool
    async def schedule_periodic_analysis(ctx: Context, user_id: str) -> str:
        """Evaluate this user automatically on the server's analysis cadence.

        Args:
            user_id: Authenticated user who opted in.
        """
        created = scheduler.schedule(user_id)
        return tagged(
            "scheduled" if created else "already_scheduled",
            user_id=user_id,
            scheduled_users=len(scheduler.scheduled_users),
        )

    @mcp.tool
    async def cancel_periodic_analysis(ctx: Context, user_id: str) -> str:
        """Stop automatic evaluation for a user (opt-out or account deletion).

        A run already in progress completes and its result is kept.

        Args:
            user_id: Authenticated user.
        """
        cancelled = await scheduler.cancel(user_id)
        return tagged("cancelled" if cancelled else "not_scheduled", user_id=user_id)
