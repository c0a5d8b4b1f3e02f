"""Audit logger: PHI-free record of tool calls and engine decisions.

Every tool invocation, analysis decision, timer reset and data deletion is
written to the ``audit_log`` table without raw wellbeing data:

* ``tool_input_hash`` is the SHA-256 of the canonical JSON input.
* ``subject_hash`` is the SHA-256 of the user ID the event concerns.
* decisions record status, confidence and which metrics were significant,
  never the metric values themselves.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from mindmate.core.storage.database import MindMateDatabase
from mindmate.core.storage.models import AnalysisResult, iso

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


def hash_subject(user_id: str | None) -> str | None:
    if not user_id:
        return None
    return hashlib.sha256(user_id.encode()).hexdigest()


# ---------------------------------------------------------------------------
# AuditEvent dataclass
# ---------------------------------------------------------------------------

@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'analysis_decision' | 'timer_reset' | 'data_delete'
    tool_name: str = ""
    tool_input_hash: str = ""
    subject_hash: str | None = None
    analysis_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure' | tagged outcome
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# AuditLogger
# ---------------------------------------------------------------------------

class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes outside a transaction are committed immediately so no audit
    entry is lost on crash.

    Usage::

        audit = AuditLogger(db)
        audit.log_tool_call("analyze_recent", {"user_id": "u1"}, user_id="u1")
        audit.log_decision(result)
    """

    def __init__(self, database: MindMateDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its ID (empty string if the write failed)."""
        event_id = str(uuid.uuid4())
        now = iso(datetime.now(timezone.utc))

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), sort_keys=True)
            if event.metadata
            else None
        )

        try:
            self._db.connection.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, tool_name, tool_input_hash, subject_hash,
                    analysis_id, duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.tool_name or None,
                    event.tool_input_hash or None,
                    event.subject_hash,
                    event.analysis_id,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
        except Exception:
            logger.exception("Failed to write audit event; event lost")
            return ""

        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        user_id: str | None = None,
        analysis_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper for logging a tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Tool input data (hashed, never stored raw).
            user_id: User the call acted for (hashed).
            analysis_id: ID of any analysis result produced.
            duration_ms: Tool execution duration in milliseconds.
            status: 'success', 'failure' or the tagged result status.
            error_type: Exception class name on failure.
            metadata: Additional non-PHI metadata.
        """
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            subject_hash=hash_subject(user_id),
            analysis_id=analysis_id,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_decision(self, result: AnalysisResult, *, trigger: str = "on_demand") -> str:
        """Record the outcome of an analysis run."""
        return self.log_event(AuditEvent(
            action="analysis_decision",
            subject_hash=hash_subject(result.user_id),
            analysis_id=result.id,
            status=result.status,
            metadata={
                "confidence_score": round(result.confidence_score, 4),
                "needs_support": result.needs_support,
                "significant_changes": list(result.significant_changes),
                "window_days": result.window_days,
                "trigger": trigger,
            },
        ))

    def log_timer_reset(self, user_id: str, *, requested_by: str) -> str:
        """Record an explicit check-in cooldown reset (privileged action)."""
        return self.log_event(AuditEvent(
            action="timer_reset",
            subject_hash=hash_subject(user_id),
            metadata={
                "requested_by_hash": hash_subject(requested_by),
                "self_reset": user_id == requested_by,
            },
        ))

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a data deletion event."""
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        user_id: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters, newest first.

        Args:
            action: Filter by action type.
            tool_name: Filter by tool name.
            user_id: Filter by subject (matched through its hash).
            since: ISO 8601 timestamp lower bound.
            limit: Maximum events to return.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if user_id:
            conditions.append("subject_hash = ?")
            params.append(hash_subject(user_id))
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None, since: str | None = None) -> int:
        """Count audit events, optionally by action and/or since a timestamp."""
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()
        return row[0]
