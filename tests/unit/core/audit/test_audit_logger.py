"""Tests for the AuditLogger and related utilities."""

from __future__ import annotations

import json
from datetime import date

from conftest import NOW
from mindmate.core.audit.logger import AuditEvent, _hash_input, hash_subject
from mindmate.core.storage.models import AnalysisResult


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

class TestHashInput:
    def test_hashes_dict(self):
        h = _hash_input({"key": "value"})
        assert isinstance(h, str)
        assert len(h) == 64  # SHA-256 hex

    def test_order_independent(self):
        assert _hash_input({"z": 1, "a": 2}) == _hash_input({"a": 2, "z": 1})

    def test_non_serializable_returns_empty(self):
        assert _hash_input(object()) == ""

    def test_subject_hash(self):
        assert hash_subject("u1") == hash_subject("u1")
        assert hash_subject("u1") != "u1"
        assert hash_subject(None) is None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

class TestLogEvent:
    def test_log_event_returns_uuid(self, audit_logger):
        eid = audit_logger.log_event(AuditEvent(action="tool_invocation", tool_name="t"))
        assert len(eid) == 36

    def test_tool_call_stores_hashes_only(self, audit_logger):
        audit_logger.log_tool_call(
            "submit_check_in", {"user_id": "alice", "notes": "secret"},
            user_id="alice", duration_ms=3.2,
        )
        event = audit_logger.get_events()[0]
        raw = json.dumps(event)
        assert "alice" not in raw
        assert "secret" not in raw
        assert event["tool_input_hash"] == _hash_input({"user_id": "alice", "notes": "secret"})
        assert event["subject_hash"] == hash_subject("alice")

    def test_log_decision(self, audit_logger):
        result = AnalysisResult(
            id="a1", user_id="alice", status="declining", confidence_score=0.65,
            needs_support=True, baseline_comparison={},
            significant_changes=("sleep_hours",), evaluated_at=NOW, window_days=3,
            window_start=date(2026, 10, 17), window_end=date(2026, 10, 19),
        )
        audit_logger.log_decision(result, trigger="scheduled")
        event = audit_logger.get_events(action="analysis_decision")[0]
        assert event["analysis_id"] == "a1"
        assert event["status"] == "declining"
        metadata = json.loads(event["metadata_json"])
        assert metadata["trigger"] == "scheduled"
        assert metadata["significant_changes"] == ["sleep_hours"]

    def test_log_timer_reset(self, audit_logger):
        audit_logger.log_timer_reset("alice", requested_by="support-ops")
        event = audit_logger.get_events(action="timer_reset", user_id="alice")[0]
        assert json.loads(event["metadata_json"])["self_reset"] is False

    def test_log_data_delete(self, audit_logger):
        audit_logger.log_data_delete(tool_name="purge_health_records", count=4)
        event = audit_logger.get_events(action="data_delete")[0]
        assert json.loads(event["metadata_json"])["records_deleted"] == 4

    def test_write_failure_is_swallowed(self, audit_logger, wellbeing_db):
        wellbeing_db.close()
        assert audit_logger.log_event(AuditEvent(action="tool_invocation")) == ""


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestQueries:
    def test_count_by_action(self, audit_logger):
        audit_logger.log_tool_call("a")
        audit_logger.log_tool_call("b")
        audit_logger.log_timer_reset("u1", requested_by="u1")
        assert audit_logger.count_events() == 3
        assert audit_logger.count_events(action="timer_reset") == 1

    def test_filter_by_tool(self, audit_logger):
        audit_logger.log_tool_call("analyze_recent")
        audit_logger.log_tool_call("submit_check_in")
        events = audit_logger.get_events(tool_name="analyze_recent")
        assert [e["tool_name"] for e in events] == ["analyze_recent"]

    def test_since_filter(self, audit_logger):
        audit_logger.log_tool_call("a")
        assert audit_logger.count_events(since="2999-01-01T00:00:00+00:00") == 0
