"""Tests for DecisionRepository: baselines, analysis history, support requests."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from conftest import NOW
from mindmate.core.storage.models import AnalysisResult, Baseline, MetricComparison


def _baseline(metric: str = "sleep_hours", mean: float = 7.5, variance: float = 0.25) -> Baseline:
    return Baseline(
        user_id="u1",
        metric=metric,
        mean=mean,
        variance=variance,
        sample_count=10,
        window_start=date(2026, 9, 19),
        window_end=date(2026, 10, 16),
    )


def _result(result_id: str = "a1", user_id: str = "u1", status: str = "critical",
            evaluated_at=NOW) -> AnalysisResult:
    return AnalysisResult(
        id=result_id,
        user_id=user_id,
        status=status,
        confidence_score=0.8,
        needs_support=status == "critical",
        baseline_comparison={
            "sleep_hours": MetricComparison("sleep_hours", 4.0, 7.5, -3.5, -7.0, True),
        },
        significant_changes=("sleep_hours",),
        evaluated_at=evaluated_at,
        window_days=3,
        window_start=date(2026, 10, 17),
        window_end=date(2026, 10, 19),
    )


class TestBaselines:
    def test_swap_then_read_active(self, decisions):
        stored = decisions.swap_active_baselines("u1", [_baseline()], now=NOW)
        assert stored[0].id
        active = decisions.get_active_baselines("u1")
        assert active["sleep_hours"] == _baseline()

    def test_swap_replaces_previous_active(self, decisions):
        decisions.swap_active_baselines("u1", [_baseline(mean=7.5)], now=NOW)
        decisions.swap_active_baselines(
            "u1", [_baseline(mean=6.0)], now=NOW + timedelta(minutes=1)
        )
        active = decisions.get_active_baselines("u1")
        assert active["sleep_hours"].mean == 6.0
        history = decisions.get_baseline_history("u1", "sleep_hours")
        assert [b.mean for b in history] == [6.0, 7.5]

    def test_swap_leaves_other_metrics_alone(self, decisions):
        decisions.swap_active_baselines(
            "u1", [_baseline("sleep_hours"), _baseline("mood_score", 4.0)], now=NOW
        )
        decisions.swap_active_baselines("u1", [_baseline("sleep_hours", 6.0)], now=NOW)
        active = decisions.get_active_baselines("u1")
        assert active["mood_score"].mean == 4.0
        assert active["sleep_hours"].mean == 6.0

    def test_swap_retires_named_metrics(self, decisions):
        decisions.swap_active_baselines(
            "u1", [_baseline("sleep_hours"), _baseline("mood_score", 4.0)], now=NOW
        )
        stored = decisions.swap_active_baselines(
            "u1", [_baseline("sleep_hours", 6.0)], now=NOW, retire=["mood_score"]
        )
        assert len(stored) == 1
        assert set(decisions.get_active_baselines("u1")) == {"sleep_hours"}
        assert len(decisions.get_baseline_history("u1", "mood_score")) == 1

    def test_retire_without_replacement(self, decisions):
        decisions.swap_active_baselines("u1", [_baseline()], now=NOW)
        assert decisions.swap_active_baselines("u1", [], now=NOW, retire=["sleep_hours"]) == []
        assert decisions.get_active_baselines("u1") == {}


class TestAnalyses:
    def test_append_and_get(self, decisions):
        decisions.append_analysis(_result())
        loaded = decisions.get_analysis("a1")
        assert loaded == _result()

    def test_history_newest_first_with_filter(self, decisions):
        decisions.append_analysis(_result("a1", status="stable", evaluated_at=NOW - timedelta(days=2)))
        decisions.append_analysis(_result("a2", status="critical", evaluated_at=NOW - timedelta(days=1)))
        decisions.append_analysis(_result("a3", status="stable", evaluated_at=NOW))

        assert [r.id for r in decisions.get_analyses("u1")] == ["a3", "a2", "a1"]
        assert [r.id for r in decisions.get_analyses("u1", status="stable")] == ["a3", "a1"]
        assert [r.id for r in decisions.get_analyses("u1", since=NOW - timedelta(hours=36))] == [
            "a3", "a2",
        ]
        assert decisions.count_analyses("u1") == 3

    def test_results_are_append_only(self, decisions):
        import sqlite3

        decisions.append_analysis(_result())
        with pytest.raises(sqlite3.IntegrityError):
            decisions.append_analysis(_result())


class TestSupportRequests:
    def _open(self, decisions, analysis_id="a1", now=NOW):
        return decisions.open_support_request(
            "u1", analysis_id, "critical", now=now, stale_before=now - timedelta(hours=24)
        )

    def test_open_creates(self, decisions):
        decisions.append_analysis(_result())
        request, created = self._open(decisions)
        assert created
        assert request.state == "open"
        assert decisions.get_support_request(request.id) == request

    def test_second_open_returns_existing(self, decisions):
        decisions.append_analysis(_result("a1"))
        decisions.append_analysis(_result("a2"))
        first, _ = self._open(decisions, "a1")
        second, created = self._open(decisions, "a2", now=NOW + timedelta(hours=1))
        assert not created
        assert second.id == first.id
        assert len(decisions.list_support_requests(requester_id="u1")) == 1

    def test_stale_open_request_is_replaced(self, decisions):
        decisions.append_analysis(_result("a1"))
        decisions.append_analysis(_result("a2"))
        first, _ = self._open(decisions, "a1")
        second, created = self._open(decisions, "a2", now=NOW + timedelta(hours=25))
        assert created
        assert second.id != first.id
        assert decisions.get_support_request(first.id).state == "expired"

    def test_claim_only_once(self, decisions):
        decisions.append_analysis(_result())
        request, _ = self._open(decisions)
        cutoff = NOW - timedelta(hours=24)
        assert decisions.claim_support_request(request.id, "b1", now=NOW, created_after=cutoff)
        assert not decisions.claim_support_request(request.id, "b2", now=NOW, created_after=cutoff)
        assert decisions.get_support_request(request.id).claimed_by == "b1"

    def test_claim_refused_after_ttl(self, decisions):
        decisions.append_analysis(_result())
        request, _ = self._open(decisions)
        later = NOW + timedelta(hours=24)
        assert not decisions.claim_support_request(
            request.id, "b1", now=later, created_after=later - timedelta(hours=24)
        )

    def test_expire_open_before(self, decisions):
        decisions.append_analysis(_result())
        request, _ = self._open(decisions)
        assert decisions.expire_open_before(NOW - timedelta(hours=1), now=NOW) == []
        assert decisions.expire_open_before(NOW, now=NOW) == [request.id]
        assert decisions.get_support_request(request.id).state == "expired"
        assert decisions.expire_support_request(request.id, now=NOW) is False
