"""Tests for BaselineStore computation and atomic refresh."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from conftest import NOW, make_sample
from mindmate.domains.wellbeing.domain_logic.baseline import BaselineStore
from mindmate.domains.wellbeing.domain_logic.errors import InsufficientBaselineError

START = date(2026, 10, 1)
END = date(2026, 10, 14)


@pytest.fixture
def store(repository, decisions, policy) -> BaselineStore:
    return BaselineStore(repository, decisions, policy)


def _sleep_days(values, start=START):
    return [
        make_sample("u1", start + timedelta(days=i), sleep_hours=v)
        for i, v in enumerate(values)
    ]


class TestComputeBaseline:
    def test_mean_and_sample_variance(self, store):
        samples = _sleep_days([6.0, 7.0, 8.0, 7.0, 7.0])
        baseline = store.compute_baseline("u1", "sleep_hours", START, END, samples)
        assert baseline.mean == pytest.approx(7.0)
        assert baseline.variance == pytest.approx(0.5)
        assert baseline.sample_count == 5
        assert (baseline.window_start, baseline.window_end) == (START, END)

    def test_deterministic(self, store):
        samples = _sleep_days([6.0, 7.0, 8.0, 7.0, 7.0])
        first = store.compute_baseline("u1", "sleep_hours", START, END, samples)
        second = store.compute_baseline("u1", "sleep_hours", START, END, list(reversed(samples)))
        assert first == second

    def test_missing_values_not_counted(self, store):
        samples = _sleep_days([7.0, 7.0, 7.0, 7.0]) + [make_sample("u1", START + timedelta(days=5))]
        with pytest.raises(InsufficientBaselineError) as exc_info:
            store.compute_baseline("u1", "sleep_hours", START, END, samples)
        assert exc_info.value.sample_count == 4
        assert exc_info.value.required == 5

    def test_samples_outside_window_ignored(self, store):
        samples = _sleep_days([7.0] * 5, start=END + timedelta(days=1))
        with pytest.raises(InsufficientBaselineError):
            store.compute_baseline("u1", "sleep_hours", START, END, samples)

    def test_activity_level_scored(self, store):
        samples = [
            make_sample("u1", START + timedelta(days=i), activity_level=level)
            for i, level in enumerate(["low", "moderate", "high", "moderate", "moderate"])
        ]
        baseline = store.compute_baseline("u1", "activity_level", START, END, samples)
        assert baseline.mean == pytest.approx(2.0)

    def test_loads_from_storage_when_not_given(self, store, repository):
        repository.save_samples(_sleep_days([7.0, 7.5, 8.0, 7.5, 7.5]), now=NOW)
        baseline = store.compute_baseline("u1", "sleep_hours", START, END)
        assert baseline.mean == pytest.approx(7.5)


class TestRefresh:
    def test_refresh_swaps_computable_metrics(self, store):
        samples = _sleep_days([7.0, 7.5, 8.0, 7.5, 7.5])
        active = store.refresh("u1", START, END, now=NOW, samples=samples)
        assert set(active) == {"sleep_hours"}

    def test_metric_without_enough_history_is_retired(self, store):
        store.refresh("u1", START, END, now=NOW, samples=_sleep_days([7.0, 7.5, 8.0, 7.5, 7.5]))
        later_end = END + timedelta(days=1)
        active = store.refresh("u1", START, later_end, now=NOW, samples=_sleep_days([7.0]))
        assert "sleep_hours" not in active
        assert store.active("u1") == {}
        assert len(store.history("u1", "sleep_hours")) == 1

    def test_only_stale_metrics_drop_out(self, store):
        mixed = [
            make_sample("u1", START + timedelta(days=i), sleep_hours=7.0 + i % 2, mood_score=4)
            for i in range(5)
        ]
        store.refresh("u1", START, END, now=NOW, samples=mixed)
        later_end = END + timedelta(days=1)
        active = store.refresh("u1", START, later_end, now=NOW, samples=_sleep_days([7.0] * 5))
        assert set(active) == {"sleep_hours"}
        assert active["sleep_hours"].window_end == later_end

    def test_history_newest_first(self, store):
        store.refresh("u1", START, END, now=NOW, samples=_sleep_days([7.0] * 5))
        store.refresh(
            "u1", START, END + timedelta(days=1), now=NOW + timedelta(days=1),
            samples=_sleep_days([6.0] * 5),
        )
        history = store.history("u1", "sleep_hours")
        assert [b.mean for b in history] == [6.0, 7.0]
        assert store.active("u1")["sleep_hours"].mean == 6.0

    def test_history_unknown_metric(self, store):
        with pytest.raises(KeyError):
            store.history("u1", "heart_rate")
