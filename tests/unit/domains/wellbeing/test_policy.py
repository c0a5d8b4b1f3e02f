"""Tests for AnalysisPolicy construction and YAML overrides."""

from __future__ import annotations

from datetime import timedelta

import pytest

from mindmate.core.config.settings import Settings
from mindmate.domains.wellbeing.domain_logic.policy import (
    AnalysisPolicy,
    PolicyError,
    load_policy_file,
)


class TestDefaults:
    def test_default_values(self):
        policy = AnalysisPolicy()
        assert policy.check_in_cooldown == timedelta(hours=4)
        assert policy.significance_threshold == 1.5
        assert policy.support_request_ttl == timedelta(hours=24)
        assert policy.practical_delta("steps_per_day") == 1000.0

    def test_instances_do_not_share_delta_table(self):
        a = AnalysisPolicy()
        b = AnalysisPolicy()
        assert a.min_practical_delta is not b.min_practical_delta

    def test_rejects_too_few_baseline_samples(self):
        with pytest.raises(PolicyError, match="min_baseline_samples"):
            AnalysisPolicy(min_baseline_samples=1)

    def test_rejects_out_of_range_support_threshold(self):
        with pytest.raises(PolicyError):
            AnalysisPolicy(support_threshold=1.5)

    def test_rejects_unknown_metric_delta(self):
        with pytest.raises(PolicyError, match="heart_rate"):
            AnalysisPolicy(min_practical_delta={"heart_rate": 5.0})


class TestFromSettings:
    def test_settings_values_flow_through(self):
        settings = Settings(check_in_cooldown_hours=2.0, recent_window_days=5)
        policy = AnalysisPolicy.from_settings(settings)
        assert policy.check_in_cooldown == timedelta(hours=2)
        assert policy.recent_window_days == 5

    def test_policy_file_applied(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("significance_threshold: 2.0\n")
        policy = AnalysisPolicy.from_settings(Settings(policy_file=str(path)))
        assert policy.significance_threshold == 2.0


class TestLoadPolicyFile:
    def test_durations_and_delta_merge(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text(
            "check_in_cooldown_hours: 6\n"
            "support_request_ttl_hours: 12\n"
            "min_practical_delta:\n"
            "  steps_per_day: 1500\n"
        )
        policy = load_policy_file(path)
        assert policy.check_in_cooldown == timedelta(hours=6)
        assert policy.support_request_ttl == timedelta(hours=12)
        assert policy.practical_delta("steps_per_day") == 1500.0
        assert policy.practical_delta("sleep_hours") == 0.5

    def test_empty_file_keeps_base(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("")
        base = AnalysisPolicy(critical_change_count=4)
        assert load_policy_file(path, base=base) == base

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("cooldown: 3\n")
        with pytest.raises(PolicyError, match="Unknown policy key: cooldown"):
            load_policy_file(path)

    def test_timedelta_field_name_not_accepted_directly(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("check_in_cooldown: 3\n")
        with pytest.raises(PolicyError):
            load_policy_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(PolicyError, match="Cannot load"):
            load_policy_file(tmp_path / "absent.yaml")

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(PolicyError, match="mapping"):
            load_policy_file(path)
