"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """MindMate wellbeing server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: there is no auth layer in front of the MCP server,
    # the identity collaborator is expected to sit in front of it.
    mindmate_host: str = "127.0.0.1"
    mindmate_port: int = 8010
    mindmate_log_level: str = "info"
    mindmate_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.mindmate/wellbeing.db"
    # One or more comma-separated Fernet keys; the first one encrypts.
    encryption_key: str = ""
    health_record_retention_days: int = 120
    # Where analyze_recent reads raw records from: "stored" (synced records) or "mock"
    health_data_source: str = "stored"

    # Analysis policy (see AnalysisPolicy for meaning)
    check_in_cooldown_hours: float = 4.0
    significance_threshold: float = 1.5
    min_baseline_samples: int = 5
    baseline_window_days: int = 28
    recent_window_days: int = 3
    support_threshold: float = 0.6
    support_request_ttl_hours: float = 24.0
    critical_change_count: int = 3
    critical_mood_score: float = 1.0
    critical_mood_days: int = 2
    confidence_saturation_sigma: float = 2.0
    full_confidence_samples: int = 14
    # Optional YAML file overriding any of the policy values above
    policy_file: str = ""

    # Scheduling
    analysis_interval_minutes: float = 60.0

    # Support tooling
    privileged_user_ids: list[str] = []
    allow_self_timer_reset: bool = False


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
