"""Environment-backed runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from clinic_insights.domain.constraints import BehaviorConfig


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    admin_token: str | None
    synthetic_random_seed: int
    synthetic_client_count: int
    synthetic_history_days: int
    behavior_window_days: int
    behavior_recency_weighting: bool
    behavior_recency_decay: str
    behavior_min_sample_size: int
    behavior_late_cancel_threshold_hours: float
    waitlist_suggestion_limit: int
    evaluation_log_limit: int

    def behavior_config(self) -> BehaviorConfig:
        """Engine configuration derived from deployment settings."""
        return BehaviorConfig(
            window_days=self.behavior_window_days,
            recency_weighting=self.behavior_recency_weighting,
            recency_decay=self.behavior_recency_decay,
            min_sample_size=self.behavior_min_sample_size,
            late_cancel_threshold_hours=self.behavior_late_cancel_threshold_hours,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("CLINIC_APP_NAME", "Clinic Insights"),
        app_version=os.getenv("CLINIC_APP_VERSION", "0.1.0"),
        log_level=os.getenv("CLINIC_LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("CLINIC_DATABASE_PATH", "data/clinic.db")),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        synthetic_random_seed=int(os.getenv("CLINIC_SYNTHETIC_SEED", "42")),
        synthetic_client_count=int(os.getenv("CLINIC_SYNTHETIC_CLIENTS", "12")),
        synthetic_history_days=int(os.getenv("CLINIC_SYNTHETIC_HISTORY_DAYS", "180")),
        behavior_window_days=int(os.getenv("CLINIC_BEHAVIOR_WINDOW_DAYS", "90")),
        behavior_recency_weighting=_env_bool("CLINIC_BEHAVIOR_RECENCY_WEIGHTING", True),
        behavior_recency_decay=os.getenv("CLINIC_BEHAVIOR_RECENCY_DECAY", "linear"),
        behavior_min_sample_size=int(os.getenv("CLINIC_BEHAVIOR_MIN_SAMPLE", "2")),
        behavior_late_cancel_threshold_hours=float(
            os.getenv("CLINIC_LATE_CANCEL_HOURS", "12")
        ),
        waitlist_suggestion_limit=int(os.getenv("CLINIC_WAITLIST_LIMIT", "20")),
        evaluation_log_limit=int(os.getenv("CLINIC_EVALUATION_LOG_LIMIT", "50")),
    )
