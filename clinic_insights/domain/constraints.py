"""Engine configuration value object and its validation rules."""

from __future__ import annotations

from dataclasses import dataclass


RECENCY_DECAY_MODES = ("linear", "exponential")


@dataclass(frozen=True)
class BehaviorConfig:
    """Every tunable of the behavior engine, with its documented default.

    Passed explicitly into each engine entry point; there is no module-level
    mutable default anywhere in the engine.
    """

    # Aggregation window and weighting
    window_days: int = 90
    recency_weighting: bool = True
    recency_decay: str = "linear"
    recency_half_life_days: float = 30.0
    late_cancel_threshold_hours: float = 12.0

    # Reliability score
    min_sample_size: int = 2
    no_show_penalty: float = 1.0
    late_cancel_penalty: float = 0.5

    # Engagement score
    engagement_recency_reference_days: float = 90.0
    engagement_waitlist_reference: int = 3
    engagement_recency_weight: float = 0.7
    engagement_waitlist_weight: float = 0.3

    # Tag thresholds
    frequent_cancel_threshold: int = 3
    short_notice_cancel_hours: float = 24.0
    excellent_attendance_rate: float = 0.8
    excellent_attendance_min_sample: int = 5
    no_show_risk_count: int = 2
    no_show_risk_rate: float = 0.25
    late_cancel_rate_threshold: float = 0.25
    low_reliability_threshold: float = 40.0
    inactive_days: int = 60
    highly_engaged_threshold: float = 80.0

    # Recommendation triggers
    inactive_call_min_days: int = 60
    inactive_call_max_days: int = 365
    refund_reengage_days: int = 30
    upcoming_reminder_days: int = 2
    cancellation_risk_horizon_days: int = 7
    slot_fill_horizon_days: int = 7
    rebook_min_days: int = 7
    rebook_max_days: int = 45
    upsell_min_individual_sessions: int = 5


def validate_behavior_config(config: BehaviorConfig) -> None:
    if config.window_days <= 0:
        raise ValueError("window_days must be > 0")
    if config.recency_decay not in RECENCY_DECAY_MODES:
        raise ValueError(f"recency_decay must be one of {', '.join(RECENCY_DECAY_MODES)}")
    if config.recency_half_life_days <= 0:
        raise ValueError("recency_half_life_days must be > 0")
    if config.late_cancel_threshold_hours < 0:
        raise ValueError("late_cancel_threshold_hours must be >= 0")
    if config.min_sample_size < 1:
        raise ValueError("min_sample_size must be >= 1")
    if config.late_cancel_penalty < 0:
        raise ValueError("late_cancel_penalty must be >= 0")
    if config.no_show_penalty <= config.late_cancel_penalty:
        raise ValueError("no_show_penalty must be greater than late_cancel_penalty")
    if config.engagement_recency_reference_days <= 0:
        raise ValueError("engagement_recency_reference_days must be > 0")
    if config.engagement_waitlist_reference <= 0:
        raise ValueError("engagement_waitlist_reference must be > 0")
    if config.engagement_recency_weight < 0 or config.engagement_waitlist_weight < 0:
        raise ValueError("engagement weights must be >= 0")
    if abs(config.engagement_recency_weight + config.engagement_waitlist_weight - 1.0) > 1e-9:
        raise ValueError("engagement weights must sum to 1")
    for name in ("excellent_attendance_rate", "no_show_risk_rate", "late_cancel_rate_threshold"):
        if not 0.0 <= getattr(config, name) <= 1.0:
            raise ValueError(f"{name} must be between 0 and 1")
    for name in ("low_reliability_threshold", "highly_engaged_threshold"):
        if not 0.0 <= getattr(config, name) <= 100.0:
            raise ValueError(f"{name} must be between 0 and 100")
    if config.frequent_cancel_threshold < 1:
        raise ValueError("frequent_cancel_threshold must be >= 1")
    if config.short_notice_cancel_hours < 0:
        raise ValueError("short_notice_cancel_hours must be >= 0")
    if config.inactive_call_min_days >= config.inactive_call_max_days:
        raise ValueError("inactive_call_min_days must be less than inactive_call_max_days")
    if config.rebook_min_days > config.rebook_max_days:
        raise ValueError("rebook_min_days must not exceed rebook_max_days")
    if config.upcoming_reminder_days <= 0 or config.cancellation_risk_horizon_days <= 0:
        raise ValueError("upcoming horizons must be > 0")
