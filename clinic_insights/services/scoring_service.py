"""Bounded 0-100 behavior scores computed from windowed metrics.

Fixed, inspectable formulas; every score saturates so that outlier
appointment counts can never leave the scale.
"""

from __future__ import annotations

from clinic_insights.domain.constraints import BehaviorConfig
from clinic_insights.domain.models import BehaviorMetrics, BehaviorScores


SCORE_MIN = 0.0
SCORE_MAX = 100.0
NEUTRAL_SCORE = 50.0

CANCEL_FREQUENCY_SATURATION_PER_MONTH = 2.0
CANCELLATION_RISK_FREQUENCY_WEIGHT = 0.6
CANCELLATION_RISK_SHORT_NOTICE_WEIGHT = 0.4


def clamp(value: float, lower: float = SCORE_MIN, upper: float = SCORE_MAX) -> float:
    return max(lower, min(upper, value))


def reliability_score(metrics: BehaviorMetrics, config: BehaviorConfig) -> float:
    """Share of scheduled bookings that were honoured, net of penalties.

    Below ``min_sample_size`` appointments the neutral midpoint is returned
    instead of an extreme.
    """
    if metrics.sample_size < config.min_sample_size or metrics.scheduled_count <= 0:
        return NEUTRAL_SCORE
    penalty = (
        config.no_show_penalty * metrics.no_show_count
        + config.late_cancel_penalty * metrics.late_cancel_count
    )
    net_completed = clamp(metrics.completed_count - penalty, 0.0, metrics.scheduled_count)
    return clamp(SCORE_MAX * net_completed / metrics.scheduled_count)


def engagement_score(
    metrics: BehaviorMetrics,
    config: BehaviorConfig,
    waitlist_entry_count: int = 0,
) -> float:
    if metrics.days_since_last_activity is None:
        recency = 0.0
    else:
        recency = clamp(
            1.0 - metrics.days_since_last_activity / config.engagement_recency_reference_days,
            0.0,
            1.0,
        )
    waitlist = clamp(
        max(0, waitlist_entry_count) / config.engagement_waitlist_reference,
        0.0,
        1.0,
    )
    raw = (
        config.engagement_recency_weight * recency
        + config.engagement_waitlist_weight * waitlist
    )
    return clamp(SCORE_MAX * raw)


def cancellation_risk_score(metrics: BehaviorMetrics) -> float:
    frequency = clamp(
        metrics.cancel_frequency_per_month / CANCEL_FREQUENCY_SATURATION_PER_MONTH,
        0.0,
        1.0,
    )
    short_notice = clamp(metrics.late_cancel_rate, 0.0, 1.0)
    raw = (
        CANCELLATION_RISK_FREQUENCY_WEIGHT * frequency
        + CANCELLATION_RISK_SHORT_NOTICE_WEIGHT * short_notice
    )
    return clamp(SCORE_MAX * raw)


def compute_scores(
    metrics: BehaviorMetrics,
    *,
    config: BehaviorConfig,
    waitlist_entry_count: int = 0,
) -> BehaviorScores:
    return BehaviorScores(
        reliability_score=round(reliability_score(metrics, config), 2),
        engagement_score=round(engagement_score(metrics, config, waitlist_entry_count), 2),
        cancellation_risk_score=round(cancellation_risk_score(metrics), 2),
    )
