"""Rule table that assigns explained categorical tags to a client profile.

Each rule is an independent ``TagRule`` row. Rules are evaluated in
declaration order and every rule that matches contributes a tag, so the
resulting tag tuple is a pure function of its inputs. Reasons are rendered
from ``reason_template`` with the metric and threshold values that fired.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

from clinic_insights.domain.constraints import BehaviorConfig
from clinic_insights.domain.models import (
    BehaviorEvent,
    BehaviorMetrics,
    BehaviorScores,
    BehaviorTag,
)
from clinic_insights.utils.logger import get_logger


logger = get_logger(__name__)


TAG_FREQUENTLY_CANCELS = "frequently_cancels"
TAG_EXCELLENT_ATTENDANCE = "excellent_attendance"
TAG_AT_RISK_NO_SHOW = "at_risk_no_show"
TAG_LAST_MINUTE_CANCELLER = "last_minute_canceller"
TAG_LOW_RELIABILITY = "low_reliability"
TAG_INACTIVE = "inactive"
TAG_HIGHLY_ENGAGED = "highly_engaged"
TAG_FREQUENTLY_ILL = "frequently_ill"

CANCELLATION_TAGS = frozenset(
    {TAG_FREQUENTLY_CANCELS, TAG_LAST_MINUTE_CANCELLER, TAG_FREQUENTLY_ILL}
)


@dataclass(frozen=True)
class TagContext:
    metrics: BehaviorMetrics
    scores: BehaviorScores
    events: tuple[BehaviorEvent, ...]
    config: BehaviorConfig


@dataclass(frozen=True)
class TagRule:
    tag_id: str
    name: str
    predicate: Callable[[TagContext], bool]
    reason_template: str
    strength: str = "medium"
    validity_days: int = 90


def _pct(value: float) -> str:
    return f"{value * 100:.0f}"


def reason_context(context: TagContext) -> dict[str, Any]:
    """Values a reason template may reference."""
    metrics = context.metrics
    config = context.config
    values: dict[str, Any] = {}
    values.update(metrics.to_dict())
    values.update(context.scores.to_dict())
    values.update(
        {
            "frequent_cancel_threshold": config.frequent_cancel_threshold,
            "short_notice_cancel_hours": config.short_notice_cancel_hours,
            "excellent_attendance_min_sample": config.excellent_attendance_min_sample,
            "no_show_risk_count": config.no_show_risk_count,
            "late_cancel_threshold_hours": config.late_cancel_threshold_hours,
            "low_reliability_threshold": config.low_reliability_threshold,
            "inactive_days": config.inactive_days,
            "highly_engaged_threshold": config.highly_engaged_threshold,
            "attendance_pct": _pct(metrics.attendance_rate),
            "no_show_pct": _pct(metrics.no_show_rate),
            "late_cancel_pct": _pct(metrics.late_cancel_rate),
            "excellent_attendance_pct": _pct(config.excellent_attendance_rate),
            "no_show_risk_pct": _pct(config.no_show_risk_rate),
            "late_cancel_rate_pct": _pct(config.late_cancel_rate_threshold),
            "days_inactive": (
                int(metrics.days_since_last_activity)
                if metrics.days_since_last_activity is not None
                else 0
            ),
        }
    )
    return values


def _frequently_cancels(ctx: TagContext) -> bool:
    return ctx.metrics.raw_cancelled_count >= ctx.config.frequent_cancel_threshold


def _frequently_ill(ctx: TagContext) -> bool:
    m = ctx.metrics
    return (
        m.raw_cancelled_count >= ctx.config.frequent_cancel_threshold
        and m.avg_cancel_lead_hours < ctx.config.short_notice_cancel_hours
    )


def _excellent_attendance(ctx: TagContext) -> bool:
    m = ctx.metrics
    return (
        m.sample_size >= ctx.config.excellent_attendance_min_sample
        and m.raw_no_show_count == 0
        and m.attendance_rate >= ctx.config.excellent_attendance_rate
    )


def _at_risk_no_show(ctx: TagContext) -> bool:
    m = ctx.metrics
    if m.raw_no_show_count >= ctx.config.no_show_risk_count:
        return True
    return (
        m.sample_size >= ctx.config.min_sample_size
        and m.no_show_rate >= ctx.config.no_show_risk_rate
    )


def _last_minute_canceller(ctx: TagContext) -> bool:
    m = ctx.metrics
    return (
        m.sample_size >= ctx.config.min_sample_size
        and m.late_cancel_rate >= ctx.config.late_cancel_rate_threshold
    )


def _low_reliability(ctx: TagContext) -> bool:
    return (
        ctx.metrics.sample_size >= ctx.config.min_sample_size
        and ctx.scores.reliability_score <= ctx.config.low_reliability_threshold
    )


def _inactive(ctx: TagContext) -> bool:
    days = ctx.metrics.days_since_last_activity
    return days is not None and days >= ctx.config.inactive_days


def _highly_engaged(ctx: TagContext) -> bool:
    return ctx.scores.engagement_score >= ctx.config.highly_engaged_threshold


DEFAULT_TAG_RULES: tuple[TagRule, ...] = (
    TagRule(
        tag_id=TAG_FREQUENTLY_CANCELS,
        name="Frequently Cancels",
        predicate=_frequently_cancels,
        reason_template=(
            "Client cancelled {raw_cancelled_count} appointment(s) in the last "
            "{window_days} days (threshold {frequent_cancel_threshold})."
        ),
        strength="medium",
    ),
    TagRule(
        tag_id=TAG_EXCELLENT_ATTENDANCE,
        name="Excellent Attendance",
        predicate=_excellent_attendance,
        reason_template=(
            "Client keeps an attendance rate of {attendance_pct}% with no no-shows "
            "over {sample_size} appointment(s) in the last {window_days} days "
            "(threshold {excellent_attendance_pct}%)."
        ),
        strength="high",
    ),
    TagRule(
        tag_id=TAG_AT_RISK_NO_SHOW,
        name="At Risk of No-Show",
        predicate=_at_risk_no_show,
        reason_template=(
            "Client has {raw_no_show_count} no-show(s), a no-show rate of "
            "{no_show_pct}% in the last {window_days} days (thresholds "
            "{no_show_risk_count} no-shows or {no_show_risk_pct}%)."
        ),
        strength="high",
    ),
    TagRule(
        tag_id=TAG_LAST_MINUTE_CANCELLER,
        name="Last-Minute Canceller",
        predicate=_last_minute_canceller,
        reason_template=(
            "Client's late cancellation rate (under {late_cancel_threshold_hours:g}h "
            "notice) is {late_cancel_pct}% in the last {window_days} days "
            "(threshold {late_cancel_rate_pct}%)."
        ),
        strength="medium",
    ),
    TagRule(
        tag_id=TAG_LOW_RELIABILITY,
        name="Low Reliability",
        predicate=_low_reliability,
        reason_template=(
            "Client's reliability score is {reliability_score:.0f}, at or below "
            "{low_reliability_threshold:.0f}, over {sample_size} appointment(s)."
        ),
        strength="medium",
    ),
    TagRule(
        tag_id=TAG_INACTIVE,
        name="Inactive",
        predicate=_inactive,
        reason_template=(
            "Client has been inactive for {days_inactive} days "
            "(threshold {inactive_days} days)."
        ),
        strength="low",
        validity_days=30,
    ),
    TagRule(
        tag_id=TAG_HIGHLY_ENGAGED,
        name="Highly Engaged",
        predicate=_highly_engaged,
        reason_template=(
            "Client's engagement score is {engagement_score:.0f} "
            "(threshold {highly_engaged_threshold:.0f})."
        ),
        strength="low",
        validity_days=30,
    ),
    TagRule(
        tag_id=TAG_FREQUENTLY_ILL,
        name="Frequently Ill",
        predicate=_frequently_ill,
        reason_template=(
            "Client had {raw_cancelled_count} short-notice cancellation(s) in the last "
            "{window_days} days, averaging {avg_cancel_lead_hours:.0f}h notice "
            "(under {short_notice_cancel_hours:g}h; possible illness pattern)."
        ),
        strength="low",
    ),
)


def evaluate_rule(rule: TagRule, context: TagContext, now: datetime) -> BehaviorTag | None:
    """Evaluate a single rule; returns the tag when it fires."""
    if not rule.predicate(context):
        return None
    return BehaviorTag(
        tag_id=rule.tag_id,
        name=rule.name,
        reason=rule.reason_template.format(**reason_context(context)),
        strength=rule.strength,
        window_days=context.metrics.window_days,
        valid_until=(now + timedelta(days=rule.validity_days)).date().isoformat(),
    )


def assign_tags(
    metrics: BehaviorMetrics,
    scores: BehaviorScores,
    events: Sequence[BehaviorEvent],
    *,
    now: datetime,
    config: BehaviorConfig,
    rules: Sequence[TagRule] = DEFAULT_TAG_RULES,
) -> tuple[BehaviorTag, ...]:
    context = TagContext(
        metrics=metrics,
        scores=scores,
        events=tuple(events),
        config=config,
    )
    tags: list[BehaviorTag] = []
    for rule in rules:
        try:
            tag = evaluate_rule(rule, context, now)
        except Exception:
            logger.exception("Tag rule evaluation failed | tag_id=%s", rule.tag_id)
            continue
        if tag is not None:
            tags.append(tag)
    return tuple(tags)
