"""Static decision table mapping tags and scores to an outreach channel and its delivery limits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from clinic_insights.domain.constraints import BehaviorConfig
from clinic_insights.domain.models import (
    CHANNEL_EMAIL,
    CHANNEL_IN_APP,
    CHANNEL_PUSH,
    CHANNEL_SMS,
    BehaviorScores,
    BehaviorTag,
    NotificationStrategy,
)
from clinic_insights.services.tagging_service import (
    TAG_AT_RISK_NO_SHOW,
    TAG_EXCELLENT_ATTENDANCE,
    TAG_FREQUENTLY_CANCELS,
    TAG_FREQUENTLY_ILL,
    TAG_HIGHLY_ENGAGED,
    TAG_INACTIVE,
    TAG_LAST_MINUTE_CANCELLER,
    TAG_LOW_RELIABILITY,
)


# Local hours, start inclusive, end exclusive.
DEFAULT_PREFERRED_HOURS = (18, 21)
DEFAULT_COOLDOWN_MINUTES_AFTER_IGNORED = 1440
DEFAULT_IGNORED_BEFORE_COOLDOWN = 3


@dataclass(frozen=True)
class StrategyRow:
    name: str
    matches: Callable[[frozenset[str], BehaviorScores, BehaviorConfig], bool]
    channel_order: tuple[str, ...]
    max_per_day: int
    max_per_week: int
    content_hint: str
    rationale: str
    preferred_hours: tuple[int, int] = DEFAULT_PREFERRED_HOURS
    cooldown_minutes_after_ignored: int = DEFAULT_COOLDOWN_MINUTES_AFTER_IGNORED
    ignored_before_cooldown: int = DEFAULT_IGNORED_BEFORE_COOLDOWN


def _has(*tag_ids: str) -> Callable[[frozenset[str], BehaviorScores, BehaviorConfig], bool]:
    def matches(tags: frozenset[str], scores: BehaviorScores, config: BehaviorConfig) -> bool:
        return any(tag_id in tags for tag_id in tag_ids)

    return matches


def _always(tags: frozenset[str], scores: BehaviorScores, config: BehaviorConfig) -> bool:
    return True


# First matching row wins; the catch-all row must stay last.
STRATEGY_TABLE: tuple[StrategyRow, ...] = (
    StrategyRow(
        name="no_show_risk",
        matches=_has(TAG_AT_RISK_NO_SHOW),
        channel_order=(CHANNEL_SMS, CHANNEL_PUSH, CHANNEL_EMAIL, CHANNEL_IN_APP),
        max_per_day=2,
        max_per_week=4,
        content_hint="reminder",
        rationale="Tagged at_risk_no_show: SMS reminders are hardest to miss before a visit.",
        preferred_hours=(9, 12),
    ),
    StrategyRow(
        name="canceller",
        matches=_has(TAG_FREQUENTLY_CANCELS, TAG_LAST_MINUTE_CANCELLER, TAG_FREQUENTLY_ILL),
        channel_order=(CHANNEL_SMS, CHANNEL_EMAIL, CHANNEL_PUSH, CHANNEL_IN_APP),
        max_per_day=1,
        max_per_week=3,
        content_hint="reminder",
        rationale=(
            "Tagged as a frequent or last-minute canceller: SMS confirmation "
            "requests ahead of each booking."
        ),
    ),
    StrategyRow(
        name="low_reliability",
        matches=_has(TAG_LOW_RELIABILITY),
        channel_order=(CHANNEL_SMS, CHANNEL_EMAIL, CHANNEL_PUSH, CHANNEL_IN_APP),
        max_per_day=1,
        max_per_week=3,
        content_hint="reminder",
        rationale="Low reliability score: prefer SMS over passive in-app messages.",
    ),
    StrategyRow(
        name="inactive",
        matches=_has(TAG_INACTIVE),
        channel_order=(CHANNEL_EMAIL, CHANNEL_SMS, CHANNEL_PUSH, CHANNEL_IN_APP),
        max_per_day=1,
        max_per_week=1,
        content_hint="detailed",
        rationale="Tagged inactive: a single detailed e-mail per week to re-engage.",
        cooldown_minutes_after_ignored=10080,
        ignored_before_cooldown=1,
    ),
    StrategyRow(
        name="excellent_attendance",
        matches=_has(TAG_EXCELLENT_ATTENDANCE),
        channel_order=(CHANNEL_IN_APP, CHANNEL_PUSH, CHANNEL_EMAIL, CHANNEL_SMS),
        max_per_day=1,
        max_per_week=2,
        content_hint="short",
        rationale="Tagged excellent_attendance: low-friction in-app messages are enough.",
    ),
    StrategyRow(
        name="highly_engaged",
        matches=_has(TAG_HIGHLY_ENGAGED),
        channel_order=(CHANNEL_PUSH, CHANNEL_IN_APP, CHANNEL_EMAIL, CHANNEL_SMS),
        max_per_day=2,
        max_per_week=3,
        content_hint="short",
        rationale="Tagged highly_engaged: push notifications reach the client quickly.",
    ),
    StrategyRow(
        name="default",
        matches=_always,
        channel_order=(CHANNEL_EMAIL, CHANNEL_PUSH, CHANNEL_IN_APP, CHANNEL_SMS),
        max_per_day=1,
        max_per_week=2,
        content_hint="standard",
        rationale="No behavior tag requires special handling: standard e-mail cadence.",
    ),
)


def select_notification_strategy(
    scores: BehaviorScores,
    tags: Sequence[BehaviorTag],
    *,
    config: BehaviorConfig,
    table: Sequence[StrategyRow] = STRATEGY_TABLE,
) -> NotificationStrategy:
    tag_ids = frozenset(tag.tag_id for tag in tags)
    for row in table:
        if row.matches(tag_ids, scores, config):
            return NotificationStrategy(
                preferred_channel=row.channel_order[0],
                channel_order=row.channel_order,
                max_per_day=row.max_per_day,
                max_per_week=row.max_per_week,
                preferred_hours_start=row.preferred_hours[0],
                preferred_hours_end=row.preferred_hours[1],
                cooldown_minutes_after_ignored=row.cooldown_minutes_after_ignored,
                ignored_before_cooldown=row.ignored_before_cooldown,
                content_hint=row.content_hint,
                rationale=row.rationale,
            )
    raise ValueError("strategy table has no matching row; keep a catch-all row last")
