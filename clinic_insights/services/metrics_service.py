"""Windowed, optionally recency-weighted aggregation of behavior events."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from clinic_insights.domain.constraints import BehaviorConfig
from clinic_insights.domain.models import (
    EVENT_BOOKING_CANCELLED,
    EVENT_BOOKING_COMPLETED,
    EVENT_BOOKING_CREATED,
    EVENT_BOOKING_NO_SHOW,
    OUTCOME_EVENT_TYPES,
    BehaviorEvent,
    BehaviorMetrics,
)
from clinic_insights.utils.timeutils import days_between


DAYS_PER_MONTH = 30.0
_PRECISION = 6


@dataclass(frozen=True)
class _BookingUnit:
    """One appointment's in-window contribution: anchor event plus weight."""

    anchor: BehaviorEvent
    outcome: Optional[BehaviorEvent]
    weight: float


def recency_weight(age_days: float, config: BehaviorConfig) -> float:
    """Decay factor for an event ``age_days`` old; 1.0 when weighting is off."""
    if not config.recency_weighting:
        return 1.0
    age = max(0.0, age_days)
    if config.recency_decay == "exponential":
        return 0.5 ** (age / config.recency_half_life_days)
    return max(0.0, 1.0 - age / config.window_days)


def _ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator


def _in_window(event: BehaviorEvent, window_start: datetime, now: datetime) -> bool:
    return event.timestamp is not None and window_start <= event.timestamp <= now


def _starts_after(event: BehaviorEvent, now: datetime) -> bool:
    return event.appointment_start is not None and event.appointment_start > now


def _booking_units(
    events: Iterable[BehaviorEvent],
    *,
    now: datetime,
    config: BehaviorConfig,
) -> list[_BookingUnit]:
    """Group events per appointment and keep those whose anchor is in window.

    The outcome event anchors the appointment when there is one, so an
    appointment contributes the same weight to ``scheduled`` and to its
    outcome count and the count invariant survives weighting. An open
    booking whose appointment has not started by ``now`` is not scheduled
    yet and is left out.
    """
    grouped: dict[str, list[BehaviorEvent]] = defaultdict(list)
    for event in events:
        grouped[event.appointment_id or event.event_id].append(event)

    window_start = now - timedelta(days=config.window_days)
    units: list[_BookingUnit] = []
    for key in sorted(grouped):
        group = grouped[key]
        outcome = next((e for e in group if e.event_type in OUTCOME_EVENT_TYPES), None)
        created = next((e for e in group if e.event_type == EVENT_BOOKING_CREATED), None)
        anchor = outcome or created
        if anchor is None or not _in_window(anchor, window_start, now):
            continue
        if outcome is None and _starts_after(anchor, now):
            continue
        weight = recency_weight(days_between(anchor.timestamp, now), config)
        units.append(_BookingUnit(anchor=anchor, outcome=outcome, weight=weight))
    return units


def _days_since_last_activity(events: Iterable[BehaviorEvent], now: datetime) -> Optional[float]:
    past = [event.timestamp for event in events if event.timestamp is not None and event.timestamp <= now]
    if not past:
        return None
    return round(days_between(max(past), now), _PRECISION)


def compute_metrics(
    events: Iterable[BehaviorEvent],
    *,
    now: datetime,
    config: BehaviorConfig,
) -> BehaviorMetrics:
    """Aggregate one client's events over ``[now - window_days, now]``."""
    events = list(events)
    units = _booking_units(events, now=now, config=config)

    open_bookings = completed = cancelled = no_show = late_cancel = 0.0
    lead_hours_sum = lead_hours_weight = 0.0
    raw_completed = raw_cancelled = raw_no_show = 0

    for unit in units:
        weight = unit.weight
        if unit.outcome is None:
            open_bookings += weight
            continue
        outcome_type = unit.outcome.event_type
        if outcome_type == EVENT_BOOKING_COMPLETED:
            completed += weight
            raw_completed += 1
        elif outcome_type == EVENT_BOOKING_NO_SHOW:
            no_show += weight
            raw_no_show += 1
        elif outcome_type == EVENT_BOOKING_CANCELLED:
            cancelled += weight
            raw_cancelled += 1
            lead_hours = unit.outcome.hours_before_appointment
            if lead_hours is not None:
                lead_hours_sum += lead_hours * weight
                lead_hours_weight += weight
                if lead_hours < config.late_cancel_threshold_hours:
                    late_cancel += weight

    scheduled = completed + cancelled + no_show + open_bookings
    months_in_window = config.window_days / DAYS_PER_MONTH
    completed_rounded = round(completed, _PRECISION)
    cancelled_rounded = round(cancelled, _PRECISION)
    no_show_rounded = round(no_show, _PRECISION)
    # Built from the rounded parts so outcome counts never exceed it.
    scheduled_rounded = (
        completed_rounded + cancelled_rounded + no_show_rounded
        + round(open_bookings, _PRECISION)
    )
    return BehaviorMetrics(
        scheduled_count=scheduled_rounded,
        completed_count=completed_rounded,
        cancelled_count=cancelled_rounded,
        no_show_count=no_show_rounded,
        late_cancel_count=round(late_cancel, _PRECISION),
        attendance_rate=round(_ratio(completed, scheduled), _PRECISION),
        cancel_rate=round(_ratio(cancelled, scheduled), _PRECISION),
        no_show_rate=round(_ratio(no_show, scheduled), _PRECISION),
        late_cancel_rate=round(_ratio(late_cancel, scheduled), _PRECISION),
        avg_cancel_lead_hours=round(_ratio(lead_hours_sum, lead_hours_weight), _PRECISION),
        cancel_frequency_per_month=round(cancelled / months_in_window, _PRECISION),
        sample_size=len(units),
        raw_completed_count=raw_completed,
        raw_cancelled_count=raw_cancelled,
        raw_no_show_count=raw_no_show,
        days_since_last_activity=_days_since_last_activity(events, now),
        window_days=config.window_days,
        window_end=now,
        recency_weighting=config.recency_weighting,
    )
