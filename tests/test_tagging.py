from __future__ import annotations

from datetime import datetime, timedelta, timezone

from clinic_insights.domain.constraints import BehaviorConfig
from clinic_insights.domain.models import Appointment
from clinic_insights.services.event_deriver import derive_events_from_appointments
from clinic_insights.services.metrics_service import compute_metrics
from clinic_insights.services.scoring_service import compute_scores
from clinic_insights.services.tagging_service import (
    DEFAULT_TAG_RULES,
    TAG_AT_RISK_NO_SHOW,
    TAG_EXCELLENT_ATTENDANCE,
    TAG_FREQUENTLY_CANCELS,
    TAG_FREQUENTLY_ILL,
    TAG_HIGHLY_ENGAGED,
    TAG_INACTIVE,
    TAG_LAST_MINUTE_CANCELLER,
    TAG_LOW_RELIABILITY,
    TagRule,
    assign_tags,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
CONFIG = BehaviorConfig()


def _appointment(appointment_id: str, status: str, days_ago: float, lead_hours: float = 48) -> Appointment:
    start = NOW - timedelta(days=days_ago)
    return Appointment(
        appointment_id=appointment_id,
        client_id="c-1",
        service_id="s-1",
        start_at=start.isoformat(),
        end_at=(start + timedelta(minutes=50)).isoformat(),
        status=status,
        cancelled_at=(
            (start - timedelta(hours=lead_hours)).isoformat() if status == "CANCELLED" else None
        ),
    )


def _tags(appointments, rules=DEFAULT_TAG_RULES, waitlist_entry_count: int = 0):
    events = derive_events_from_appointments(appointments)
    metrics = compute_metrics(events, now=NOW, config=CONFIG)
    scores = compute_scores(metrics, config=CONFIG, waitlist_entry_count=waitlist_entry_count)
    return assign_tags(metrics, scores, events, now=NOW, config=CONFIG, rules=rules)


def _by_id(tags):
    return {tag.tag_id: tag for tag in tags}


def test_repeated_cancellations_tag_frequently_cancels():
    tags = _by_id(_tags([_appointment(f"a-{i}", "CANCELLED", 5 * (i + 1)) for i in range(4)]))

    assert TAG_FREQUENTLY_CANCELS in tags
    assert "cancelled" in tags[TAG_FREQUENTLY_CANCELS].reason
    assert "4" in tags[TAG_FREQUENTLY_CANCELS].reason


def test_frequently_cancels_fires_regardless_of_reliability():
    appointments = [_appointment(f"a-{i}", "COMPLETED", i + 1) for i in range(10)]
    appointments += [_appointment(f"c-{i}", "CANCELLED", 20 + i) for i in range(3)]
    assert TAG_FREQUENTLY_CANCELS in _by_id(_tags(appointments))


def test_short_notice_cancellations_tag_frequently_ill():
    tags = _by_id(
        _tags([_appointment(f"a-{i}", "CANCELLED", 5 * (i + 1), lead_hours=6) for i in range(4)])
    )

    tag = tags[TAG_FREQUENTLY_ILL]
    assert tag.strength == "low"
    assert "4 short-notice cancellation(s)" in tag.reason
    assert "illness" in tag.reason


def test_well_announced_cancellations_are_not_illness():
    tags = _by_id(
        _tags([_appointment(f"a-{i}", "CANCELLED", 5 * (i + 1), lead_hours=48) for i in range(4)])
    )
    assert TAG_FREQUENTLY_CANCELS in tags
    assert TAG_FREQUENTLY_ILL not in tags


def test_few_short_notice_cancellations_are_not_illness():
    tags = _by_id(
        _tags([_appointment(f"a-{i}", "CANCELLED", 5 * (i + 1), lead_hours=6) for i in range(2)])
    )
    assert TAG_FREQUENTLY_ILL not in tags


def test_upcoming_booking_does_not_cost_excellent_attendance():
    appointments = [_appointment(f"a-{i}", "COMPLETED", 7 * (i + 1)) for i in range(5)]
    start = NOW + timedelta(days=3)
    appointments.append(
        Appointment(
            appointment_id="a-next",
            client_id="c-1",
            service_id="s-1",
            start_at=start.isoformat(),
            end_at=(start + timedelta(minutes=50)).isoformat(),
            status="SCHEDULED",
            created_at=(NOW - timedelta(days=1)).isoformat(),
        )
    )
    events = derive_events_from_appointments(appointments)
    metrics = compute_metrics(events, now=NOW, config=CONFIG)
    scores = compute_scores(metrics, config=CONFIG)
    tags = _by_id(assign_tags(metrics, scores, events, now=NOW, config=CONFIG))

    assert scores.reliability_score == 100.0
    assert TAG_EXCELLENT_ATTENDANCE in tags


def test_steady_attendance_tags_excellent_attendance():
    tags = _by_id(_tags([_appointment(f"a-{i}", "COMPLETED", 7 * (i + 1)) for i in range(5)]))

    assert TAG_EXCELLENT_ATTENDANCE in tags
    assert "attendance" in tags[TAG_EXCELLENT_ATTENDANCE].reason


def test_excellent_attendance_requires_minimum_sample():
    tags = _by_id(_tags([_appointment(f"a-{i}", "COMPLETED", i + 1) for i in range(4)]))
    assert TAG_EXCELLENT_ATTENDANCE not in tags


def test_excellent_attendance_blocked_by_any_no_show():
    appointments = [_appointment(f"a-{i}", "COMPLETED", i + 1) for i in range(9)]
    appointments.append(_appointment("a-x", "NO_SHOW", 30))
    assert TAG_EXCELLENT_ATTENDANCE not in _by_id(_tags(appointments))


def test_no_shows_tag_at_risk():
    tags = _by_id(
        _tags(
            [
                _appointment("a-1", "NO_SHOW", 3),
                _appointment("a-2", "NO_SHOW", 9),
                _appointment("a-3", "COMPLETED", 12),
            ]
        )
    )
    assert TAG_AT_RISK_NO_SHOW in tags
    assert "no-show" in tags[TAG_AT_RISK_NO_SHOW].reason


def test_short_notice_cancellations_tag_last_minute_canceller():
    tags = _by_id(
        _tags(
            [
                _appointment("a-1", "CANCELLED", 3, lead_hours=2),
                _appointment("a-2", "CANCELLED", 9, lead_hours=4),
                _appointment("a-3", "COMPLETED", 12),
                _appointment("a-4", "COMPLETED", 15),
            ]
        )
    )
    assert TAG_LAST_MINUTE_CANCELLER in tags
    assert "late cancellation" in tags[TAG_LAST_MINUTE_CANCELLER].reason


def test_long_gap_tags_inactive_with_days():
    tags = _by_id(_tags([_appointment("a-1", "COMPLETED", 100)]))

    assert TAG_INACTIVE in tags
    assert "inactive" in tags[TAG_INACTIVE].reason
    assert "100 days" in tags[TAG_INACTIVE].reason


def test_recent_waitlisted_client_is_highly_engaged():
    tags = _by_id(_tags([_appointment("a-1", "COMPLETED", 0)], waitlist_entry_count=3))
    assert TAG_HIGHLY_ENGAGED in tags
    assert "engagement" in tags[TAG_HIGHLY_ENGAGED].reason


def test_empty_history_has_no_tags():
    assert _tags([]) == ()


def test_rules_are_not_mutually_exclusive_and_keep_declaration_order():
    tags = _tags([_appointment(f"a-{i}", "CANCELLED", 5 * (i + 1), lead_hours=2) for i in range(4)])

    assert [tag.tag_id for tag in tags] == [
        TAG_FREQUENTLY_CANCELS,
        TAG_LAST_MINUTE_CANCELLER,
        TAG_LOW_RELIABILITY,
        TAG_FREQUENTLY_ILL,
    ]
    assert "reliability" in tags[2].reason


def test_tag_assignment_is_idempotent():
    appointments = [
        _appointment("a-1", "NO_SHOW", 3),
        _appointment("a-2", "NO_SHOW", 9),
        _appointment("a-3", "CANCELLED", 11, lead_hours=1),
    ]
    assert _tags(appointments) == _tags(appointments)


def test_failing_rule_is_skipped():
    def explode(context):
        raise RuntimeError("broken rule")

    rules = (
        TagRule(
            tag_id="broken",
            name="Broken",
            predicate=explode,
            reason_template="never rendered",
        ),
        *DEFAULT_TAG_RULES,
    )
    tags = _by_id(_tags([_appointment("a-1", "COMPLETED", 100)], rules=rules))

    assert "broken" not in tags
    assert TAG_INACTIVE in tags


def test_tags_carry_window_and_validity():
    tags = _by_id(_tags([_appointment(f"a-{i}", "COMPLETED", 7 * (i + 1)) for i in range(5)]))
    tag = tags[TAG_EXCELLENT_ATTENDANCE]

    assert tag.window_days == CONFIG.window_days
    assert tag.valid_until == (NOW + timedelta(days=90)).date().isoformat()
    assert tag.strength == "high"
