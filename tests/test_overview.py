from __future__ import annotations

from datetime import datetime, timedelta, timezone

from clinic_insights.domain.models import Appointment
from clinic_insights.services.event_deriver import derive_events_from_appointments
from clinic_insights.services.overview_service import build_profile_frame, summarize_profiles
from clinic_insights.services.profile_service import compute_behavior_profile


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _no_show(appointment_id: str, client_id: str, days_ago: int) -> Appointment:
    start = NOW - timedelta(days=days_ago)
    return Appointment(
        appointment_id=appointment_id,
        client_id=client_id,
        service_id="s-1",
        start_at=start.isoformat(),
        end_at=(start + timedelta(minutes=50)).isoformat(),
        status="NO_SHOW",
    )


def _profiles():
    events = derive_events_from_appointments(
        [_no_show("a-1", "c-1", 3), _no_show("a-2", "c-1", 8)]
    )
    return {
        "c-1": compute_behavior_profile("c-1", events, now=NOW),
        "c-2": compute_behavior_profile("c-2", [], now=NOW),
    }


def test_profile_frame_has_one_row_per_client():
    frame = build_profile_frame(_profiles())

    assert list(frame["client_id"]) == ["c-1", "c-2"]
    assert frame.loc[0, "tags"] == ["at_risk_no_show", "low_reliability"]
    assert frame.loc[1, "tags"] == []


def test_summary_counts_tags_and_channels():
    summary = summarize_profiles(_profiles())

    assert summary["client_count"] == 2
    assert summary["clients_without_history"] == 1
    assert summary["tag_counts"] == {"at_risk_no_show": 1, "low_reliability": 1}
    assert summary["channel_distribution"] == {"EMAIL": 1, "SMS": 1}
    assert summary["mean_scores"]["reliability_score"] == 25.0


def test_empty_summary():
    summary = summarize_profiles({})
    assert summary["client_count"] == 0
    assert summary["tag_counts"] == {}
    assert summary["mean_scores"]["engagement_score"] == 0.0
