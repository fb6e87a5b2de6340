from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from clinic_insights.domain.constraints import BehaviorConfig
from clinic_insights.domain.models import (
    EVENT_BOOKING_COMPLETED,
    ROLE_CLIENT,
    Appointment,
    BehaviorScores,
    Service,
    User,
    WaitlistEntry,
)
from clinic_insights.repository.data_repository import DataRepository
from clinic_insights.services.event_deriver import derive_events_from_appointments
from clinic_insights.services.profile_service import (
    BehaviorProfileService,
    ClientNotFoundError,
    InvalidClientIdError,
    build_evaluation_record,
    compute_behavior_profile,
    describe_score_change,
)
from clinic_insights.utils.config import get_settings


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _appointment(
    appointment_id: str,
    status: str,
    days_ago: float,
    client_id: str = "c-1",
    lead_hours: float = 48,
) -> Appointment:
    start = NOW - timedelta(days=days_ago)
    return Appointment(
        appointment_id=appointment_id,
        client_id=client_id,
        service_id="s-1",
        start_at=start.isoformat(),
        end_at=(start + timedelta(minutes=50)).isoformat(),
        status=status,
        cancelled_at=(
            (start - timedelta(hours=lead_hours)).isoformat() if status == "CANCELLED" else None
        ),
        created_at=(start - timedelta(days=7)).isoformat(),
    )


HISTORY = [
    _appointment("a-1", "COMPLETED", 5),
    _appointment("a-2", "NO_SHOW", 12),
    _appointment("a-3", "CANCELLED", 20, lead_hours=3),
    _appointment("a-4", "COMPLETED", 30),
    _appointment("b-1", "NO_SHOW", 4, client_id="c-2"),
    _appointment("b-2", "NO_SHOW", 6, client_id="c-2"),
]


def _settings(tmp_path):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / "profiles.db", admin_token=None)


def _seeded_repository(tmp_path) -> DataRepository:
    repository = DataRepository(_settings(tmp_path))
    repository.initialize_database()
    repository.create_user(User(user_id="c-1", name="Client One", role=ROLE_CLIENT))
    repository.create_user(User(user_id="c-2", name="Client Two", role=ROLE_CLIENT))
    repository.create_user(User(user_id="e-1", name="Therapist", role="EMPLOYEE"))
    repository.create_service(Service(service_id="s-1", name="Individual therapy"))
    for appointment in HISTORY:
        repository.create_appointment(appointment)
    repository.create_waitlist_entry(
        WaitlistEntry(
            entry_id="w-1",
            client_id="c-1",
            service_id="s-1",
            created_at=(NOW - timedelta(days=3)).isoformat(),
            priority=1,
        )
    )
    return repository


def test_client_without_history_gets_neutral_profile():
    profile = compute_behavior_profile("c-9", [], now=NOW)

    assert profile.scores.reliability_score == 50.0
    assert profile.scores.engagement_score == 0.0
    assert profile.scores.cancellation_risk_score == 0.0
    assert profile.tags == ()
    assert profile.metrics.scheduled_count == 0
    assert profile.notification_strategy.content_hint == "standard"
    assert profile.evaluated_at == NOW


def test_profile_is_idempotent():
    events = derive_events_from_appointments(HISTORY)
    first = compute_behavior_profile("c-1", events, now=NOW)
    second = compute_behavior_profile("c-1", events, now=NOW)

    assert first == second
    assert first.to_dict() == second.to_dict()


@pytest.mark.parametrize("client_id", ["", "   ", None])
def test_blank_client_id_is_rejected(client_id):
    with pytest.raises(InvalidClientIdError):
        compute_behavior_profile(client_id, [], now=NOW)


def test_invalid_config_is_rejected():
    with pytest.raises(ValueError):
        compute_behavior_profile("c-1", [], now=NOW, config=BehaviorConfig(window_days=0))


def test_other_clients_events_are_ignored():
    events = derive_events_from_appointments(HISTORY)
    mixed = compute_behavior_profile("c-1", events, now=NOW)
    own = compute_behavior_profile(
        "c-1",
        [event for event in events if event.client_id == "c-1"],
        now=NOW,
    )
    assert mixed == own
    assert mixed.metrics.sample_size == 4


def test_profile_scores_within_bounds_and_tags_explained():
    events = derive_events_from_appointments(HISTORY)
    profile = compute_behavior_profile("c-2", events, now=NOW, waitlist_entry_count=2)

    for value in profile.scores.to_dict().values():
        assert 0.0 <= value <= 100.0
    assert "at_risk_no_show" in profile.tag_ids
    assert all(tag.reason for tag in profile.tags)
    assert profile.notification_strategy.preferred_channel == "SMS"


def test_first_evaluation_reason():
    profile = compute_behavior_profile("c-1", derive_events_from_appointments(HISTORY), now=NOW)
    record = build_evaluation_record(None, profile, trigger_event=EVENT_BOOKING_COMPLETED)

    assert record.previous_scores is None
    assert record.new_scores == profile.scores
    assert record.reason.startswith("First evaluation: reliability")
    assert record.reason.endswith(".")
    assert record.trigger_event == EVENT_BOOKING_COMPLETED
    assert record.evaluated_at == NOW


def test_score_change_reason_lists_direction():
    previous = BehaviorScores(reliability_score=40.0, engagement_score=80.0, cancellation_risk_score=10.0)
    current = BehaviorScores(reliability_score=55.0, engagement_score=60.0, cancellation_risk_score=10.0)
    reason = describe_score_change(previous, current)

    assert reason.startswith("Reliability score increased from 40.0 to 55.0")
    assert "engagement score decreased from 80.0 to 60.0" in reason
    assert "cancellation risk" not in reason
    assert describe_score_change(current, current) == "Scores unchanged"


def test_evaluation_records_get_unique_ids():
    profile = compute_behavior_profile("c-1", [], now=NOW)
    first = build_evaluation_record(None, profile)
    second = build_evaluation_record(None, profile)
    assert first.record_id != second.record_id
    assert first.reason == "First evaluation: reliability 50.0, engagement 0.0, cancellation risk 0.0; no tags."


def test_service_evaluates_client_from_store(tmp_path):
    repository = _seeded_repository(tmp_path)
    service = BehaviorProfileService(repository=repository, settings=_settings(tmp_path))

    profile = service.evaluate_client("c-1", now=NOW)
    expected = compute_behavior_profile(
        "c-1",
        derive_events_from_appointments(HISTORY),
        now=NOW,
        config=service.config,
        waitlist_entry_count=1,
    )
    assert profile == expected


def test_evaluate_and_record_links_previous_scores(tmp_path):
    repository = _seeded_repository(tmp_path)
    service = BehaviorProfileService(repository=repository, settings=_settings(tmp_path))

    _, first = service.evaluate_and_record("c-1", now=NOW)
    _, second = service.evaluate_and_record("c-1", now=NOW)

    assert first.previous_scores is None
    assert first.trigger_event == EVENT_BOOKING_COMPLETED
    assert second.previous_scores == first.new_scores
    assert second.reason.startswith("Scores unchanged")
    assert repository.count_evaluation_records() == 2

    history = service.list_evaluations("c-1")
    assert [record.record_id for record in history] == [second.record_id, first.record_id]


def test_unknown_or_non_client_user_is_not_found(tmp_path):
    service = BehaviorProfileService(repository=_seeded_repository(tmp_path), settings=_settings(tmp_path))

    with pytest.raises(ClientNotFoundError):
        service.evaluate_client("c-404", now=NOW)
    with pytest.raises(ClientNotFoundError):
        service.evaluate_client("e-1", now=NOW)
    with pytest.raises(InvalidClientIdError):
        service.evaluate_client(" ", now=NOW)


def test_batch_evaluation_isolates_failures(tmp_path):
    service = BehaviorProfileService(repository=_seeded_repository(tmp_path), settings=_settings(tmp_path))

    batch = service.evaluate_clients(["c-1", "", "c-2"], now=NOW)

    assert set(batch.profiles) == {"c-1", "c-2"}
    assert list(batch.failures) == [""]
    assert "client_id" in batch.failures[""]


def test_batch_evaluation_defaults_to_all_clients(tmp_path):
    service = BehaviorProfileService(repository=_seeded_repository(tmp_path), settings=_settings(tmp_path))

    batch = service.evaluate_clients(now=NOW)

    assert sorted(batch.profiles) == ["c-1", "c-2"]
    assert batch.failures == {}
