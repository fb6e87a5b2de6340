from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from clinic_insights.domain.models import ROLE_CLIENT, Service, User, WaitlistEntry
from clinic_insights.repository.data_repository import DataRepository
from clinic_insights.services.waitlist_service import (
    WaitlistService,
    WaitlistValidationError,
    priority_bucket,
    suggest_waitlist_candidates,
)
from clinic_insights.utils.config import get_settings


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _entry(entry_id: str, client_id: str, priority=None, service_id: str = "s-1", days_ago: int = 10):
    return WaitlistEntry(
        entry_id=entry_id,
        client_id=client_id,
        service_id=service_id,
        created_at=(NOW - timedelta(days=days_ago)).isoformat(),
        priority=priority,
    )


def _client_ids(suggestions):
    return [suggestion.entry.client_id for suggestion in suggestions]


def test_urgent_negative_priority_scores_at_most_hundred():
    suggestions = suggest_waitlist_candidates(
        [_entry("w-1", "A", priority=-2), _entry("w-2", "B", priority=12)],
        "s-1",
        now=NOW,
    )

    assert _client_ids(suggestions) == ["A", "B"]
    assert suggestions[0].score == 100.0
    assert suggestions[0].priority_bucket == "high"
    assert suggestions[1].score == 0.0


def test_client_keeps_its_best_ranked_entry():
    entries = [
        _entry("w-1", "A", priority=2),
        _entry("w-2", "B", priority=1),
        _entry("w-3", "A", priority=0),
    ]
    suggestions = suggest_waitlist_candidates(entries, "s-1", now=NOW)

    assert _client_ids(suggestions) == ["A", "B"]
    assert suggestions[0].entry.entry_id == "w-3"
    assert suggestions[0].entry.priority == 0


def test_limit_applies_after_deduplication():
    entries = [
        _entry("w-1", "A", priority=0),
        _entry("w-2", "A", priority=0),
        _entry("w-3", "B", priority=1),
        _entry("w-4", "C", priority=2),
    ]
    assert _client_ids(suggest_waitlist_candidates(entries, "s-1", limit=2, now=NOW)) == ["A", "B"]


def test_ties_keep_input_order_and_missing_priority_counts_as_zero():
    entries = [
        _entry("w-1", "A", priority=None),
        _entry("w-2", "B", priority=0),
        _entry("w-3", "C", priority=-1),
    ]
    assert _client_ids(suggest_waitlist_candidates(entries, "s-1", now=NOW)) == ["C", "A", "B"]


def test_only_requested_service_is_considered():
    entries = [
        _entry("w-1", "A", priority=0, service_id="s-2"),
        _entry("w-2", "B", priority=3),
    ]
    assert _client_ids(suggest_waitlist_candidates(entries, "s-1", now=NOW)) == ["B"]
    assert suggest_waitlist_candidates(entries, "s-9", now=NOW) == []


@pytest.mark.parametrize("limit", [0, -1, True, 2.5])
def test_invalid_limit_is_rejected(limit):
    with pytest.raises(WaitlistValidationError):
        suggest_waitlist_candidates([], "s-1", limit=limit, now=NOW)


@pytest.mark.parametrize("service_id", ["", "   ", None])
def test_blank_service_is_rejected(service_id):
    with pytest.raises(WaitlistValidationError):
        suggest_waitlist_candidates([], service_id, now=NOW)


def test_suggestion_scores_and_reasons():
    suggestions = suggest_waitlist_candidates(
        [
            _entry("w-1", "A", priority=None, days_ago=10),
            _entry("w-2", "B", priority=2),
            _entry("w-3", "C", priority=15),
        ],
        "s-1",
        now=NOW,
    )

    first, second, third = suggestions
    assert first.score == 100.0
    assert first.priority_bucket == "high"
    assert first.score_reasons == ("Priority 0 (default, none set)", "Waiting for 10 day(s)")
    assert second.score == 80.0
    assert second.priority_bucket == "normal"
    assert second.score_reasons[0] == "Priority 2"
    assert third.score == 0.0
    assert third.priority_bucket == "low"


def test_priority_buckets():
    assert [priority_bucket(value) for value in (-2, 0, 1, 2, 3)] == [
        "high",
        "high",
        "normal",
        "normal",
        "low",
    ]


def test_waitlist_service_reads_from_store(tmp_path):
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "waitlist.db",
        waitlist_suggestion_limit=2,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_service(Service(service_id="s-1", name="Individual therapy"))
    for client_id in ("A", "B", "C"):
        repository.create_user(User(user_id=client_id, name=client_id, role=ROLE_CLIENT))
    repository.create_waitlist_entry(_entry("w-1", "A", priority=3, days_ago=20))
    repository.create_waitlist_entry(_entry("w-2", "B", priority=None, days_ago=15))
    repository.create_waitlist_entry(_entry("w-3", "C", priority=1, days_ago=5))

    service = WaitlistService(repository=repository, settings=settings)

    assert _client_ids(service.suggest("s-1", now=NOW)) == ["B", "C"]
    assert _client_ids(service.suggest("s-1", limit=5, now=NOW)) == ["B", "C", "A"]
    with pytest.raises(WaitlistValidationError):
        service.suggest("s-1", limit=0, now=NOW)
