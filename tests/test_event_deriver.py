from __future__ import annotations

from datetime import datetime, timedelta, timezone

from clinic_insights.domain.models import (
    EVENT_BOOKING_CANCELLED,
    EVENT_BOOKING_COMPLETED,
    EVENT_BOOKING_CREATED,
    EVENT_BOOKING_NO_SHOW,
    EVENT_BOOKING_REFUNDED,
    Appointment,
)
from clinic_insights.services.event_deriver import (
    BOOKING_CREATED_PROXY_HOURS,
    derive_events_by_client,
    derive_events_from_appointments,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _appointment(
    appointment_id: str,
    status: str,
    start: datetime,
    client_id: str = "c-1",
    **extra,
) -> Appointment:
    return Appointment(
        appointment_id=appointment_id,
        client_id=client_id,
        service_id="s-1",
        start_at=start.isoformat(),
        end_at=(start + timedelta(minutes=50)).isoformat(),
        status=status,
        **extra,
    )


def test_completed_appointment_emits_created_then_completed():
    start = NOW - timedelta(days=3)
    events = derive_events_from_appointments([_appointment("a-1", "COMPLETED", start)])

    assert [event.event_type for event in events] == [
        EVENT_BOOKING_CREATED,
        EVENT_BOOKING_COMPLETED,
    ]
    assert events[0].timestamp == start - timedelta(hours=BOOKING_CREATED_PROXY_HOURS)
    assert events[1].timestamp == start
    assert events[1].event_id == "a-1:booking_completed"


def test_every_event_carries_the_appointment_start():
    start = NOW - timedelta(days=4)
    cancelled_at = start - timedelta(hours=6)
    events = derive_events_from_appointments(
        [_appointment("a-1", "CANCELLED", start, cancelled_at=cancelled_at.isoformat())]
    )

    assert [event.appointment_start for event in events] == [start, start]
    assert events[0].to_dict()["appointment_start"] == start.isoformat()


def test_invoiced_counts_as_completed():
    events = derive_events_from_appointments([_appointment("a-1", "INVOICED", NOW)])
    assert events[-1].event_type == EVENT_BOOKING_COMPLETED


def test_created_at_is_used_when_present():
    created = NOW - timedelta(days=10)
    events = derive_events_from_appointments(
        [_appointment("a-1", "SCHEDULED", NOW + timedelta(days=2), created_at=created.isoformat())]
    )
    assert len(events) == 1
    assert events[0].timestamp == created


def test_cancellation_carries_lead_hours_and_default_actor():
    start = NOW - timedelta(days=1)
    cancelled_at = start - timedelta(hours=6)
    events = derive_events_from_appointments(
        [_appointment("a-1", "CANCELLED", start, cancelled_at=cancelled_at.isoformat())]
    )

    cancelled = events[-1]
    assert cancelled.event_type == EVENT_BOOKING_CANCELLED
    assert cancelled.timestamp == cancelled_at
    assert cancelled.hours_before_appointment == 6.0
    assert cancelled.cancelled_by == "client"


def test_cancellation_without_timestamp_falls_back_to_start():
    start = NOW - timedelta(days=1)
    events = derive_events_from_appointments([_appointment("a-1", "CANCELLED", start)])

    cancelled = events[-1]
    assert cancelled.timestamp == start
    assert cancelled.hours_before_appointment == 0.0


def test_cancellation_after_start_is_clamped_to_zero_lead():
    start = NOW - timedelta(days=1)
    events = derive_events_from_appointments(
        [
            _appointment(
                "a-1",
                "CANCELLED",
                start,
                cancelled_at=(start + timedelta(hours=2)).isoformat(),
                cancelled_by="staff",
            )
        ]
    )
    assert events[-1].hours_before_appointment == 0.0
    assert events[-1].cancelled_by == "staff"


def test_creation_proxy_never_follows_cancellation():
    start = NOW + timedelta(days=5)
    cancelled_at = start - timedelta(hours=72)
    events = derive_events_from_appointments(
        [_appointment("a-1", "CANCELLED", start, cancelled_at=cancelled_at.isoformat())]
    )
    created, cancelled = events
    assert created.event_type == EVENT_BOOKING_CREATED
    assert created.timestamp <= cancelled.timestamp


def test_no_show_emits_no_show_event():
    events = derive_events_from_appointments([_appointment("a-1", "NO_SHOW", NOW)])
    assert [event.event_type for event in events] == [EVENT_BOOKING_CREATED, EVENT_BOOKING_NO_SHOW]


def test_open_bookings_emit_only_created():
    appointments = [
        _appointment("a-1", "SCHEDULED", NOW + timedelta(days=1)),
        _appointment("a-2", "PAID", NOW + timedelta(days=2)),
        _appointment("a-3", "UNPAID", NOW + timedelta(days=3)),
    ]
    events = derive_events_from_appointments(appointments)
    assert {event.event_type for event in events} == {EVENT_BOOKING_CREATED}
    assert len(events) == 3


def test_refunded_payment_adds_no_event():
    start = NOW - timedelta(days=1)
    events = derive_events_from_appointments(
        [
            _appointment(
                "a-1",
                "CANCELLED",
                start,
                payment_status="REFUNDED",
                cancelled_at=(start - timedelta(hours=30)).isoformat(),
            )
        ]
    )
    assert EVENT_BOOKING_REFUNDED not in {event.event_type for event in events}
    assert len(events) == 2


def test_output_is_sorted_and_independent_of_input_order():
    appointments = [
        _appointment("a-3", "COMPLETED", NOW - timedelta(days=1)),
        _appointment("a-1", "NO_SHOW", NOW - timedelta(days=20)),
        _appointment("a-2", "CANCELLED", NOW - timedelta(days=10)),
    ]
    forward = derive_events_from_appointments(appointments)
    backward = derive_events_from_appointments(list(reversed(appointments)))

    assert forward == backward
    timestamps = [event.timestamp for event in forward]
    assert timestamps == sorted(timestamps)


def test_rederivation_is_identical():
    appointments = [
        _appointment("a-1", "COMPLETED", NOW - timedelta(days=1)),
        _appointment("a-2", "CANCELLED", NOW - timedelta(days=2)),
    ]
    first = derive_events_from_appointments(appointments)
    second = derive_events_from_appointments(appointments)
    assert [event.to_dict() for event in first] == [event.to_dict() for event in second]


def test_unparseable_timestamps_are_missing_and_sorted_last():
    broken = Appointment(
        appointment_id="a-0",
        client_id="c-1",
        service_id="s-1",
        start_at="not-a-date",
        end_at="not-a-date",
        status="COMPLETED",
    )
    events = derive_events_from_appointments(
        [broken, _appointment("a-1", "COMPLETED", NOW - timedelta(days=1))]
    )
    assert [event.appointment_id for event in events[-2:]] == ["a-0", "a-0"]
    assert all(event.timestamp is None for event in events[-2:])


def test_naive_and_zulu_timestamps_are_read_as_utc():
    naive = Appointment(
        appointment_id="a-1",
        client_id="c-1",
        service_id="s-1",
        start_at="2026-03-01T10:00:00",
        end_at="2026-03-01T10:50:00",
        status="NO_SHOW",
    )
    zulu = Appointment(
        appointment_id="a-2",
        client_id="c-1",
        service_id="s-1",
        start_at="2026-03-01T10:00:00Z",
        end_at="2026-03-01T10:50:00Z",
        status="NO_SHOW",
    )
    events = derive_events_from_appointments([naive, zulu])
    no_shows = [event for event in events if event.event_type == EVENT_BOOKING_NO_SHOW]
    assert no_shows[0].timestamp == no_shows[1].timestamp == datetime(
        2026, 3, 1, 10, 0, tzinfo=timezone.utc
    )


def test_derive_events_by_client_groups_streams():
    appointments = [
        _appointment("a-1", "COMPLETED", NOW - timedelta(days=1), client_id="c-2"),
        _appointment("a-2", "COMPLETED", NOW - timedelta(days=2), client_id="c-1"),
    ]
    grouped = derive_events_by_client(appointments)

    assert list(grouped) == ["c-1", "c-2"]
    assert all(event.client_id == "c-1" for event in grouped["c-1"])
    assert len(grouped["c-2"]) == 2
