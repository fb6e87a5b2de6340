"""Projection of appointment records into normalized behavior events.

Events are never stored. They are recomputed from the current appointment
snapshot on every evaluation, so ids are derived from the appointment id and
event type rather than from a counter or the clock.

Derivation rules:

* every appointment emits ``booking_created`` at its creation time, or at
  ``start_at - BOOKING_CREATED_PROXY_HOURS`` when the store has no creation
  timestamp (capped at the cancellation time for cancelled bookings);
* ``COMPLETED``/``INVOICED`` emit ``booking_completed`` at ``start_at``;
* ``CANCELLED`` emits ``booking_cancelled`` at ``cancelled_at`` (or
  ``start_at``) with the lead time in hours, clamped to >= 0;
* ``NO_SHOW`` emits ``booking_no_show`` at ``start_at``;
* every event carries the appointment start so open bookings that have
  not happened yet can be told apart from unresolved past ones;
* a ``REFUNDED`` payment adds no event. Refunds are read straight from the
  appointments by the recommendation generator.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional

from clinic_insights.domain.models import (
    ATTENDED_STATUSES,
    CANCELLED_BY_VALUES,
    EVENT_BOOKING_CANCELLED,
    EVENT_BOOKING_COMPLETED,
    EVENT_BOOKING_CREATED,
    EVENT_BOOKING_NO_SHOW,
    EVENT_TYPES,
    STATUS_CANCELLED,
    STATUS_NO_SHOW,
    Appointment,
    BehaviorEvent,
)
from clinic_insights.utils.timeutils import hours_between, parse_timestamp


BOOKING_CREATED_PROXY_HOURS = 24

_LIFECYCLE_ORDER = {event_type: index for index, event_type in enumerate(EVENT_TYPES)}


def _event_id(appointment_id: str, event_type: str) -> str:
    return f"{appointment_id}:{event_type}"


def _creation_time(
    appointment: Appointment,
    start_at: Optional[datetime],
    cancelled_at: Optional[datetime],
) -> Optional[datetime]:
    created_at = parse_timestamp(appointment.created_at)
    if created_at is None and start_at is not None:
        created_at = start_at - timedelta(hours=BOOKING_CREATED_PROXY_HOURS)
    if created_at is not None and cancelled_at is not None and cancelled_at < created_at:
        created_at = cancelled_at
    return created_at


def _cancelled_by(appointment: Appointment) -> str:
    if appointment.cancelled_by in CANCELLED_BY_VALUES:
        return appointment.cancelled_by
    return "client"


def _events_for_appointment(appointment: Appointment) -> list[BehaviorEvent]:
    start_at = parse_timestamp(appointment.start_at)
    cancelled_at = None
    if appointment.status == STATUS_CANCELLED:
        cancelled_at = parse_timestamp(appointment.cancelled_at) or start_at

    events = [
        BehaviorEvent(
            event_id=_event_id(appointment.appointment_id, EVENT_BOOKING_CREATED),
            client_id=appointment.client_id,
            event_type=EVENT_BOOKING_CREATED,
            timestamp=_creation_time(appointment, start_at, cancelled_at),
            appointment_id=appointment.appointment_id,
            service_id=appointment.service_id,
            appointment_start=start_at,
        )
    ]

    if appointment.status in ATTENDED_STATUSES:
        outcome_type = EVENT_BOOKING_COMPLETED
        outcome_extra: dict[str, object] = {}
        outcome_at = start_at
    elif appointment.status == STATUS_NO_SHOW:
        outcome_type = EVENT_BOOKING_NO_SHOW
        outcome_extra = {}
        outcome_at = start_at
    elif appointment.status == STATUS_CANCELLED:
        outcome_type = EVENT_BOOKING_CANCELLED
        lead_hours = None
        if start_at is not None and cancelled_at is not None:
            lead_hours = max(0.0, hours_between(cancelled_at, start_at))
        outcome_extra = {
            "cancelled_by": _cancelled_by(appointment),
            "hours_before_appointment": lead_hours,
        }
        outcome_at = cancelled_at
    else:
        return events

    events.append(
        BehaviorEvent(
            event_id=_event_id(appointment.appointment_id, outcome_type),
            client_id=appointment.client_id,
            event_type=outcome_type,
            timestamp=outcome_at,
            appointment_id=appointment.appointment_id,
            service_id=appointment.service_id,
            appointment_start=start_at,
            **outcome_extra,
        )
    )
    return events


def sort_events(events: Iterable[BehaviorEvent]) -> list[BehaviorEvent]:
    """Order by timestamp; ties by appointment and lifecycle; undated last."""
    return sorted(
        events,
        key=lambda event: (
            event.timestamp is None,
            event.timestamp.timestamp() if event.timestamp is not None else 0.0,
            event.appointment_id or "",
            _LIFECYCLE_ORDER.get(event.event_type, len(_LIFECYCLE_ORDER)),
            event.event_id,
        ),
    )


def derive_events_from_appointments(appointments: Iterable[Appointment]) -> list[BehaviorEvent]:
    """Map appointment records (any order) to events sorted ascending by time."""
    events: list[BehaviorEvent] = []
    for appointment in appointments:
        events.extend(_events_for_appointment(appointment))
    return sort_events(events)


def derive_events_by_client(
    appointments: Iterable[Appointment],
) -> dict[str, list[BehaviorEvent]]:
    grouped: dict[str, list[Appointment]] = defaultdict(list)
    for appointment in appointments:
        grouped[appointment.client_id].append(appointment)
    return {
        client_id: derive_events_from_appointments(client_appointments)
        for client_id, client_appointments in sorted(grouped.items())
    }
