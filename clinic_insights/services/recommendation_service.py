"""Cross-client outreach recommendations built from profiles and booking state.

Every client is evaluated independently. A failure while building one
client's recommendations is logged and captured in
``RecommendationBatch.failures`` and the remaining clients are still served.
Output order is total: priority, then how time-sensitive the trigger is,
then client id and related id, so repeated runs over unchanged input return
the same list.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping, Optional, Sequence

from clinic_insights.domain.constraints import BehaviorConfig, validate_behavior_config
from clinic_insights.domain.models import (
    BOOKED_STATUSES,
    PAYMENT_REFUNDED,
    REC_CANCELLATION_RISK_REMINDER,
    REC_INACTIVE_CALL,
    REC_NO_SHOW_FOLLOW_UP,
    REC_REBOOK_AFTER_COMPLETED,
    REC_REENGAGE_AFTER_REFUND,
    REC_REMINDER_UPCOMING,
    REC_SLOT_FILL_OFFER,
    REC_UPSELL_GROUP,
    REC_WAITLIST_FOLLOW_UP,
    ROLE_CLIENT,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_INVOICED,
    STATUS_NO_SHOW,
    STATUS_PAID,
    STATUS_UNPAID,
    Appointment,
    BehaviorProfile,
    ClientRecommendation,
    Service,
    User,
    WaitlistEntry,
)
from clinic_insights.repository.data_repository import DataRepository
from clinic_insights.services.profile_service import BehaviorProfileService
from clinic_insights.services.tagging_service import CANCELLATION_TAGS, TAG_AT_RISK_NO_SHOW
from clinic_insights.services.waitlist_service import effective_priority, suggest_waitlist_candidates
from clinic_insights.utils.config import Settings, get_settings
from clinic_insights.utils.logger import get_logger
from clinic_insights.utils.timeutils import days_between, parse_timestamp, utc_now


logger = get_logger(__name__)


# Statuses that count as a visit once the appointment has ended.
VISIT_STATUSES = frozenset({STATUS_COMPLETED, STATUS_INVOICED, STATUS_PAID, STATUS_UNPAID})

PRIORITY_BY_TYPE: dict[str, int] = {
    REC_INACTIVE_CALL: 1,
    REC_CANCELLATION_RISK_REMINDER: 1,
    REC_SLOT_FILL_OFFER: 2,
    REC_NO_SHOW_FOLLOW_UP: 2,
    REC_WAITLIST_FOLLOW_UP: 2,
    REC_REENGAGE_AFTER_REFUND: 3,
    REC_UPSELL_GROUP: 3,
    REC_REMINDER_UPCOMING: 4,
    REC_REBOOK_AFTER_COMPLETED: 4,
}
AT_RISK_REMINDER_PRIORITY = 2

# Lower rank sorts first within the same priority.
TIME_SENSITIVITY_RANK: dict[str, int] = {
    REC_REMINDER_UPCOMING: 0,
    REC_CANCELLATION_RISK_REMINDER: 1,
    REC_SLOT_FILL_OFFER: 2,
    REC_NO_SHOW_FOLLOW_UP: 3,
    REC_WAITLIST_FOLLOW_UP: 4,
    REC_INACTIVE_CALL: 5,
    REC_REENGAGE_AFTER_REFUND: 6,
    REC_REBOOK_AFTER_COMPLETED: 7,
    REC_UPSELL_GROUP: 8,
}


@dataclass(frozen=True)
class RecommendationContext:
    users: Sequence[User]
    appointments: Sequence[Appointment]
    waitlist: Sequence[WaitlistEntry]
    services: Sequence[Service] = ()
    profiles: Mapping[str, BehaviorProfile] = field(default_factory=dict)
    now: Optional[datetime] = None
    config: BehaviorConfig = field(default_factory=BehaviorConfig)


@dataclass(frozen=True)
class RecommendationBatch:
    recommendations: list[ClientRecommendation] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class _TimedAppointment:
    appointment: Appointment
    start: Optional[datetime]
    end: Optional[datetime]
    cancelled: Optional[datetime]


def _timed(appointment: Appointment) -> _TimedAppointment:
    start = parse_timestamp(appointment.start_at)
    end = parse_timestamp(appointment.end_at) or start
    return _TimedAppointment(
        appointment=appointment,
        start=start,
        end=end,
        cancelled=parse_timestamp(appointment.cancelled_at),
    )


def recommendation_id(client_id: str, recommendation_type: str, related_id: Optional[str]) -> str:
    return f"rec:{client_id}:{recommendation_type.lower()}:{related_id or '-'}"


def sort_key(recommendation: ClientRecommendation) -> tuple:
    return (
        recommendation.priority,
        TIME_SENSITIVITY_RANK.get(recommendation.recommendation_type, len(TIME_SENSITIVITY_RANK)),
        recommendation.client_id,
        recommendation.related_id or "",
        recommendation.recommendation_type,
    )


def _recommendation(
    client: User,
    recommendation_type: str,
    reason: str,
    suggested_action: str,
    related_id: Optional[str] = None,
    priority: Optional[int] = None,
) -> ClientRecommendation:
    return ClientRecommendation(
        recommendation_id=recommendation_id(client.user_id, recommendation_type, related_id),
        client_id=client.user_id,
        client_name=client.name,
        recommendation_type=recommendation_type,
        reason=reason,
        priority=priority if priority is not None else PRIORITY_BY_TYPE[recommendation_type],
        suggested_action=suggested_action,
        related_id=related_id,
    )


def _upcoming(
    history: Sequence[_TimedAppointment],
    now: datetime,
    horizon_days: Optional[float] = None,
) -> list[_TimedAppointment]:
    until = now + timedelta(days=horizon_days) if horizon_days is not None else None
    upcoming = [
        item
        for item in history
        if item.appointment.status in BOOKED_STATUSES
        and item.start is not None
        and item.start >= now
        and (until is None or item.start <= until)
    ]
    return sorted(upcoming, key=lambda item: (item.start, item.appointment.appointment_id))


def _last_visit(history: Sequence[_TimedAppointment], now: datetime) -> Optional[_TimedAppointment]:
    visits = [
        item
        for item in history
        if item.appointment.status in VISIT_STATUSES and item.end is not None and item.end <= now
    ]
    if not visits:
        return None
    return max(visits, key=lambda item: (item.end, item.appointment.appointment_id))


def _last_past_appointment(
    history: Sequence[_TimedAppointment],
    now: datetime,
) -> Optional[_TimedAppointment]:
    past = [item for item in history if item.end is not None and item.end <= now]
    if not past:
        return None
    return max(past, key=lambda item: (item.end, item.appointment.appointment_id))


def _recent_refund(
    history: Sequence[_TimedAppointment],
    now: datetime,
    days: int,
) -> Optional[_TimedAppointment]:
    since = now - timedelta(days=days)
    refunds = [
        item
        for item in history
        if item.appointment.payment_status == PAYMENT_REFUNDED
        and item.cancelled is not None
        and since <= item.cancelled <= now
    ]
    if not refunds:
        return None
    return max(refunds, key=lambda item: (item.cancelled, item.appointment.appointment_id))


def find_slot_fill_offers(
    appointments: Sequence[Appointment],
    waitlist: Sequence[WaitlistEntry],
    *,
    now: datetime,
    config: BehaviorConfig,
) -> dict[str, list[tuple[Appointment, WaitlistEntry]]]:
    """Top waitlist candidate per freed slot, keyed by candidate client id.

    A freed slot is a cancelled appointment starting within the slot-fill
    horizon. The client who cancelled is never offered their own slot.
    """
    until = now + timedelta(days=config.slot_fill_horizon_days)
    offers: dict[str, list[tuple[Appointment, WaitlistEntry]]] = defaultdict(list)
    freed = sorted(
        (
            item
            for item in map(_timed, appointments)
            if item.appointment.status == STATUS_CANCELLED
            and item.start is not None
            and now <= item.start <= until
        ),
        key=lambda item: (item.start, item.appointment.appointment_id),
    )
    for slot in freed:
        appointment = slot.appointment
        try:
            candidates = suggest_waitlist_candidates(
                [entry for entry in waitlist if entry.client_id != appointment.client_id],
                appointment.service_id,
                limit=1,
                now=now,
            )
        except Exception:
            logger.exception(
                "Slot fill matching failed | appointment_id=%s",
                appointment.appointment_id,
            )
            continue
        if candidates:
            entry = candidates[0].entry
            offers[entry.client_id].append((appointment, entry))
    return offers


def client_recommendations(
    client: User,
    history: Sequence[Appointment],
    entries: Sequence[WaitlistEntry],
    *,
    profile: Optional[BehaviorProfile],
    slot_offers: Sequence[tuple[Appointment, WaitlistEntry]],
    group_service_ids: frozenset[str],
    now: datetime,
    config: BehaviorConfig,
) -> list[ClientRecommendation]:
    """All recommendations triggered for a single client."""
    timed = [_timed(appointment) for appointment in history]
    tag_ids = frozenset(profile.tag_ids) if profile is not None else frozenset()
    results: list[ClientRecommendation] = []

    last_visit = _last_visit(timed, now)
    days_since_visit = days_between(last_visit.end, now) if last_visit is not None else None
    upcoming_any = _upcoming(timed, now)

    if (
        days_since_visit is not None
        and config.inactive_call_min_days <= days_since_visit < config.inactive_call_max_days
    ):
        results.append(
            _recommendation(
                client,
                REC_INACTIVE_CALL,
                f"Client has not visited for {int(days_since_visit)} days; open slots can be offered.",
                "Call the client and offer an appointment.",
                related_id=last_visit.appointment.appointment_id,
            )
        )

    risk_tags = sorted(tag_ids & CANCELLATION_TAGS)
    upcoming_risk = _upcoming(timed, now, config.cancellation_risk_horizon_days)
    if risk_tags and upcoming_risk:
        target = upcoming_risk[0].appointment
        results.append(
            _recommendation(
                client,
                REC_CANCELLATION_RISK_REMINDER,
                (
                    f"Client is tagged {', '.join(risk_tags)} and has an appointment "
                    f"on {target.start_at}; confirm attendance early."
                ),
                "Send an SMS asking the client to confirm the appointment.",
                related_id=target.appointment_id,
            )
        )

    for appointment, entry in slot_offers:
        results.append(
            _recommendation(
                client,
                REC_SLOT_FILL_OFFER,
                (
                    f"A slot for service {appointment.service_id} on {appointment.start_at} was "
                    f"freed by a cancellation; client is the top waitlist candidate "
                    f"(priority {effective_priority(entry)})."
                ),
                "Offer the freed slot to the client.",
                related_id=appointment.appointment_id,
            )
        )

    last_past = _last_past_appointment(timed, now)
    if last_past is not None and last_past.appointment.status == STATUS_NO_SHOW:
        results.append(
            _recommendation(
                client,
                REC_NO_SHOW_FOLLOW_UP,
                f"Client did not show up for the last appointment on {last_past.appointment.start_at}.",
                "Call the client and arrange a new booking.",
                related_id=last_past.appointment.appointment_id,
            )
        )

    if entries:
        best = sorted(entries, key=effective_priority)[0]
        results.append(
            _recommendation(
                client,
                REC_WAITLIST_FOLLOW_UP,
                (
                    f"Client is on the waitlist for service {best.service_id} "
                    f"(priority {effective_priority(best)}); offer a slot when one frees up."
                ),
                "Contact the client by e-mail or SMS when a matching slot opens.",
                related_id=best.entry_id,
            )
        )

    refund = _recent_refund(timed, now, config.refund_reengage_days)
    if refund is not None and not upcoming_any:
        results.append(
            _recommendation(
                client,
                REC_REENGAGE_AFTER_REFUND,
                (
                    f"Client cancelled with a refund within the last {config.refund_reengage_days} "
                    f"days and has no upcoming booking."
                ),
                "Send an e-mail or call with a new appointment offer.",
                related_id=refund.appointment.appointment_id,
            )
        )

    past_visits = [
        item
        for item in timed
        if item.appointment.status in VISIT_STATUSES and item.end is not None and item.end <= now
    ]
    group_count = sum(1 for item in past_visits if item.appointment.service_id in group_service_ids)
    individual_count = len(past_visits) - group_count
    if individual_count >= config.upsell_min_individual_sessions and group_count == 0:
        results.append(
            _recommendation(
                client,
                REC_UPSELL_GROUP,
                (
                    f"Client attended {individual_count} individual sessions and no group "
                    f"sessions; group therapy could raise occupancy."
                ),
                "Offer group therapy by e-mail or at the next visit.",
            )
        )

    upcoming_soon = _upcoming(timed, now, config.upcoming_reminder_days)
    if upcoming_soon:
        target = upcoming_soon[0].appointment
        at_risk = TAG_AT_RISK_NO_SHOW in tag_ids
        reason = f"Upcoming appointment on {target.start_at}; a reminder lowers no-show risk."
        if at_risk:
            reason += " Client is tagged at_risk_no_show."
        results.append(
            _recommendation(
                client,
                REC_REMINDER_UPCOMING,
                reason,
                "Send an SMS or e-mail reminder for the appointment.",
                related_id=target.appointment_id,
                priority=AT_RISK_REMINDER_PRIORITY if at_risk else None,
            )
        )

    if (
        days_since_visit is not None
        and config.rebook_min_days <= days_since_visit <= config.rebook_max_days
        and not upcoming_any
    ):
        results.append(
            _recommendation(
                client,
                REC_REBOOK_AFTER_COMPLETED,
                (
                    f"Last visit was {int(days_since_visit)} days ago and nothing is booked; "
                    f"offer the next appointment."
                ),
                "Send an e-mail or in-app message with a booking link.",
                related_id=last_visit.appointment.appointment_id,
            )
        )

    return results


def generate_recommendations(context: RecommendationContext) -> RecommendationBatch:
    config = context.config
    validate_behavior_config(config)
    now = context.now or utc_now()

    appointments_by_client: dict[str, list[Appointment]] = defaultdict(list)
    for appointment in context.appointments:
        appointments_by_client[appointment.client_id].append(appointment)
    waitlist_by_client: dict[str, list[WaitlistEntry]] = defaultdict(list)
    for entry in context.waitlist:
        waitlist_by_client[entry.client_id].append(entry)
    group_service_ids = frozenset(
        service.service_id for service in context.services if service.is_group
    )
    slot_offers = find_slot_fill_offers(
        context.appointments,
        context.waitlist,
        now=now,
        config=config,
    )

    batch = RecommendationBatch()
    clients = sorted(
        (user for user in context.users if user.role == ROLE_CLIENT),
        key=lambda user: user.user_id,
    )
    for client in clients:
        try:
            batch.recommendations.extend(
                client_recommendations(
                    client,
                    appointments_by_client.get(client.user_id, []),
                    waitlist_by_client.get(client.user_id, []),
                    profile=context.profiles.get(client.user_id),
                    slot_offers=slot_offers.get(client.user_id, []),
                    group_service_ids=group_service_ids,
                    now=now,
                    config=config,
                )
            )
        except Exception as exc:
            logger.exception("Recommendation generation failed | client_id=%s", client.user_id)
            batch.failures[client.user_id] = str(exc)

    batch.recommendations.sort(key=sort_key)
    logger.info(
        "Recommendations completed | clients=%s | recommendations=%s | failures=%s",
        len(clients),
        len(batch.recommendations),
        len(batch.failures),
    )
    return batch


def compute_recommendations(context: RecommendationContext) -> list[ClientRecommendation]:
    return generate_recommendations(context).recommendations


class RecommendationService:
    """Assembles a recommendation context from the store and profiles."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        profile_service: Optional[BehaviorProfileService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._profile_service = profile_service or BehaviorProfileService(
            repository=self._repository,
            settings=self._settings,
        )

    def list_recommendations(self, *, now: Optional[datetime] = None) -> RecommendationBatch:
        now = now or utc_now()
        profiles = self._profile_service.evaluate_clients(now=now).profiles
        context = RecommendationContext(
            users=self._repository.list_users(role=ROLE_CLIENT),
            appointments=self._repository.list_appointments(),
            waitlist=self._repository.list_waitlist(),
            services=self._repository.list_services(),
            profiles=profiles,
            now=now,
            config=self._profile_service.config,
        )
        return generate_recommendations(context)
