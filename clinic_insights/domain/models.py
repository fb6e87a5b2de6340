"""Domain models for behavior profiling, recommendations and waitlist matching."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from clinic_insights.utils.timeutils import to_iso


# Appointment lifecycle
STATUS_SCHEDULED = "SCHEDULED"
STATUS_PAID = "PAID"
STATUS_UNPAID = "UNPAID"
STATUS_INVOICED = "INVOICED"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"
STATUS_NO_SHOW = "NO_SHOW"

BOOKED_STATUSES = frozenset({STATUS_SCHEDULED, STATUS_PAID, STATUS_UNPAID})
ATTENDED_STATUSES = frozenset({STATUS_COMPLETED, STATUS_INVOICED})

PAYMENT_UNPAID = "UNPAID"
PAYMENT_PAID = "PAID"
PAYMENT_REFUNDED = "REFUNDED"

ROLE_CLIENT = "CLIENT"

# Behavior events
EVENT_BOOKING_CREATED = "booking_created"
EVENT_BOOKING_COMPLETED = "booking_completed"
EVENT_BOOKING_CANCELLED = "booking_cancelled"
EVENT_BOOKING_NO_SHOW = "booking_no_show"
EVENT_BOOKING_REFUNDED = "booking_refunded"

EVENT_TYPES = (
    EVENT_BOOKING_CREATED,
    EVENT_BOOKING_COMPLETED,
    EVENT_BOOKING_CANCELLED,
    EVENT_BOOKING_NO_SHOW,
    EVENT_BOOKING_REFUNDED,
)
OUTCOME_EVENT_TYPES = frozenset(
    {EVENT_BOOKING_COMPLETED, EVENT_BOOKING_CANCELLED, EVENT_BOOKING_NO_SHOW}
)

CANCELLED_BY_VALUES = ("client", "staff", "system")

# Notification channels
CHANNEL_SMS = "SMS"
CHANNEL_EMAIL = "EMAIL"
CHANNEL_PUSH = "PUSH"
CHANNEL_IN_APP = "IN_APP"

# Recommendation types
REC_INACTIVE_CALL = "INACTIVE_CALL"
REC_WAITLIST_FOLLOW_UP = "WAITLIST_FOLLOW_UP"
REC_CANCELLATION_RISK_REMINDER = "CANCELLATION_RISK_REMINDER"
REC_NO_SHOW_FOLLOW_UP = "NO_SHOW_FOLLOW_UP"
REC_REENGAGE_AFTER_REFUND = "REENGAGE_AFTER_REFUND"
REC_UPSELL_GROUP = "UPSELL_GROUP"
REC_SLOT_FILL_OFFER = "SLOT_FILL_OFFER"
REC_REMINDER_UPCOMING = "REMINDER_UPCOMING"
REC_REBOOK_AFTER_COMPLETED = "REBOOK_AFTER_COMPLETED"

RECOMMENDATION_TYPES = (
    REC_INACTIVE_CALL,
    REC_WAITLIST_FOLLOW_UP,
    REC_CANCELLATION_RISK_REMINDER,
    REC_NO_SHOW_FOLLOW_UP,
    REC_REENGAGE_AFTER_REFUND,
    REC_UPSELL_GROUP,
    REC_SLOT_FILL_OFFER,
    REC_REMINDER_UPCOMING,
    REC_REBOOK_AFTER_COMPLETED,
)


@dataclass(frozen=True)
class Appointment:
    """Appointment row as exposed by the store; timestamps stay ISO strings."""

    appointment_id: str
    client_id: str
    service_id: str
    start_at: str
    end_at: str
    status: str
    payment_status: str = PAYMENT_UNPAID
    employee_id: Optional[str] = None
    cancelled_at: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class WaitlistEntry:
    entry_id: str
    client_id: str
    service_id: str
    created_at: str
    priority: Optional[int] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class User:
    user_id: str
    name: str
    role: str
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class Service:
    service_id: str
    name: str
    is_group: bool = False


@dataclass(frozen=True)
class BehaviorEvent:
    event_id: str
    client_id: str
    event_type: str
    timestamp: Optional[datetime]
    appointment_id: Optional[str] = None
    service_id: Optional[str] = None
    cancelled_by: Optional[str] = None
    hours_before_appointment: Optional[float] = None
    appointment_start: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = to_iso(self.timestamp)
        payload["appointment_start"] = to_iso(self.appointment_start)
        return payload


@dataclass(frozen=True)
class BehaviorMetrics:
    scheduled_count: float
    completed_count: float
    cancelled_count: float
    no_show_count: float
    late_cancel_count: float
    attendance_rate: float
    cancel_rate: float
    no_show_rate: float
    late_cancel_rate: float
    avg_cancel_lead_hours: float
    cancel_frequency_per_month: float
    sample_size: int
    raw_completed_count: int
    raw_cancelled_count: int
    raw_no_show_count: int
    days_since_last_activity: Optional[float]
    window_days: int
    window_end: datetime
    recency_weighting: bool

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["window_end"] = to_iso(self.window_end)
        return payload


@dataclass(frozen=True)
class BehaviorScores:
    reliability_score: float
    engagement_score: float
    cancellation_risk_score: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class BehaviorTag:
    tag_id: str
    name: str
    reason: str
    strength: str
    window_days: int
    valid_until: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NotificationStrategy:
    preferred_channel: str
    channel_order: tuple[str, ...]
    max_per_day: int
    max_per_week: int
    preferred_hours_start: int
    preferred_hours_end: int
    cooldown_minutes_after_ignored: int
    ignored_before_cooldown: int
    content_hint: str
    rationale: str

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["channel_order"] = list(self.channel_order)
        return payload


@dataclass(frozen=True)
class BehaviorProfile:
    client_id: str
    metrics: BehaviorMetrics
    scores: BehaviorScores
    tags: tuple[BehaviorTag, ...]
    notification_strategy: NotificationStrategy
    evaluated_at: datetime

    @property
    def tag_ids(self) -> tuple[str, ...]:
        return tuple(tag.tag_id for tag in self.tags)

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "metrics": self.metrics.to_dict(),
            "scores": self.scores.to_dict(),
            "tags": [tag.to_dict() for tag in self.tags],
            "notification_strategy": self.notification_strategy.to_dict(),
            "evaluated_at": to_iso(self.evaluated_at),
        }


@dataclass(frozen=True)
class EvaluationRecord:
    """Audit detail for one profile evaluation; persisted by callers."""

    record_id: str
    client_id: str
    evaluated_at: datetime
    previous_scores: Optional[BehaviorScores]
    new_scores: BehaviorScores
    reason: str
    trigger_event: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "client_id": self.client_id,
            "evaluated_at": to_iso(self.evaluated_at),
            "previous_scores": (
                self.previous_scores.to_dict() if self.previous_scores is not None else None
            ),
            "new_scores": self.new_scores.to_dict(),
            "reason": self.reason,
            "trigger_event": self.trigger_event,
        }


@dataclass(frozen=True)
class ClientRecommendation:
    recommendation_id: str
    client_id: str
    client_name: str
    recommendation_type: str
    reason: str
    priority: int
    suggested_action: str
    related_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WaitlistSuggestion:
    entry: WaitlistEntry
    score: float
    score_reasons: tuple[str, ...]
    priority_bucket: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry": self.entry.to_dict(),
            "score": self.score,
            "score_reasons": list(self.score_reasons),
            "priority_bucket": self.priority_bucket,
        }
