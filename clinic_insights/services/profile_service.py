"""Behavior profile assembly and repository-backed evaluation workflow."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import uuid4

from clinic_insights.domain.constraints import BehaviorConfig, validate_behavior_config
from clinic_insights.domain.models import (
    ROLE_CLIENT,
    BehaviorEvent,
    BehaviorProfile,
    BehaviorScores,
    EvaluationRecord,
)
from clinic_insights.repository.data_repository import DataRepository
from clinic_insights.services.event_deriver import derive_events_by_client, derive_events_from_appointments
from clinic_insights.services.metrics_service import compute_metrics
from clinic_insights.services.notification_service import select_notification_strategy
from clinic_insights.services.scoring_service import compute_scores
from clinic_insights.services.tagging_service import DEFAULT_TAG_RULES, TagRule, assign_tags
from clinic_insights.utils.config import Settings, get_settings
from clinic_insights.utils.logger import get_logger
from clinic_insights.utils.timeutils import utc_now


logger = get_logger(__name__)


_SCORE_LABELS = (
    ("reliability_score", "reliability"),
    ("engagement_score", "engagement"),
    ("cancellation_risk_score", "cancellation risk"),
)


class ProfileError(Exception):
    """Base exception for profile evaluation failures."""


class InvalidClientIdError(ProfileError, ValueError):
    """Raised when a client id is absent or blank."""


class ClientNotFoundError(ProfileError):
    """Raised when the user directory has no such client."""


@dataclass(frozen=True)
class ProfileBatch:
    profiles: dict[str, BehaviorProfile] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)


def validate_client_id(client_id: object) -> str:
    if not isinstance(client_id, str) or not client_id.strip():
        raise InvalidClientIdError("client_id must be a non-empty string")
    return client_id


def compute_behavior_profile(
    client_id: str,
    events: Iterable[BehaviorEvent],
    *,
    now: Optional[datetime] = None,
    config: Optional[BehaviorConfig] = None,
    waitlist_entry_count: int = 0,
    rules: Sequence[TagRule] = DEFAULT_TAG_RULES,
) -> BehaviorProfile:
    """Compose metrics, scores, tags and channel strategy for one client.

    Events belonging to other clients are ignored. Identical inputs always
    produce an equal profile, including tag order.
    """
    validate_client_id(client_id)
    config = config or BehaviorConfig()
    validate_behavior_config(config)
    now = now or utc_now()

    client_events = tuple(event for event in events if event.client_id == client_id)
    metrics = compute_metrics(client_events, now=now, config=config)
    scores = compute_scores(
        metrics,
        config=config,
        waitlist_entry_count=waitlist_entry_count,
    )
    tags = assign_tags(metrics, scores, client_events, now=now, config=config, rules=rules)
    strategy = select_notification_strategy(scores, tags, config=config)
    return BehaviorProfile(
        client_id=client_id,
        metrics=metrics,
        scores=scores,
        tags=tags,
        notification_strategy=strategy,
        evaluated_at=now,
    )


def latest_event_type(events: Iterable[BehaviorEvent], now: datetime) -> Optional[str]:
    past = [event for event in events if event.timestamp is not None and event.timestamp <= now]
    if not past:
        return None
    return max(past, key=lambda event: (event.timestamp, event.event_id)).event_type


def describe_score_change(
    previous: Optional[BehaviorScores],
    current: BehaviorScores,
) -> str:
    if previous is None:
        parts = [
            f"{label} {getattr(current, attr):.1f}"
            for attr, label in _SCORE_LABELS
        ]
        return "First evaluation: " + ", ".join(parts)

    parts = []
    for attr, label in _SCORE_LABELS:
        before = getattr(previous, attr)
        after = getattr(current, attr)
        if after > before:
            parts.append(f"{label} score increased from {before:.1f} to {after:.1f}")
        elif after < before:
            parts.append(f"{label} score decreased from {before:.1f} to {after:.1f}")
    if not parts:
        return "Scores unchanged"
    text = "; ".join(parts)
    return text[0].upper() + text[1:]


def build_evaluation_record(
    previous_scores: Optional[BehaviorScores],
    profile: BehaviorProfile,
    trigger_event: Optional[str] = None,
) -> EvaluationRecord:
    """Audit detail a caller can persist for one evaluation."""
    reason = describe_score_change(previous_scores, profile.scores)
    if profile.tags:
        reason += "; tags: " + ", ".join(profile.tag_ids)
    else:
        reason += "; no tags"
    return EvaluationRecord(
        record_id=uuid4().hex,
        client_id=profile.client_id,
        evaluated_at=profile.evaluated_at,
        previous_scores=previous_scores,
        new_scores=profile.scores,
        reason=reason + ".",
        trigger_event=trigger_event,
    )


class BehaviorProfileService:
    """Loads client history from the store and evaluates behavior profiles."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        config: Optional[BehaviorConfig] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._config = config or self._settings.behavior_config()
        validate_behavior_config(self._config)

    @property
    def config(self) -> BehaviorConfig:
        return self._config

    def _require_client(self, client_id: str) -> None:
        validate_client_id(client_id)
        user = self._repository.get_user(client_id)
        if user is None or user.role != ROLE_CLIENT:
            raise ClientNotFoundError(f"client_id {client_id} not found")

    def _client_events(self, client_id: str) -> list[BehaviorEvent]:
        return derive_events_from_appointments(
            self._repository.list_appointments(client_id=client_id)
        )

    def evaluate_client(
        self,
        client_id: str,
        *,
        now: Optional[datetime] = None,
        config: Optional[BehaviorConfig] = None,
    ) -> BehaviorProfile:
        self._require_client(client_id)
        now = now or utc_now()
        events = self._client_events(client_id)
        waitlist_count = len(self._repository.list_waitlist(client_id=client_id))
        profile = compute_behavior_profile(
            client_id,
            events,
            now=now,
            config=config or self._config,
            waitlist_entry_count=waitlist_count,
        )
        logger.info(
            (
                "Profile evaluated | client_id=%s | reliability=%.2f | engagement=%.2f | "
                "cancellation_risk=%.2f | tags=%s"
            ),
            client_id,
            profile.scores.reliability_score,
            profile.scores.engagement_score,
            profile.scores.cancellation_risk_score,
            ",".join(profile.tag_ids) or "-",
        )
        return profile

    def evaluate_and_record(
        self,
        client_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> tuple[BehaviorProfile, EvaluationRecord]:
        """Evaluate, then append an audit record against the previous run."""
        now = now or utc_now()
        profile = self.evaluate_client(client_id, now=now)
        previous = self._repository.get_latest_evaluation(client_id)
        events = self._client_events(client_id)
        record = build_evaluation_record(
            previous.new_scores if previous is not None else None,
            profile,
            trigger_event=latest_event_type(events, now),
        )
        self._repository.save_evaluation_record(record)
        logger.info(
            "Evaluation recorded | client_id=%s | record_id=%s | trigger=%s",
            client_id,
            record.record_id,
            record.trigger_event,
        )
        return profile, record

    def list_evaluations(self, client_id: str, limit: Optional[int] = None) -> list[EvaluationRecord]:
        self._require_client(client_id)
        return self._repository.list_evaluation_records(
            client_id=client_id,
            limit=limit or self._settings.evaluation_log_limit,
        )

    def evaluate_clients(
        self,
        client_ids: Optional[Sequence[str]] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ProfileBatch:
        """Evaluate many clients; one client's failure never aborts the rest."""
        now = now or utc_now()
        if client_ids is None:
            client_ids = [user.user_id for user in self._repository.list_users(role=ROLE_CLIENT)]
        events_by_client = derive_events_by_client(self._repository.list_appointments())
        waitlist_counts = Counter(entry.client_id for entry in self._repository.list_waitlist())

        batch = ProfileBatch()
        for client_id in client_ids:
            try:
                batch.profiles[client_id] = compute_behavior_profile(
                    client_id,
                    events_by_client.get(client_id, []),
                    now=now,
                    config=self._config,
                    waitlist_entry_count=waitlist_counts.get(client_id, 0),
                )
            except Exception as exc:
                logger.exception("Profile evaluation failed | client_id=%s", client_id)
                batch.failures[str(client_id)] = str(exc)
        logger.info(
            "Batch evaluation completed | profiles=%s | failures=%s",
            len(batch.profiles),
            len(batch.failures),
        )
        return batch
