"""Waitlist candidate ordering for a freed appointment slot."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from clinic_insights.domain.models import WaitlistEntry, WaitlistSuggestion
from clinic_insights.repository.data_repository import DataRepository
from clinic_insights.services.scoring_service import SCORE_MAX, clamp
from clinic_insights.utils.config import Settings, get_settings
from clinic_insights.utils.logger import get_logger
from clinic_insights.utils.timeutils import days_between, parse_timestamp, utc_now


logger = get_logger(__name__)


DEFAULT_SUGGESTION_LIMIT = 20
DEFAULT_PRIORITY = 0
SCORE_STEP_PER_PRIORITY = 10.0


class WaitlistValidationError(Exception):
    """Raised when waitlist suggestion inputs are invalid."""


def effective_priority(entry: WaitlistEntry) -> int:
    return entry.priority if entry.priority is not None else DEFAULT_PRIORITY


def priority_bucket(priority: int) -> str:
    if priority <= 0:
        return "high"
    if priority <= 2:
        return "normal"
    return "low"


def _score_reasons(entry: WaitlistEntry, now: datetime) -> tuple[str, ...]:
    priority = effective_priority(entry)
    if entry.priority is None:
        reasons = [f"Priority {priority} (default, none set)"]
    else:
        reasons = [f"Priority {priority}"]
    created = parse_timestamp(entry.created_at)
    if created is not None and created <= now:
        reasons.append(f"Waiting for {int(days_between(created, now))} day(s)")
    return tuple(reasons)


def _validate_inputs(service_id: str, limit: int) -> None:
    if not isinstance(service_id, str) or not service_id.strip():
        raise WaitlistValidationError("service_id must be a non-empty string")
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise WaitlistValidationError("limit must be a positive integer")


def suggest_waitlist_candidates(
    entries: Iterable[WaitlistEntry],
    service_id: str,
    limit: int = DEFAULT_SUGGESTION_LIMIT,
    *,
    now: Optional[datetime] = None,
) -> list[WaitlistSuggestion]:
    """Rank waitlist entries for ``service_id``.

    Lower numeric priority ranks first and a missing priority counts as 0.
    The sort is stable, so ties keep their input order. Each client keeps
    only its first entry after sorting, and ``limit`` is applied to the
    deduplicated list.
    """
    _validate_inputs(service_id, limit)
    now = now or utc_now()

    matching = [entry for entry in entries if entry.service_id == service_id]
    ranked = sorted(matching, key=effective_priority)

    seen_clients: set[str] = set()
    suggestions: list[WaitlistSuggestion] = []
    for entry in ranked:
        if entry.client_id in seen_clients:
            continue
        seen_clients.add(entry.client_id)
        priority = effective_priority(entry)
        suggestions.append(
            WaitlistSuggestion(
                entry=entry,
                score=clamp(SCORE_MAX - SCORE_STEP_PER_PRIORITY * priority),
                score_reasons=_score_reasons(entry, now),
                priority_bucket=priority_bucket(priority),
            )
        )
        if len(suggestions) >= limit:
            break
    return suggestions


class WaitlistService:
    """Serves waitlist suggestions straight from the store."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def suggest(
        self,
        service_id: str,
        limit: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> list[WaitlistSuggestion]:
        limit = self._settings.waitlist_suggestion_limit if limit is None else limit
        _validate_inputs(service_id, limit)
        suggestions = suggest_waitlist_candidates(
            self._repository.list_waitlist(service_id=service_id),
            service_id,
            limit,
            now=now,
        )
        logger.info(
            "Waitlist suggestions completed | service_id=%s | limit=%s | candidates=%s",
            service_id,
            limit,
            len(suggestions),
        )
        return suggestions
