"""HTTP controller layer for client behavior profiles and outreach."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from clinic_insights.controllers.dependencies import (
    get_profile_service,
    get_recommendation_service,
    get_waitlist_service,
    require_admin,
)
from clinic_insights.domain.models import RECOMMENDATION_TYPES
from clinic_insights.services.profile_service import (
    BehaviorProfileService,
    ClientNotFoundError,
    InvalidClientIdError,
)
from clinic_insights.services.recommendation_service import RecommendationService
from clinic_insights.services.waitlist_service import WaitlistService, WaitlistValidationError
from clinic_insights.utils.logger import get_logger
from clinic_insights.utils.timeutils import parse_timestamp


logger = get_logger(__name__)

router = APIRouter(tags=["behavior"], dependencies=[Depends(require_admin)])


class MetricsResponse(BaseModel):
    scheduled_count: float = Field(ge=0.0)
    completed_count: float = Field(ge=0.0)
    cancelled_count: float = Field(ge=0.0)
    no_show_count: float = Field(ge=0.0)
    late_cancel_count: float = Field(ge=0.0)
    attendance_rate: float = Field(ge=0.0, le=1.0)
    cancel_rate: float = Field(ge=0.0, le=1.0)
    no_show_rate: float = Field(ge=0.0, le=1.0)
    late_cancel_rate: float = Field(ge=0.0, le=1.0)
    avg_cancel_lead_hours: float = Field(ge=0.0)
    cancel_frequency_per_month: float = Field(ge=0.0)
    sample_size: int = Field(ge=0)
    raw_completed_count: int = Field(ge=0)
    raw_cancelled_count: int = Field(ge=0)
    raw_no_show_count: int = Field(ge=0)
    days_since_last_activity: Optional[float] = None
    window_days: int = Field(gt=0)
    window_end: datetime
    recency_weighting: bool


class ScoresResponse(BaseModel):
    """Bounded behavior scores."""

    reliability_score: float = Field(ge=0.0, le=100.0)
    engagement_score: float = Field(ge=0.0, le=100.0)
    cancellation_risk_score: float = Field(ge=0.0, le=100.0)


class TagResponse(BaseModel):
    tag_id: str
    name: str
    reason: str = Field(min_length=1)
    strength: str
    window_days: int
    valid_until: str


class NotificationStrategyResponse(BaseModel):
    preferred_channel: str
    channel_order: list[str]
    max_per_day: int = Field(ge=0)
    max_per_week: int = Field(ge=0)
    preferred_hours_start: int = Field(ge=0, le=23)
    preferred_hours_end: int = Field(ge=1, le=24)
    cooldown_minutes_after_ignored: int = Field(ge=0)
    ignored_before_cooldown: int = Field(ge=1)
    content_hint: str
    rationale: str


class ProfileResponse(BaseModel):
    client_id: str
    metrics: MetricsResponse
    scores: ScoresResponse
    tags: list[TagResponse]
    notification_strategy: NotificationStrategyResponse
    evaluated_at: datetime


class EvaluationRecordResponse(BaseModel):
    record_id: str
    client_id: str
    evaluated_at: datetime
    previous_scores: Optional[ScoresResponse] = None
    new_scores: ScoresResponse
    reason: str
    trigger_event: Optional[str] = None


class EvaluateResponse(BaseModel):
    profile: ProfileResponse
    record: EvaluationRecordResponse


class EvaluationListResponse(BaseModel):
    client_id: str
    evaluations: list[EvaluationRecordResponse]


class RecommendationResponse(BaseModel):
    recommendation_id: str
    client_id: str
    client_name: str
    recommendation_type: str
    reason: str
    priority: int = Field(ge=1)
    suggested_action: str
    related_id: Optional[str] = None


class RecommendationListResponse(BaseModel):
    recommendations: list[RecommendationResponse]
    failures: dict[str, str]


class WaitlistEntryResponse(BaseModel):
    entry_id: str
    client_id: str
    service_id: str
    created_at: str
    priority: Optional[int] = None
    notes: Optional[str] = None


class WaitlistSuggestionResponse(BaseModel):
    entry: WaitlistEntryResponse
    score: float = Field(ge=0.0, le=100.0)
    score_reasons: list[str]
    priority_bucket: str


class WaitlistSuggestionListResponse(BaseModel):
    service_id: str
    suggestions: list[WaitlistSuggestionResponse]


def _client_error(exc: Exception) -> HTTPException:
    if isinstance(exc, InvalidClientIdError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.get(
    "/clients/{client_id}/profile",
    response_model=ProfileResponse,
    status_code=status.HTTP_200_OK,
)
async def get_client_profile(
    client_id: str,
    as_of: Optional[datetime] = Query(default=None),
    profile_service: BehaviorProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    try:
        profile = profile_service.evaluate_client(client_id, now=parse_timestamp(as_of))
        return ProfileResponse(**profile.to_dict())
    except (InvalidClientIdError, ClientNotFoundError) as exc:
        raise _client_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected profile failure | client_id=%s", client_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute behavior profile",
        ) from exc


@router.post(
    "/clients/{client_id}/evaluate",
    response_model=EvaluateResponse,
    status_code=status.HTTP_200_OK,
)
async def evaluate_client(
    client_id: str,
    as_of: Optional[datetime] = Query(default=None),
    profile_service: BehaviorProfileService = Depends(get_profile_service),
) -> EvaluateResponse:
    try:
        profile, record = profile_service.evaluate_and_record(
            client_id,
            now=parse_timestamp(as_of),
        )
        return EvaluateResponse(profile=profile.to_dict(), record=record.to_dict())
    except (InvalidClientIdError, ClientNotFoundError) as exc:
        raise _client_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected evaluation failure | client_id=%s", client_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to evaluate client",
        ) from exc


@router.get(
    "/clients/{client_id}/evaluations",
    response_model=EvaluationListResponse,
    status_code=status.HTTP_200_OK,
)
async def list_client_evaluations(
    client_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    profile_service: BehaviorProfileService = Depends(get_profile_service),
) -> EvaluationListResponse:
    try:
        records = profile_service.list_evaluations(client_id, limit=limit)
        return EvaluationListResponse(
            client_id=client_id,
            evaluations=[record.to_dict() for record in records],
        )
    except (InvalidClientIdError, ClientNotFoundError) as exc:
        raise _client_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected evaluation log failure | client_id=%s", client_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load evaluation log",
        ) from exc


@router.get(
    "/recommendations",
    response_model=RecommendationListResponse,
    status_code=status.HTTP_200_OK,
)
async def list_recommendations(
    as_of: Optional[datetime] = Query(default=None),
    recommendation_type: Optional[str] = Query(default=None, alias="type"),
    recommendation_service: RecommendationService = Depends(get_recommendation_service),
) -> RecommendationListResponse:
    if recommendation_type is not None and recommendation_type not in RECOMMENDATION_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"type must be one of {', '.join(RECOMMENDATION_TYPES)}",
        )
    try:
        batch = recommendation_service.list_recommendations(now=parse_timestamp(as_of))
        recommendations = [
            item.to_dict()
            for item in batch.recommendations
            if recommendation_type is None or item.recommendation_type == recommendation_type
        ]
        return RecommendationListResponse(
            recommendations=recommendations,
            failures=batch.failures,
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected recommendation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute recommendations",
        ) from exc


@router.get(
    "/waitlist/suggestions",
    response_model=WaitlistSuggestionListResponse,
    status_code=status.HTTP_200_OK,
)
async def waitlist_suggestions(
    service_id: str = Query(min_length=1),
    limit: Optional[int] = Query(default=None),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistSuggestionListResponse:
    try:
        suggestions = waitlist_service.suggest(service_id, limit)
        return WaitlistSuggestionListResponse(
            service_id=service_id,
            suggestions=[suggestion.to_dict() for suggestion in suggestions],
        )
    except WaitlistValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected waitlist suggestion failure | service_id=%s", service_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to rank waitlist candidates",
        ) from exc
