"""Controller layer for admin login and the behavior overview."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from clinic_insights.controllers.dependencies import (
    bearer_scheme,
    get_auth_service,
    get_overview_service,
    require_admin,
)
from clinic_insights.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from clinic_insights.services.overview_service import BehaviorOverviewService
from clinic_insights.utils.logger import get_logger
from clinic_insights.utils.timeutils import parse_timestamp


logger = get_logger(__name__)

router = APIRouter(tags=["dashboard"])


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeanScoresResponse(BaseModel):
    reliability_score: float = Field(ge=0.0, le=100.0)
    engagement_score: float = Field(ge=0.0, le=100.0)
    cancellation_risk_score: float = Field(ge=0.0, le=100.0)


class OverviewResponse(BaseModel):
    client_count: int = Field(ge=0)
    mean_scores: MeanScoresResponse
    tag_counts: dict[str, int]
    channel_distribution: dict[str, int]
    clients_without_history: int = Field(ge=0)
    evaluated_at: datetime
    failed_clients: list[str]


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.admin_token)
        return LoginResponse(access_token=bearer)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
async def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if credentials is not None:
        auth_service.logout(credentials.credentials)


@router.get(
    "/overview",
    response_model=OverviewResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def overview(
    as_of: Optional[datetime] = Query(default=None),
    overview_service: BehaviorOverviewService = Depends(get_overview_service),
) -> OverviewResponse:
    try:
        return OverviewResponse(**overview_service.summarize(now=parse_timestamp(as_of)))
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected overview failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build behavior overview",
        ) from exc
