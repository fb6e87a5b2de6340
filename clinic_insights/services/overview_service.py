"""Cross-client behavior summary for the admin overview."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

import pandas as pd

from clinic_insights.domain.models import BehaviorProfile
from clinic_insights.repository.data_repository import DataRepository
from clinic_insights.services.profile_service import BehaviorProfileService
from clinic_insights.utils.config import Settings, get_settings
from clinic_insights.utils.logger import get_logger
from clinic_insights.utils.timeutils import to_iso, utc_now


logger = get_logger(__name__)


_SCORE_COLUMNS = ("reliability_score", "engagement_score", "cancellation_risk_score")


def build_profile_frame(profiles: Mapping[str, BehaviorProfile]) -> pd.DataFrame:
    """One row per client with scores, preferred channel and tag list."""
    frame = pd.DataFrame(
        [
            {
                "client_id": client_id,
                "reliability_score": profile.scores.reliability_score,
                "engagement_score": profile.scores.engagement_score,
                "cancellation_risk_score": profile.scores.cancellation_risk_score,
                "preferred_channel": profile.notification_strategy.preferred_channel,
                "sample_size": profile.metrics.sample_size,
                "tags": list(profile.tag_ids),
            }
            for client_id, profile in sorted(profiles.items())
        ],
        columns=[
            "client_id",
            *_SCORE_COLUMNS,
            "preferred_channel",
            "sample_size",
            "tags",
        ],
    )
    return frame


def summarize_profiles(profiles: Mapping[str, BehaviorProfile]) -> dict[str, Any]:
    frame = build_profile_frame(profiles)
    if frame.empty:
        return {
            "client_count": 0,
            "mean_scores": {column: 0.0 for column in _SCORE_COLUMNS},
            "tag_counts": {},
            "channel_distribution": {},
            "clients_without_history": 0,
        }

    mean_scores = {column: round(float(frame[column].mean()), 2) for column in _SCORE_COLUMNS}
    tag_series = frame["tags"].explode().dropna()
    tag_counts = {
        str(tag): int(count)
        for tag, count in tag_series.value_counts().sort_index().items()
    }
    channel_distribution = {
        str(channel): int(count)
        for channel, count in frame["preferred_channel"].value_counts().sort_index().items()
    }
    return {
        "client_count": int(len(frame)),
        "mean_scores": mean_scores,
        "tag_counts": tag_counts,
        "channel_distribution": channel_distribution,
        "clients_without_history": int((frame["sample_size"] == 0).sum()),
    }


class BehaviorOverviewService:
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

    def summarize(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or utc_now()
        batch = self._profile_service.evaluate_clients(now=now)
        summary = summarize_profiles(batch.profiles)
        summary["evaluated_at"] = to_iso(now)
        summary["failed_clients"] = sorted(batch.failures)
        logger.info(
            "Overview completed | clients=%s | failures=%s",
            summary["client_count"],
            len(batch.failures),
        )
        return summary
