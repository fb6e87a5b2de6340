"""Timestamp parsing shared by the repository and the engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0


def parse_timestamp(value: str | datetime | None) -> Optional[datetime]:
    """Return an aware UTC datetime, or None for missing/unparseable input.

    Naive values are read as UTC. A trailing ``Z`` is accepted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif not isinstance(value, str):
        return None
    else:
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / SECONDS_PER_HOUR
