"""Admin token login guarding the behavior endpoints."""

from __future__ import annotations

import secrets
from threading import Lock
from typing import Optional

from clinic_insights.utils.config import Settings, get_settings
from clinic_insights.utils.logger import get_logger


logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class AuthService:
    """Exchanges the admin token for bearer session tokens."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: set[str] = set()
        self._lock = Lock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            logger.warning("Admin login rejected")
            raise InvalidAdminTokenError("Invalid admin token")
        session_token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions.add(session_token)
            active = len(self._sessions)
        logger.info("Admin login accepted | active_sessions=%s", active)
        return session_token

    def logout(self, bearer_token: str) -> None:
        with self._lock:
            self._sessions.discard(bearer_token)

    def validate_bearer_token(self, bearer_token: str) -> None:
        if not self.auth_enabled:
            return
        with self._lock:
            sessions = tuple(self._sessions)
        if not sessions:
            raise InvalidAdminTokenError("No active session. Login first.")
        if not any(secrets.compare_digest(bearer_token, token) for token in sessions):
            raise InvalidAdminTokenError("Invalid bearer token")
