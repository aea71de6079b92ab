"""Operator sessions for the inventory and supervision endpoints.

Operators exchange the shared admin token for a bearer that names them, so
destructive commands (cycle reset, clear-all, dropping lottery buffers) are
logged against a person. Sessions last one shift and several operators may be
logged in at once. Without a configured admin token the endpoints are open.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Optional

from parkbot.utils.clock import Clock, SystemClock
from parkbot.utils.config import Settings, get_settings
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_OPERATOR = "admin"


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when a login token or bearer token does not match."""


class SessionExpiredError(InvalidAdminTokenError):
    """Raised when a bearer outlived its shift."""


@dataclass(frozen=True)
class OperatorSession:
    operator_id: str
    access_token: str
    expires_at: datetime


class AuthService:
    def __init__(self, settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> None:
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock(self._settings.timezone)
        self._ttl = timedelta(minutes=self._settings.admin_session_minutes)
        self._sessions: dict[str, OperatorSession] = {}
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

    def login(self, provided_admin_token: str, operator_id: Optional[str] = None) -> OperatorSession:
        """Open a shift-long session; the supervisor is the default operator."""
        expected = self._expected_token()
        operator = (operator_id or "").strip() or self._settings.supervisor_user_id or DEFAULT_OPERATOR
        if not secrets.compare_digest(provided_admin_token, expected):
            logger.warning("Rejected admin login attempt for operator %s", operator)
            raise InvalidAdminTokenError("Invalid admin token")

        now = self._clock.now()
        session = OperatorSession(
            operator_id=operator,
            access_token=secrets.token_urlsafe(32),
            expires_at=now + self._ttl,
        )
        with self._lock:
            self._drop_expired(now)
            self._sessions[session.access_token] = session
        logger.info("Operator %s logged in until %s", operator, session.expires_at.isoformat())
        return session

    def validate_bearer_token(self, bearer_token: str) -> Optional[OperatorSession]:
        """Return the caller's session, or None when the endpoints are open."""
        if not self.auth_enabled:
            return None
        now = self._clock.now()
        with self._lock:
            session = self._sessions.get(bearer_token)
            if session is not None and session.expires_at <= now:
                del self._sessions[bearer_token]
                raise SessionExpiredError(f"Session of {session.operator_id} expired. Login again.")
        if session is None:
            raise InvalidAdminTokenError("Invalid bearer token. Login first.")
        return session

    def active_operators(self) -> list[str]:
        now = self._clock.now()
        with self._lock:
            self._drop_expired(now)
            return sorted({session.operator_id for session in self._sessions.values()})

    def _drop_expired(self, now: datetime) -> None:
        expired = [token for token, session in self._sessions.items() if session.expires_at <= now]
        for token in expired:
            del self._sessions[token]
