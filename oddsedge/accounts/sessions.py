"""
Bearer session validation.

Tokens are issued by the auth service and stored in ``user_sessions``.
This module only checks them.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from loguru import logger


class SessionExpiredError(Exception):
    """The bearer token is unknown or past its expiry."""


@dataclass(frozen=True)
class Principal:
    """Who is asking. Anonymous callers have no user id."""

    user_id: Optional[str] = None
    token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = Principal()


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an ``Authorization: Bearer <token>`` header, if present."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


class SessionValidator:
    """Resolves bearer tokens to principals."""

    def __init__(self, repository):
        self.repository = repository

    def validate(self, token: Optional[str], now: Optional[datetime] = None) -> Principal:
        """
        Args:
            token: Bearer token, or None for an anonymous caller

        Raises:
            SessionExpiredError: when the token is unknown or expired
        """
        if not token:
            return ANONYMOUS

        record = self.repository.get_session(token)
        if record is None:
            raise SessionExpiredError("unknown session")

        now = now or datetime.now(timezone.utc)
        if record.expires_at <= now:
            logger.debug(f"Session for user {record.user_id} expired at {record.expires_at.isoformat()}")
            raise SessionExpiredError("session expired")

        return Principal(user_id=record.user_id, token=token, expires_at=record.expires_at)

    def revalidate(self, principal: Principal, now: Optional[datetime] = None) -> Principal:
        """
        Re-check a principal during a long-lived connection.

        Only the stored expiry is consulted, so a session revoked by the
        auth service is picked up here too.
        """
        if not principal.authenticated:
            return principal
        return self.validate(principal.token, now)
