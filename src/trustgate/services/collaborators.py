"""Interfaces to collaborators outside the trust core.

Token signing and OTP delivery live in other systems. The login flow talks
to them through the protocols below; the default implementations are good
enough for development and tests.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from trustgate.services.risk import ReputationLookup, StaticReputationLookup

if TYPE_CHECKING:
    from uuid import UUID

    from trustgate.db.models import Session

logger = logging.getLogger(__name__)

__all__ = [
    "LoggingOtpNotifier",
    "OpaqueTokenIssuer",
    "OtpNotifier",
    "ReputationLookup",
    "StaticReputationLookup",
    "TokenIssuer",
    "mask_destination",
]

ACCESS_TOKEN_BYTES = 32
REFRESH_TOKEN_BYTES = 48


class TokenIssuer(Protocol):
    """Issues bearer tokens bound to a session."""

    def issue_access_token(self, user_id: UUID, session: Session) -> str: ...

    def issue_refresh_token(self, user_id: UUID, session: Session) -> tuple[str, int]:
        """Return the refresh token and its lifetime in seconds."""
        ...


class OtpNotifier(Protocol):
    """Delivers one-time codes to a phone destination."""

    async def send_otp(self, destination: str, code: str) -> bool: ...


class OpaqueTokenIssuer:
    """Issuer of random opaque tokens.

    Tokens carry no claims; the session row holds their SHA-256 hashes.
    The refresh token lives as long as the session it belongs to.
    """

    def issue_access_token(self, user_id: UUID, session: Session) -> str:  # noqa: ARG002
        return secrets.token_urlsafe(ACCESS_TOKEN_BYTES)

    def issue_refresh_token(
        self,
        user_id: UUID,  # noqa: ARG002
        session: Session,
    ) -> tuple[str, int]:
        remaining = (session.expires_at - datetime.now(UTC)).total_seconds()
        return secrets.token_urlsafe(REFRESH_TOKEN_BYTES), max(0, int(remaining))


def mask_destination(destination: str) -> str:
    """Mask all but the last two digits of a phone destination."""
    if len(destination) <= 4:
        return "*" * len(destination)
    return f"{destination[:3]}{'*' * (len(destination) - 5)}{destination[-2:]}"


class LoggingOtpNotifier:
    """Notifier that writes codes to the log instead of sending them.

    For development only: the code is logged at DEBUG level.
    """

    async def send_otp(self, destination: str, code: str) -> bool:
        logger.info("OTP dispatched: destination=%s", mask_destination(destination))
        logger.debug("OTP code for %s: %s", mask_destination(destination), code)
        return True
