"""One-time password challenges for phone login.

Codes are stored as SHA-256 digests salted with the destination. Only the
most recent open challenge for a destination is honoured. A wrong guess
counts against the challenge; once its attempts are exhausted the
challenge is burned and a new code must be requested.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from trustgate.core.errors import NotificationError, RequestValidationError
from trustgate.db.models.base import OtpPurpose
from trustgate.services.collaborators import mask_destination

if TYPE_CHECKING:
    from trustgate.core.config import OtpSettings
    from trustgate.db.models import OtpChallenge
    from trustgate.db.repositories import OtpRepository
    from trustgate.services.collaborators import OtpNotifier

logger = logging.getLogger(__name__)

COUNTRY_CODE_PATTERN = re.compile(r"^\+[1-9]\d{0,3}$")
PHONE_NUMBER_PATTERN = re.compile(r"^\d{4,15}$")


def format_destination(country_code: str, phone_number: str) -> str:
    """Join a country code and a national number into one destination.

    Raises:
        RequestValidationError: If either part is malformed.
    """
    if not COUNTRY_CODE_PATTERN.fullmatch(country_code):
        raise RequestValidationError(
            "Country code must be + followed by 1 to 4 digits",
            detail={"field": "country_code"},
        )
    if not PHONE_NUMBER_PATTERN.fullmatch(phone_number):
        raise RequestValidationError(
            "Phone number must be 4 to 15 digits",
            detail={"field": "phone_number"},
        )
    return f"{country_code}{phone_number}"


def hash_code(destination: str, code: str) -> str:
    return hashlib.sha256(f"{destination}:{code}".encode()).hexdigest()


def generate_code(length: int) -> str:
    """Return a zero-padded random numeric code."""
    return f"{secrets.randbelow(10**length):0{length}d}"


class OtpService:
    """Issues and verifies OTP challenges.

    Example:
        otp = OtpService(uow.otps, settings.otp, notifier)
        await otp.send("+33612345678")
        challenge = await otp.verify("+33612345678", "042117")
    """

    def __init__(
        self,
        challenges: OtpRepository,
        settings: OtpSettings,
        notifier: OtpNotifier,
    ) -> None:
        self._challenges = challenges
        self._settings = settings
        self._notifier = notifier

    async def send(
        self,
        destination: str,
        *,
        purpose: OtpPurpose = OtpPurpose.LOGIN,
        now: datetime | None = None,
    ) -> OtpChallenge:
        """Create a challenge and deliver its code.

        Returns:
            The stored challenge.

        Raises:
            NotificationError: If the notifier reports a delivery failure.
        """
        now = now or datetime.now(UTC)
        code = generate_code(self._settings.code_length)
        challenge = await self._challenges.create(
            challenge_id=uuid.uuid4(),
            created_at=now,
            destination=destination,
            purpose=purpose,
            code_hash=hash_code(destination, code),
            attempts=0,
            max_attempts=self._settings.max_attempts,
            expires_at=now + timedelta(seconds=self._settings.ttl_seconds),
            is_used=False,
        )

        delivered = await self._notifier.send_otp(destination, code)
        if not delivered:
            logger.warning("OTP delivery failed: destination=%s", mask_destination(destination))
            raise NotificationError()

        logger.info(
            "OTP challenge issued: destination=%s, expires_at=%s",
            mask_destination(destination),
            challenge.expires_at.isoformat(),
        )
        return challenge

    async def verify(
        self,
        destination: str,
        code: str,
        *,
        purpose: OtpPurpose = OtpPurpose.LOGIN,
        now: datetime | None = None,
    ) -> OtpChallenge | None:
        """Check a code against the latest open challenge.

        A match consumes the challenge. A mismatch counts one attempt and
        burns the challenge when attempts run out.

        Returns:
            The consumed challenge, or None if the code was not accepted.
        """
        now = now or datetime.now(UTC)
        challenge = await self._challenges.find_latest_open(destination, purpose, now)
        if challenge is None:
            logger.info("No open OTP challenge: destination=%s", mask_destination(destination))
            return None

        if hmac.compare_digest(challenge.code_hash, hash_code(destination, code)):
            return await self._challenges.update(challenge, is_used=True, verified_at=now)

        attempts = challenge.attempts + 1
        exhausted = attempts >= challenge.max_attempts
        await self._challenges.update(challenge, attempts=attempts, is_used=exhausted)
        logger.info(
            "Wrong OTP code: destination=%s, attempts=%d/%d, burned=%s",
            mask_destination(destination),
            attempts,
            challenge.max_attempts,
            exhausted,
        )
        return None
