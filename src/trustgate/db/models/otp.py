"""One-time code challenge model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from trustgate.db.models.base import (
    Base,
    OptionalTimestampTZ,
    OtpPurpose,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_values,
)


class OtpChallenge(Base):
    """A one-time code sent to a phone number.

    Only the SHA-256 hash of the code is stored. The latest unused,
    unexpired challenge for a destination and purpose is the one honoured.
    """

    __tablename__ = "otp_challenges"

    challenge_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    destination: Mapped[str] = mapped_column(String(32), nullable=False)
    purpose: Mapped[OtpPurpose] = mapped_column(
        Enum(
            OtpPurpose,
            name="otp_purpose",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_at: Mapped[OptionalTimestampTZ]

    __table_args__ = (
        Index("ix_otp_challenges_destination_purpose", "destination", "purpose"),
    )

    def is_open(self, now: datetime) -> bool:
        """Check if the challenge can still be verified."""
        return not self.is_used and self.expires_at > now and self.attempts < self.max_attempts
