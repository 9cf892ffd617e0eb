"""User model for phone-identified accounts."""

from __future__ import annotations

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from trustgate.db.models.base import (
    Base,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
)


class User(Base):
    """An account identified by a verified phone number.

    Users are created on the first successful OTP login for a phone number.
    """

    __tablename__ = "users"

    user_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    country_code: Mapped[str] = mapped_column(String(8), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    phone_verified_at: Mapped[OptionalTimestampTZ]
    last_login_at: Mapped[OptionalTimestampTZ]

    __table_args__ = (
        UniqueConstraint("country_code", "phone_number", name="uq_users_phone"),
    )

    @property
    def phone_identifier(self) -> str:
        """Country code and number joined, as used for rate limiting."""
        return f"{self.country_code}{self.phone_number}"
