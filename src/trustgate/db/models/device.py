"""Device model for recognized client devices.

A device is recognized by its primary fingerprint, which is unique across
all owners. Collisions between owners are arbitrated by the device trust
engine and never merged.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from trustgate.db.models.base import (
    Base,
    DeviceConfidence,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_values,
)


class Device(Base):
    """A client device seen during login.

    The metadata snapshot holds the detection components of the last
    sighting and the risk analysis computed for it.
    """

    __tablename__ = "devices"

    device_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )

    primary_fingerprint: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    secondary_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    confidence: Mapped[DeviceConfidence] = mapped_column(
        Enum(
            DeviceConfidence,
            name="device_confidence",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=DeviceConfidence.LOW,
    )
    is_trusted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Free text so reasons written by other systems survive
    blocked_at: Mapped[OptionalTimestampTZ]
    block_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)

    last_seen_at: Mapped[OptionalTimestampTZ]
    last_ip_address: Mapped[str | None] = mapped_column(INET, nullable=True)

    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    device_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    os_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    browser_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    browser_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    device_metadata: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_devices_user_id", "user_id"),
        Index("ix_devices_secondary_fingerprint", "secondary_fingerprint"),
    )

    @property
    def is_blocked(self) -> bool:
        """Check if the device is currently blocked."""
        return self.blocked_at is not None
