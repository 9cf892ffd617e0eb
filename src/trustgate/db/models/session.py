"""Session model for authenticated user sessions.

Sessions are database-backed for:
- Multi-device support under per-user and per-device ceilings
- Termination with a recorded reason (logout, timeout, eviction, ...)
- Refresh with an absolute lifetime ceiling (max_expires_at)
- Archival once terminated
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import INET, UUID
from sqlalchemy.orm import Mapped, mapped_column

from trustgate.db.models.base import (
    Base,
    OptionalTimestampTZ,
    TerminationReason,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_values,
)


class Session(Base):
    """User session for authenticated access.

    The opaque session token is handed to the client once; access and
    refresh tokens are stored as SHA-256 hashes only.
    """

    __tablename__ = "sessions"

    session_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    session_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    device_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("devices.device_id", ondelete="SET NULL"),
        nullable=True,
    )

    access_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    refresh_token_hash: Mapped[str | None] = mapped_column(
        String(64), unique=True, nullable=True
    )

    last_activity_at: Mapped[TimestampTZ]
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    max_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    terminated_at: Mapped[OptionalTimestampTZ]
    termination_reason: Mapped[TerminationReason | None] = mapped_column(
        Enum(
            TerminationReason,
            name="termination_reason",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=True,
    )

    remember_me: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(INET, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_sessions_user_id", "user_id"),
        Index("ix_sessions_device_id", "device_id"),
        Index("ix_sessions_expires_at", "expires_at"),
        Index("ix_sessions_terminated_at", "terminated_at"),
        # Active-session lookups by owner, ordered by activity for eviction
        Index(
            "ix_sessions_user_active",
            "user_id",
            "last_activity_at",
            postgresql_where=text("terminated_at IS NULL"),
        ),
    )

    @property
    def is_terminated(self) -> bool:
        """Check if the session has been terminated."""
        return self.terminated_at is not None

    def is_active_at(self, now: datetime) -> bool:
        """Check if the session counts as active at the given instant."""
        return self.terminated_at is None and self.expires_at > now
