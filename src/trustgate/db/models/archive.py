"""Session archive model for retention of terminated sessions."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import INET, UUID
from sqlalchemy.orm import Mapped, mapped_column

from trustgate.db.models.base import (
    Base,
    OptionalTimestampTZ,
    TerminationReason,
    UUIDPrimaryKey,
    enum_values,
)


class SessionArchive(Base):
    """Immutable copy of a terminated session.

    retention_expires_at is always archived_at plus retention_days, where
    retention_days depends on the termination reason. Token hashes are not
    copied; a restored session gets fresh credentials.
    """

    __tablename__ = "session_archives"

    archive_id: Mapped[UUIDPrimaryKey]

    original_session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), unique=True, nullable=False
    )
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    device_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    session_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
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

    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    retention_expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("ix_session_archives_user_id", "user_id"),
        Index("ix_session_archives_device_id", "device_id"),
        Index("ix_session_archives_termination_reason", "termination_reason"),
        Index("ix_session_archives_archived_at", "archived_at"),
        Index("ix_session_archives_retention_expires_at", "retention_expires_at"),
    )
