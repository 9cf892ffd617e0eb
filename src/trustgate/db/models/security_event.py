"""Append-only security event records written by the audit sink."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import Enum, Index, String, Text
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from trustgate.db.models.base import (
    Base,
    EventSeverity,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_values,
)


class SecurityEvent(Base):
    """A structured security event (login, device decision, eviction, ...).

    References are stored without foreign keys so events outlive the rows
    they describe.
    """

    __tablename__ = "security_events"

    event_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[EventSeverity] = mapped_column(
        Enum(
            EventSeverity,
            name="event_severity",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    session_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    device_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(INET, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_security_events_user_id", "user_id"),
        Index("ix_security_events_event_type", "event_type"),
        Index("ix_security_events_created_at", "created_at"),
    )
