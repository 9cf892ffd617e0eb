"""Rate limit counter model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from trustgate.db.models.base import (
    Base,
    RateLimitType,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_values,
)


class RateLimitCounter(Base):
    """Attempt counter for one identifier and limit type.

    The window is half-open: attempts count inside [window_start, window_end).
    One row exists per (identifier, limit_type); it is overwritten when the
    window rolls over.
    """

    __tablename__ = "rate_limit_counters"

    counter_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    limit_type: Mapped[RateLimitType] = mapped_column(
        Enum(
            RateLimitType,
            name="rate_limit_type",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    window_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("identifier", "limit_type", name="uq_rate_limit_counters_key"),
    )

    def in_window(self, now: datetime) -> bool:
        """Check if ``now`` falls inside the current window."""
        return self.window_start <= now < self.window_end
