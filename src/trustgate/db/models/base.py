"""Base model definitions and common types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Reusable annotated column types
- Enum types used across multiple models
"""

import enum
import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, MetaData, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, mapped_column

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

# UUID primary key; services assign ids client-side so rows are usable before flush
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    ),
]

TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), server_default=text("now()")),
]

OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (not member names) so the database sees lowercase labels."""
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Declarative base for all trustgate models."""

    metadata = metadata


# =============================================================================
# Common Enums
# =============================================================================


class DeviceConfidence(enum.Enum):
    """Reliability label of a device fingerprint.

    Values:
        HIGH: Twelve or more weighted signals corroborate the fingerprint
        MEDIUM: Eight to eleven weighted signals
        LOW: Fewer than eight weighted signals
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TerminationReason(enum.Enum):
    """Why a session stopped being active.

    Values:
        LOGOUT: User signed out
        TIMEOUT: Session expired without being refreshed
        REVOKED: Revoked by the user or an operator
        DEVICE_REMOVED: The owning device was removed
        SESSION_LIMIT_ENFORCED: Evicted to make room under a session ceiling
        ARCHIVED: Terminated as part of archival
    """

    LOGOUT = "logout"
    TIMEOUT = "timeout"
    REVOKED = "revoked"
    DEVICE_REMOVED = "device_removed"
    SESSION_LIMIT_ENFORCED = "session_limit_enforced"
    ARCHIVED = "archived"


class BlockReason(str, enum.Enum):
    """Known reasons a device may be blocked.

    Stored as free text on the device so that reasons written by other
    systems survive; anything outside this set is handled as unknown.

    Values:
        LOGOUT, TIMEOUT, SESSION_LIMIT_ENFORCED: Routine, reversible blocks
        SECURITY_VIOLATION, COMPROMISED, SUSPICIOUS_ACTIVITY: Security blocks
            with a 24 hour cooldown
        ADMIN_BLOCKED, POLICY_VIOLATION: Permanent until reviewed
    """

    LOGOUT = "logout"
    TIMEOUT = "timeout"
    SESSION_LIMIT_ENFORCED = "session_limit_enforced"
    SECURITY_VIOLATION = "security_violation"
    COMPROMISED = "compromised"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    ADMIN_BLOCKED = "admin_blocked"
    POLICY_VIOLATION = "policy_violation"


class RateLimitType(enum.Enum):
    """Rate-limited operations.

    Values:
        OTP: One-time code sends
        LOGIN: Failed login attempts
    """

    OTP = "otp"
    LOGIN = "login"


class OtpPurpose(enum.Enum):
    """What a one-time code authorizes."""

    LOGIN = "login"


class EventSeverity(enum.Enum):
    """Severity of a recorded security event."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
