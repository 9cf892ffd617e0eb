"""SQLAlchemy ORM models for trustgate.

- base: Common metadata, annotated column types, enums
- user: Phone-identified accounts
- device: Recognized client devices keyed by fingerprint
- session: Authenticated sessions
- archive: Retention copies of terminated sessions
- rate_limit: Sliding window counters
- otp: One-time code challenges
- security_event: Append-only security events
"""

from trustgate.db.models.archive import SessionArchive
from trustgate.db.models.base import (
    Base,
    BlockReason,
    DeviceConfidence,
    EventSeverity,
    OtpPurpose,
    RateLimitType,
    TerminationReason,
    metadata,
)
from trustgate.db.models.device import Device
from trustgate.db.models.otp import OtpChallenge
from trustgate.db.models.rate_limit import RateLimitCounter
from trustgate.db.models.security_event import SecurityEvent
from trustgate.db.models.session import Session
from trustgate.db.models.user import User

__all__ = [
    "Base",
    "BlockReason",
    "Device",
    "DeviceConfidence",
    "EventSeverity",
    "OtpChallenge",
    "OtpPurpose",
    "RateLimitCounter",
    "RateLimitType",
    "SecurityEvent",
    "Session",
    "SessionArchive",
    "TerminationReason",
    "User",
    "metadata",
]
