"""Test data factories for trustgate.

Header builders describe typical clients; the ORM builders create
detached model instances with every column the services rely on set
explicitly (Python-side column defaults only apply on flush).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from trustgate.db.models import (
    Device,
    DeviceConfidence,
    Session,
    SessionArchive,
    TerminationReason,
    User,
)

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)

CHROME_DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)
IPHONE_SAFARI_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1"
)
ANDROID_CHROME_UA = (
    "Mozilla/5.0 (Linux; Android 13; SM-G998B Build/TP1A.220624.014) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.144 Mobile Safari/537.36"
)
APP_TOKEN = "3F2504E0-4F89-41D3-9A0C-0305E82C3301"
NATIVE_APP_UA = f"TrustApp/2.4.1 (iOS 17.2;{APP_TOKEN})"
CURL_UA = "curl/7.68.0"


def browser_headers(user_agent: str = CHROME_DESKTOP_UA, **extra: str) -> dict[str, str]:
    """Headers of a desktop browser login request.

    Extra keyword arguments become headers, with underscores turned into dashes.
    """
    headers = {
        "User-Agent": user_agent,
        "Accept-Language": "fr-FR,fr;q=0.9,en;q=0.8",
        "X-Screen-Resolution": "1920x1080",
        "X-Timezone": "Europe/Paris",
    }
    headers.update({name.replace("_", "-"): value for name, value in extra.items()})
    return headers


def native_app_headers(
    device_id: str = "8c6f2a51-9d3e-4b7a-a1c4-52e0f9d7b316",
    **extra: str,
) -> dict[str, str]:
    """Headers of the iOS native app with a consistent set of device fields."""
    headers = {
        "User-Agent": NATIVE_APP_UA,
        "X-Device-Id": device_id,
        "X-App-Version": "2.4.1",
        "X-App-Build": "241",
        "Accept-Language": "en-GB",
    }
    headers.update({name.replace("_", "-"): value for name, value in extra.items()})
    return headers


def create_user(
    country_code: str = "+33",
    phone_number: str = "612345678",
    **overrides: Any,
) -> User:
    """Create a detached User."""
    fields: dict[str, Any] = {
        "user_id": uuid.uuid4(),
        "country_code": country_code,
        "phone_number": phone_number,
        "phone_verified_at": NOW - timedelta(days=30),
        "last_login_at": NOW - timedelta(days=1),
        "created_at": NOW - timedelta(days=30),
        "updated_at": NOW - timedelta(days=1),
    }
    fields.update(overrides)
    return User(**fields)


def create_device(user_id: uuid.UUID, primary_fingerprint: str, **overrides: Any) -> Device:
    """Create a detached, unblocked and untrusted Device."""
    fields: dict[str, Any] = {
        "device_id": uuid.uuid4(),
        "user_id": user_id,
        "primary_fingerprint": primary_fingerprint,
        "secondary_fingerprint": None,
        "confidence": DeviceConfidence.MEDIUM,
        "is_trusted": False,
        "blocked_at": None,
        "block_reason": None,
        "last_seen_at": NOW - timedelta(days=2),
        "created_at": NOW - timedelta(days=60),
        "updated_at": NOW - timedelta(days=2),
    }
    fields.update(overrides)
    return Device(**fields)


def create_session(
    user_id: uuid.UUID,
    device_id: uuid.UUID | None = None,
    *,
    created_at: datetime = NOW,
    **overrides: Any,
) -> Session:
    """Create a detached live Session starting at created_at."""
    fields: dict[str, Any] = {
        "session_id": uuid.uuid4(),
        "session_token": uuid.uuid4().hex,
        "user_id": user_id,
        "device_id": device_id,
        "access_token_hash": None,
        "refresh_token_hash": None,
        "created_at": created_at,
        "updated_at": created_at,
        "last_activity_at": created_at,
        "expires_at": created_at + timedelta(hours=24),
        "max_expires_at": created_at + timedelta(days=90),
        "terminated_at": None,
        "termination_reason": None,
        "remember_me": False,
        "ip_address": "203.0.113.7",
        "user_agent": CHROME_DESKTOP_UA,
    }
    fields.update(overrides)
    return Session(**fields)


def create_terminated_session(
    user_id: uuid.UUID,
    *,
    terminated_at: datetime,
    reason: TerminationReason | None = TerminationReason.LOGOUT,
    **overrides: Any,
) -> Session:
    """Create a detached Session terminated at the given time."""
    return create_session(
        user_id,
        created_at=terminated_at - timedelta(hours=2),
        terminated_at=terminated_at,
        termination_reason=reason,
        **overrides,
    )


def create_archive(
    user_id: uuid.UUID,
    *,
    archived_at: datetime,
    retention_days: int = 365,
    reason: TerminationReason | None = TerminationReason.LOGOUT,
    **overrides: Any,
) -> SessionArchive:
    """Create a detached SessionArchive."""
    terminated_at = archived_at - timedelta(days=8)
    fields: dict[str, Any] = {
        "archive_id": uuid.uuid4(),
        "original_session_id": uuid.uuid4(),
        "session_token": uuid.uuid4().hex,
        "user_id": user_id,
        "device_id": None,
        "session_created_at": terminated_at - timedelta(hours=3),
        "last_activity_at": terminated_at - timedelta(hours=1),
        "expires_at": terminated_at + timedelta(hours=20),
        "max_expires_at": terminated_at + timedelta(days=89),
        "terminated_at": terminated_at,
        "termination_reason": reason,
        "remember_me": False,
        "ip_address": "203.0.113.7",
        "user_agent": CHROME_DESKTOP_UA,
        "archived_at": archived_at,
        "retention_days": retention_days,
        "retention_expires_at": archived_at + timedelta(days=retention_days),
    }
    fields.update(overrides)
    return SessionArchive(**fields)
