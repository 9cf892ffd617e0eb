"""Pytest configuration and shared fixtures.

Service tests run against the in-memory unit of work in tests/fakes.py;
no database is required. Time is pinned with the ``now`` fixture so
window, cooldown and retention arithmetic is exact.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient

from tests.factories import NOW
from tests.fakes import CapturingNotifier, FakeUnitOfWork, RecordingAuditSink
from trustgate.api import create_app
from trustgate.core.config import (
    ArchiveSettings,
    OtpSettings,
    RateLimitSettings,
    SessionSettings,
    Settings,
)
from trustgate.core.settings import clear_settings_cache


@pytest.fixture(autouse=True)
def clean_settings_cache():
    """Clear the settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def now() -> datetime:
    """Fixed current time shared by a test and the services it drives."""
    return NOW


@pytest.fixture
def settings() -> Settings:
    """Settings with the documented defaults, independent of the environment."""
    return Settings(
        session=SessionSettings(),
        rate_limit=RateLimitSettings(),
        otp=OtpSettings(),
        archive=ArchiveSettings(),
    )


@pytest.fixture
def uow() -> FakeUnitOfWork:
    """Fresh in-memory unit of work."""
    return FakeUnitOfWork()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def notifier() -> CapturingNotifier:
    """OTP notifier exposing the codes it was asked to send."""
    return CapturingNotifier()


# ---------------------------------------------------------------------------
# API client fixture (in-process testing via ASGI transport)
# ---------------------------------------------------------------------------
@pytest.fixture
def test_app(settings: Settings):
    """Create a test FastAPI application instance."""
    return create_app(settings)


@pytest.fixture
async def api_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API.

    Uses httpx with ASGI transport for in-process testing.
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
