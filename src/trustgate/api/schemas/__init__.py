"""Pydantic request/response schemas for the trustgate API."""

from trustgate.api.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    OtpSendRequest,
    OtpSendResponse,
    RefreshRequest,
    TokenResponse,
)

__all__ = [
    "LoginRequest",
    "LoginResponse",
    "LogoutResponse",
    "OtpSendRequest",
    "OtpSendResponse",
    "RefreshRequest",
    "TokenResponse",
]
