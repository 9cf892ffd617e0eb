"""Pydantic schemas for the phone OTP authentication endpoints.

Field shapes are validated here; anything malformed is answered with a
400 validation_error before any service code runs.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from trustgate.services.otp import COUNTRY_CODE_PATTERN, PHONE_NUMBER_PATTERN

OTP_CODE_PATTERN = r"^\d{4,10}$"


class PhoneIdentity(BaseModel):
    """Phone number split into country calling code and national number."""

    country_code: str = Field(
        ...,
        pattern=COUNTRY_CODE_PATTERN.pattern,
        description="Country calling code, e.g. +33",
        examples=["+33"],
    )
    phone_number: str = Field(
        ...,
        pattern=PHONE_NUMBER_PATTERN.pattern,
        description="National number, digits only",
        examples=["612345678"],
    )


class OtpSendRequest(PhoneIdentity):
    """Request body for POST /auth/otp."""


class OtpSendResponse(BaseModel):
    destination: str = Field(..., description="Masked destination the code was sent to")
    expires_at: datetime = Field(..., description="When the code stops being valid")


class LoginRequest(PhoneIdentity):
    """Request body for POST /auth/login."""

    code: str = Field(..., pattern=OTP_CODE_PATTERN, description="One-time code")
    remember_me: bool = Field(default=False, description="Keep the session remembered")


class TokenResponse(BaseModel):
    """Bearer tokens of a session."""

    session_id: UUID
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Seconds until the session expires")


class LoginResponse(TokenResponse):
    """Response body for POST /auth/login."""

    action: str = Field(..., description="login, or register/login on first login")
    user_id: UUID
    device_id: UUID
    device_trusted: bool
    session_token: str
    risk_level: str


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str = Field(..., min_length=1, max_length=512)


class LogoutResponse(BaseModel):
    status: str = "logged_out"
