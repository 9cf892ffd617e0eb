"""Authentication router for phone OTP login.

- POST /auth/otp - Send a one-time code to a phone number
- POST /auth/login - Exchange a code for a session and bearer tokens
- POST /auth/refresh - Rotate the tokens of a live session
- POST /auth/logout - End the session of the presented access token

Request headers feed device fingerprinting and client address detection,
so the routes hand the raw header mapping to the login service.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Header, Request

from trustgate.api.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    OtpSendRequest,
    OtpSendResponse,
    RefreshRequest,
    TokenResponse,
)
from trustgate.core.errors import SessionInvalidError
from trustgate.db.unit_of_work import UnitOfWork, unit_of_work
from trustgate.services.collaborators import mask_destination
from trustgate.services.login import LoginService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    responses={
        400: {"description": "Validation, rate limit or policy rejection"},
        401: {"description": "Session no longer valid"},
        500: {"description": "Internal server error"},
    },
)


async def get_unit_of_work() -> AsyncIterator[UnitOfWork]:
    """Get a unit of work over the application's async session factory."""
    async with unit_of_work() as uow:
        yield uow


def get_login_service(
    request: Request,
    uow: Annotated[UnitOfWork, Depends(get_unit_of_work)],
) -> LoginService:
    """Build the request-scoped login service.

    Collaborators registered on app.state (token_issuer, otp_notifier)
    replace the development defaults.
    """
    from trustgate.core.settings import get_settings

    settings = request.app.state.settings or get_settings()
    return LoginService(
        uow,
        settings,
        token_issuer=getattr(request.app.state, "token_issuer", None),
        notifier=getattr(request.app.state, "otp_notifier", None),
    )


LoginServiceDep = Annotated[LoginService, Depends(get_login_service)]


def _peer_address(request: Request) -> str | None:
    return request.client.host if request.client else None


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise SessionInvalidError()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise SessionInvalidError()
    return token.strip()


@router.post("/otp", response_model=OtpSendResponse)
async def send_otp(
    body: OtpSendRequest,
    request: Request,
    service: LoginServiceDep,
) -> OtpSendResponse:
    """Send a one-time code to the given phone number."""
    dispatch = await service.send_otp(
        body.country_code,
        body.phone_number,
        request.headers,
        peer_address=_peer_address(request),
    )
    return OtpSendResponse(
        destination=mask_destination(dispatch.destination),
        expires_at=dispatch.expires_at,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    service: LoginServiceDep,
) -> LoginResponse:
    """Log in with a one-time code, registering the user on first login."""
    result = await service.login(
        body.country_code,
        body.phone_number,
        body.code,
        request.headers,
        peer_address=_peer_address(request),
        remember_me=body.remember_me,
    )
    return LoginResponse(
        action=result.action.value,
        user_id=result.user_id,
        device_id=result.device_id,
        device_trusted=result.device_trusted,
        session_token=result.session_token,
        risk_level=result.risk_level.value,
        session_id=result.tokens.session_id,
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_in=result.tokens.expires_in,
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    request: Request,
    service: LoginServiceDep,
) -> TokenResponse:
    """Rotate the tokens of a live session."""
    tokens = await service.refresh(
        body.refresh_token,
        request.headers,
        peer_address=_peer_address(request),
    )
    return TokenResponse(
        session_id=tokens.session_id,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    service: LoginServiceDep,
    authorization: Annotated[str | None, Header()] = None,
) -> LogoutResponse:
    """End the session of the bearer access token and block its device."""
    await service.logout(
        _bearer_token(authorization),
        request.headers,
        peer_address=_peer_address(request),
    )
    return LogoutResponse()
