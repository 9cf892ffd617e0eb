"""trustgate API service.

FastAPI application exposing the phone OTP login flow:
- OTP send with rate limiting
- Login with device fingerprinting, risk gating and session admission
- Token refresh and logout

This module provides the app factory used by the ASGI entry point and
by tests.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI

from trustgate.api.middleware import (
    ErrorHandlerMiddleware,
    RequestIDMiddleware,
    register_exception_handlers,
)
from trustgate.api.routers import auth_router

if TYPE_CHECKING:
    from trustgate.core.config import Settings

logger = logging.getLogger(__name__)

API_TITLE = "trustgate API"
API_DESCRIPTION = """
Device trust and session admission for phone OTP login.

## Endpoints

- **POST /auth/otp** - Send a one-time code
- **POST /auth/login** - Log in with a one-time code
- **POST /auth/refresh** - Rotate session tokens
- **POST /auth/logout** - End the current session
"""


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional Settings instance. When omitted, routes load the
            cached settings from the environment on first use.

    Returns:
        Configured FastAPI application.

    Example:
        app = create_app()

        # For testing
        app = create_app(Settings(environment="dev"))
    """
    version = settings.app_version if settings else "0.1.0"

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.settings = settings

    # Order matters - last added is outermost, so request IDs are set
    # before errors are rendered
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)

    app.include_router(auth_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for container orchestration."""
        return {"status": "healthy"}

    logger.info("trustgate API application created (version=%s)", version)

    return app
