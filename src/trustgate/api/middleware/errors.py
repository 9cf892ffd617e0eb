"""Error handling for consistent JSON error responses.

Every error leaves the API with the same body:
- error: Machine-readable code
- message: Human-readable description
- detail: Optional structured information
- request_id: Correlation ID of the request

Device rejections carry only the generic policy message; the reason
lives in the audit trail.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError as FastAPIValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from trustgate.api.middleware.request_id import get_request_id
from trustgate.core.errors import TrustGateError

logger = logging.getLogger(__name__)


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a standardized error response.

    Args:
        error: Machine-readable error code.
        message: Human-readable description.
        status_code: HTTP status code.
        detail: Optional additional details.

    Returns:
        JSONResponse with consistent error structure.
    """
    body: dict[str, Any] = {
        "error": error,
        "message": message,
    }

    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id

    if detail:
        body["detail"] = detail

    return JSONResponse(status_code=status_code, content=body)


def _field_errors(exc: FastAPIValidationError) -> dict[str, Any]:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        errors.append({"field": ".".join(location), "message": error.get("msg", "")})
    return {"errors": errors}


async def _validation_exception_handler(
    request: Request, exc: FastAPIValidationError
) -> JSONResponse:
    logger.info("Request validation failed: %s %s", request.method, request.url.path)
    return build_error_response(
        error="validation_error",
        message="Request validation failed",
        status_code=400,
        detail=_field_errors(exc),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Route body and parameter validation failures to the standard error body."""
    app.add_exception_handler(FastAPIValidationError, _validation_exception_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns consistent JSON errors.

    Handles:
    - TrustGateError and subclasses: domain errors with their own status
    - HTTPException: FastAPI's built-in HTTP errors
    - Generic exceptions: unexpected errors (logged, returns 500)
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        try:
            return await call_next(request)
        except TrustGateError as exc:
            logger.info(
                "Request failed: %s %s error=%s status=%d",
                request.method,
                request.url.path,
                exc.error,
                exc.status_code,
            )
            return build_error_response(
                error=exc.error,
                message=exc.message,
                status_code=exc.status_code,
                detail=exc.detail,
            )
        except HTTPException as exc:
            return build_error_response(
                error="http_error",
                message=str(exc.detail),
                status_code=exc.status_code,
            )
        except Exception:
            logger.exception(
                "Unexpected error processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(
                error="internal_error",
                message="An internal error occurred",
                status_code=500,
            )
