"""trustgate API middleware components.

This module provides middleware for:
- Request ID tracking for distributed tracing
- Consistent error response formatting
"""

from trustgate.api.middleware.errors import ErrorHandlerMiddleware, register_exception_handlers
from trustgate.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "ErrorHandlerMiddleware",
    "RequestIDMiddleware",
    "register_exception_handlers",
]
