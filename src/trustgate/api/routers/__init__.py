"""trustgate API routers.

- auth: Phone OTP login, token refresh and logout
"""

from trustgate.api.routers.auth import router as auth_router

__all__ = ["auth_router"]
