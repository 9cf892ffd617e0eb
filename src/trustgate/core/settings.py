"""Process-wide settings accessor.

``load_settings()`` builds and validates a fresh Settings from the
environment and raises on bad input. ``get_settings()`` caches the result
for the lifetime of the process and turns configuration errors into
``SystemExit(1)`` so the API and worker refuse to start half-configured.

Tests reset the cache with ``clear_settings_cache()``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from trustgate.core.config import ConfigValidationError, Settings, validate_settings

logger = logging.getLogger(__name__)


def describe_validation_error(exc: ValidationError) -> list[str]:
    """Flatten a pydantic error into ``section.field: message`` lines."""
    return [
        "{}: {}".format(".".join(str(part) for part in error["loc"]) or "settings", error["msg"])
        for error in exc.errors()
    ]


def load_settings() -> Settings:
    """Read and validate settings without caching.

    Raises:
        ValidationError: An environment value has the wrong shape.
        ConfigValidationError: Values are individually valid but inconsistent.
    """
    settings = Settings()
    validate_settings(settings)
    logger.info(
        "Settings loaded: environment=%s session_limits=%d/%d otp_limit=%d/%ds "
        "login_limit=%d/%ds",
        settings.environment.value,
        settings.session.max_sessions_per_user,
        settings.session.max_sessions_per_device,
        settings.rate_limit.otp_max_attempts,
        settings.rate_limit.otp_window_seconds,
        settings.rate_limit.login_max_attempts,
        settings.rate_limit.login_window_seconds,
    )
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached settings, exiting the process if they are invalid."""
    try:
        return load_settings()
    except ValidationError as exc:
        for line in describe_validation_error(exc):
            logger.critical("Invalid configuration: %s", line)
        raise SystemExit(1) from exc
    except ConfigValidationError as exc:
        logger.critical(
            "Invalid configuration: %s: %s", exc.field or "settings", exc.message
        )
        raise SystemExit(1) from exc


def clear_settings_cache() -> None:
    get_settings.cache_clear()
