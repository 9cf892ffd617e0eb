"""ASGI entry point: ``trustgate.api.main:app`` and the trustgate-api script."""

import logging

from trustgate.api import create_app

logger = logging.getLogger(__name__)

app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port.

    Forwarded headers are honoured so client addresses survive the reverse
    proxy; the service's own IP extraction still prefers CF-Connecting-IP.
    """
    import uvicorn

    from trustgate.core.logging import configure_logging
    from trustgate.core.settings import get_settings

    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "Starting trustgate API host=%s port=%d environment=%s",
        settings.api_host,
        settings.api_port,
        settings.environment.value,
    )

    uvicorn.run(
        "trustgate.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development and settings.debug,
        proxy_headers=True,
        forwarded_allow_ips="*",
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
