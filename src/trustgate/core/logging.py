"""Process-wide logging setup for the API and worker entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once per process.

    Args:
        level: Logging level name; unknown names fall back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # SQLAlchemy engine logging is controlled by DatabaseSettings.echo
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
