"""Allow running the worker with ``python -m trustgate.worker``."""

from trustgate.worker.main import run

run()
