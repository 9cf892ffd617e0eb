"""Scheduled job handlers for the trustgate worker.

- archive: daily session archival and monthly archive cleanup
"""

from trustgate.worker.handlers.archive import run_daily_archive, run_monthly_archive_cleanup

__all__ = [
    "run_daily_archive",
    "run_monthly_archive_cleanup",
]
