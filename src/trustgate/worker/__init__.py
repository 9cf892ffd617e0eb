"""trustgate worker.

Scheduled maintenance of the session tables:
- Daily: time out expired sessions, archive old terminated sessions
- Monthly: purge archives past their retention deadline

Usage:
    # One-off run, e.g. from cron or a Kubernetes CronJob
    trustgate-worker daily-archive
    trustgate-worker monthly-cleanup --dry-run

    # In-process scheduler
    trustgate-worker serve
"""

from trustgate.worker.main import run

__all__ = ["run"]
