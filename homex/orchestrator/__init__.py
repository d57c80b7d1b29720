"""Runtime wiring and the cron scheduler for the expiry sweeps.

Public API
----------
* :func:`~homex.orchestrator.runner.open_runtime` assembles the store,
  notifier, lifecycle service and scheduler, and tears them down on exit.
* :class:`~homex.orchestrator.scheduler.ExpiryScheduler` runs the job table
  on crontab schedules.
* :func:`~homex.orchestrator.scheduler.build_default_jobs` returns the
  ``expire-listings`` and ``notify-expiring`` jobs.
"""

from homex.orchestrator.runner import Runtime, check_database, open_runtime
from homex.orchestrator.scheduler import (
    EXPIRE_JOB,
    NOTIFY_JOB,
    ExpiryScheduler,
    ScheduledJob,
    build_default_jobs,
    next_fire_time,
)

__all__ = [
    "Runtime",
    "open_runtime",
    "check_database",
    "ExpiryScheduler",
    "ScheduledJob",
    "build_default_jobs",
    "next_fire_time",
    "EXPIRE_JOB",
    "NOTIFY_JOB",
]
