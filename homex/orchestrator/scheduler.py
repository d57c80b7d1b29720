"""Cron-driven job scheduler for the expiry sweeps.

:class:`ExpiryScheduler` owns a table of :class:`ScheduledJob` entries
(name, crontab expression, coroutine function).  For every job it runs one
``asyncio`` task that sleeps until the next fire time and then spawns the
job body as an independent task with its own error boundary.  Fire times
come from APScheduler's :class:`~apscheduler.triggers.cron.CronTrigger`;
the event loop itself does the waiting, so the scheduler shares the loop
with the HTTP server.

Default jobs (see :func:`build_default_jobs`):

* ``expire-listings`` at ``0 0 * * *``: delete listings past expiry.
* ``notify-expiring`` at ``0 1 * * *``: email owners of listings expiring
  in about a week.  Also run once at startup as a catch-up pass so a
  restart near 01:00 does not skip a day.

Overlapping runs of the same job are **not** prevented.  A sweep takes
seconds and the period is a day; if one ever overlaps, both runs proceed.

A failing run is logged and has no effect; it never stops the scheduler or
the process.

Typical usage::

    scheduler = ExpiryScheduler(
        build_default_jobs(service, settings),
        timezone=settings.scheduler_timezone,
        startup_jobs=["notify-expiring"],
    )
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from apscheduler.triggers.cron import CronTrigger

from homex.core import events
from homex.core.exceptions import SchedulerError
from homex.core.logging_config import CORRELATION_ID_CTX
from homex.core.settings import Settings
from homex.lifecycle.service import ListingService

__all__ = [
    "EXPIRE_JOB",
    "NOTIFY_JOB",
    "ScheduledJob",
    "ExpiryScheduler",
    "build_default_jobs",
    "next_fire_time",
]

logger = logging.getLogger(__name__)

EXPIRE_JOB: str = "expire-listings"
NOTIFY_JOB: str = "notify-expiring"


@dataclass(frozen=True)
class ScheduledJob:
    """One row of the scheduler's job table."""

    name: str
    cron: str
    func: Callable[[], Awaitable[object]]


# ---------------------------------------------------------------------------
# Fire-time helper (pure; safe to test without a loop)
# ---------------------------------------------------------------------------


def next_fire_time(trigger: CronTrigger, after: datetime) -> datetime | None:
    """Return the first fire time of *trigger* at or after *after*."""
    if after.tzinfo is None:
        after = after.replace(tzinfo=UTC)
    return trigger.get_next_fire_time(None, after)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class ExpiryScheduler:
    """Runs each :class:`ScheduledJob` on its crontab schedule.

    Args:
        jobs: Job table.  Names must be unique.
        timezone: Timezone the crontab expressions are read in.
        startup_jobs: Names of jobs to run once immediately on :meth:`start`.

    Raises:
        SchedulerError: On a duplicate job name, an invalid crontab
            expression or an unknown startup job.
    """

    def __init__(
        self,
        jobs: Iterable[ScheduledJob],
        *,
        timezone: str = "UTC",
        startup_jobs: Iterable[str] = (),
    ) -> None:
        self._jobs: dict[str, ScheduledJob] = {}
        self._triggers: dict[str, CronTrigger] = {}
        for job in jobs:
            if job.name in self._jobs:
                raise SchedulerError(f"Duplicate job name: {job.name!r}")
            try:
                trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            except (ValueError, LookupError) as exc:
                raise SchedulerError(
                    f"Invalid schedule {job.cron!r} ({timezone}) for job {job.name!r}: {exc}"
                ) from exc
            self._jobs[job.name] = job
            self._triggers[job.name] = trigger

        self._startup_jobs = list(startup_jobs)
        unknown = [name for name in self._startup_jobs if name not in self._jobs]
        if unknown:
            raise SchedulerError(f"Unknown startup job(s): {', '.join(unknown)}")

        self._timezone = timezone
        self._loops: list[asyncio.Task[None]] = []
        self._runs: set[asyncio.Task[object]] = set()

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return bool(self._loops)

    def next_run_times(self, now: datetime | None = None) -> dict[str, datetime | None]:
        """Next fire time per job name, for logs and diagnostics."""
        now = now or datetime.now(UTC)
        return {name: next_fire_time(t, now) for name, t in self._triggers.items()}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start one timer loop per job and spawn the startup jobs.

        Returns immediately; startup jobs run in the background so a slow
        or failing catch-up pass never delays serving requests.

        Raises:
            SchedulerError: If the scheduler is already running.
        """
        if self._loops:
            raise SchedulerError("Scheduler already started")

        for name in self._jobs:
            self._loops.append(
                asyncio.create_task(self._job_loop(name), name=f"homex-cron-{name}")
            )

        for name, when in self.next_run_times().items():
            logger.info(
                "Job %s scheduled (%s, %s); next run %s",
                name,
                self._jobs[name].cron,
                self._timezone,
                when.isoformat() if when else "never",
                extra={"event": events.SCHEDULER_START},
            )

        for name in self._startup_jobs:
            logger.info("Running %s once at startup (catch-up).", name)
            self._spawn(self._jobs[name], reason="startup")

    async def stop(self) -> None:
        """Cancel the timer loops and any in-flight job runs."""
        tasks = [*self._loops, *self._runs]
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._runs.clear()
        logger.info("Scheduler stopped.", extra={"event": events.SCHEDULER_STOP})

    async def run_job(self, name: str) -> object:
        """Run job *name* now, inside the usual error boundary, and await it.

        Returns:
            The job's return value, or ``None`` if it raised.

        Raises:
            SchedulerError: If no job has that name.
        """
        job = self._jobs.get(name)
        if job is None:
            raise SchedulerError(f"Unknown job: {name!r}")
        return await self._run_job(job, reason="manual")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _job_loop(self, name: str) -> None:
        job = self._jobs[name]
        trigger = self._triggers[name]
        last_fire: datetime | None = None

        while True:
            now = datetime.now(UTC)
            if last_fire is not None:
                # Never re-fire the same slot if the sleep returned early.
                now = max(now, last_fire + timedelta(microseconds=1))
            fire_at = next_fire_time(trigger, now)
            if fire_at is None:
                logger.info("Job %s has no further fire times; loop exiting.", name)
                return

            delay = max((fire_at - datetime.now(UTC)).total_seconds(), 0.0)
            logger.debug("Job %s sleeping %.0f s until %s", name, delay, fire_at.isoformat())
            await asyncio.sleep(delay)

            last_fire = fire_at
            self._spawn(job, reason="schedule")

    def _spawn(self, job: ScheduledJob, *, reason: str) -> asyncio.Task[object]:
        task = asyncio.create_task(self._run_job(job, reason), name=f"homex-job-{job.name}")
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _run_job(self, job: ScheduledJob, reason: str) -> object:
        token = CORRELATION_ID_CTX.set(uuid.uuid4().hex[:8])
        t0 = time.monotonic()
        try:
            logger.info("Job %s fired (%s)", job.name, reason, extra={"event": events.JOB_FIRED})
            try:
                result = await job.func()
            except Exception:
                logger.exception(
                    "Job %s failed after %.2fs; this run had no effect.",
                    job.name,
                    time.monotonic() - t0,
                    extra={"event": events.SWEEP_ERROR},
                )
                return None
            logger.info("Job %s finished in %.2fs: %s", job.name, time.monotonic() - t0, result)
            return result
        finally:
            CORRELATION_ID_CTX.reset(token)


# ---------------------------------------------------------------------------
# Default job table
# ---------------------------------------------------------------------------


def build_default_jobs(service: ListingService, settings: Settings) -> list[ScheduledJob]:
    """The two expiry jobs, on the schedules configured in *settings*."""
    return [
        ScheduledJob(EXPIRE_JOB, settings.expiry_sweep_cron, service.delete_expired),
        ScheduledJob(NOTIFY_JOB, settings.notify_sweep_cron, service.notify_expiring),
    ]
