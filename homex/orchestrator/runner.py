"""Runtime assembly: wire the store, notifier, service and scheduler.

:func:`open_runtime` is the single place where process-wide resources are
created and torn down.  The HTTP app lifespan and every maintenance CLI
command enter it once.

Component wiring
----------------
1. Open the SQLite connection via :func:`~homex.storage.database.open_db`.
   Failure here is fatal and surfaces as
   :class:`~homex.core.exceptions.PersistenceError`.
2. Build :class:`~homex.storage.repository.ListingStore` on that connection.
3. Build the :class:`~homex.notifiers.notifier.ExpiryNotifier` from
   settings and verify the email transport (failure only disables notices).
4. Build :class:`~homex.lifecycle.service.ListingService`.
5. Build (but do not start) the
   :class:`~homex.orchestrator.scheduler.ExpiryScheduler`.

Everything is released on exit, including on exceptions.

Typical usage::

    async with open_runtime(settings) as runtime:
        await runtime.scheduler.start()
        ...
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field

import aiosqlite

from homex.core.exceptions import PersistenceError
from homex.core.settings import Settings
from homex.lifecycle.service import ListingService
from homex.notifiers.notifier import ExpiryNotifier, build_notifier
from homex.orchestrator.scheduler import NOTIFY_JOB, ExpiryScheduler, build_default_jobs
from homex.storage.database import open_db
from homex.storage.repository import ListingStore

__all__ = ["Runtime", "open_runtime", "check_database"]

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Process-wide components shared by the API and the scheduled jobs."""

    settings: Settings
    conn: aiosqlite.Connection
    store: ListingStore
    notifier: ExpiryNotifier
    service: ListingService
    scheduler: ExpiryScheduler
    started_at: float = field(default_factory=time.monotonic)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at


async def _connect(settings: Settings) -> aiosqlite.Connection:
    try:
        return await open_db(settings.database_path, timeout=settings.database_timeout)
    except (aiosqlite.Error, sqlite3.Error, OSError) as exc:
        raise PersistenceError(
            f"Cannot open database at {settings.database_path}: {exc}"
        ) from exc


async def check_database(settings: Settings) -> None:
    """Open and ping the database once, then close it.

    Raises:
        PersistenceError: If the database cannot be opened or queried.
    """
    conn = await _connect(settings)
    try:
        if not await ListingStore(conn).ping():
            raise PersistenceError(f"Database at {settings.database_path} did not answer.")
    finally:
        await conn.close()


@asynccontextmanager
async def open_runtime(
    settings: Settings,
    *,
    verify_email: bool = True,
) -> AsyncIterator[Runtime]:
    """Assemble all runtime components and release them on exit.

    Args:
        settings: Loaded application settings.
        verify_email: Run the email readiness check.  Maintenance commands
            that never send pass ``False``.

    Raises:
        PersistenceError: If the database cannot be opened.
    """
    async with AsyncExitStack() as stack:
        conn = await _connect(settings)
        stack.push_async_callback(conn.close)

        store = ListingStore(conn)

        notifier = build_notifier(settings)
        stack.push_async_callback(notifier.close)
        if verify_email:
            await notifier.start()

        service = ListingService(
            store,
            notifier,
            ttl_days=settings.listing_ttl_days,
            notice_start_days=settings.notice_window_start_days,
            notice_end_days=settings.notice_window_end_days,
        )
        scheduler = ExpiryScheduler(
            build_default_jobs(service, settings),
            timezone=settings.scheduler_timezone,
            startup_jobs=[NOTIFY_JOB] if settings.run_startup_catchup else [],
        )
        stack.push_async_callback(scheduler.stop)

        logger.info(
            "Runtime ready: db=%s email=%s env=%s",
            settings.database_path,
            "ready" if notifier.is_ready() else "not configured",
            settings.environment,
        )
        yield Runtime(
            settings=settings,
            conn=conn,
            store=store,
            notifier=notifier,
            service=service,
            scheduler=scheduler,
        )
