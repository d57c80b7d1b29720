"""Structured log event name constants.

Key transitions emit a log record carrying an ``event`` field
(``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the value
appears under ``extra.event``; in text mode the message is self-describing.

Usage example::

    import logging
    from homex.core import events

    logger = logging.getLogger(__name__)
    logger.info("Expiry sweep started", extra={"event": events.SWEEP_START})
"""

from __future__ import annotations

__all__ = [
    # Listing lifecycle
    "LISTING_CREATED",
    "LISTING_RENEWED",
    # Sweeps
    "SWEEP_START",
    "SWEEP_COMPLETE",
    "SWEEP_SKIPPED",
    "SWEEP_ERROR",
    "LISTING_NOTIFIED",
    "LISTING_NOTIFY_ERROR",
    # Scheduler
    "SCHEDULER_START",
    "SCHEDULER_STOP",
    "JOB_FIRED",
    # HTTP
    "REQUEST_COMPLETE",
    "REQUEST_ERROR",
]

# ---------------------------------------------------------------------------
# Listing lifecycle
# ---------------------------------------------------------------------------

#: A listing was persisted with a fresh expiry horizon.
LISTING_CREATED: str = "LISTING_CREATED"

#: A listing's expiry horizon was reset to now + TTL.
LISTING_RENEWED: str = "LISTING_RENEWED"

# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------

#: Emitted at the start of an expiry or notification sweep.
SWEEP_START: str = "SWEEP_START"

#: Emitted once a sweep has finished, with its counts.
SWEEP_COMPLETE: str = "SWEEP_COMPLETE"

#: The notification sweep was skipped because the notifier is not ready.
SWEEP_SKIPPED: str = "SWEEP_SKIPPED"

#: A sweep raised; the run had no effect.
SWEEP_ERROR: str = "SWEEP_ERROR"

#: An expiry notice was accepted by the email API.
LISTING_NOTIFIED: str = "LISTING_NOTIFIED"

#: An expiry notice failed for one listing; the sweep continued.
LISTING_NOTIFY_ERROR: str = "LISTING_NOTIFY_ERROR"

# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

SCHEDULER_START: str = "SCHEDULER_START"
SCHEDULER_STOP: str = "SCHEDULER_STOP"

#: A scheduled job reached its fire time and a run was spawned.
JOB_FIRED: str = "JOB_FIRED"

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

REQUEST_COMPLETE: str = "REQUEST_COMPLETE"
REQUEST_ERROR: str = "REQUEST_ERROR"
