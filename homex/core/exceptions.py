"""Homex exception taxonomy.

Every custom exception inherits from :class:`HomexError`.  Exceptions are
organised by the layer that raises them so callers can catch at the right
granularity:

    Layer hierarchy
    ---------------
    HomexError
    ├── ConfigError
    ├── ValidationError
    ├── InvalidIdError
    ├── NotFoundError
    ├── PersistenceError
    ├── NotificationError
    │   └── NotificationFailure
    └── SchedulerError

The API layer maps each class to an HTTP status (see
:mod:`homex.api.errors`); the scheduler catches everything at the job
boundary so none of these ever crash the process from a sweep.

Usage:

    from homex.core.exceptions import PersistenceError

    raise PersistenceError("insert_one failed: database is locked") from exc
"""

from __future__ import annotations

import logging
from typing import Any

__all__ = [
    "HomexError",
    "ConfigError",
    "ValidationError",
    "InvalidIdError",
    "NotFoundError",
    "PersistenceError",
    "NotificationError",
    "NotificationFailure",
    "SchedulerError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class HomexError(Exception):
    """Root exception for all Homex errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching the specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class ConfigError(HomexError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - The database file cannot be opened at startup.
        - ``send-test-email`` is run without email credentials.
    """


# ---------------------------------------------------------------------------
# Input / lookup errors (client-side)
# ---------------------------------------------------------------------------


class ValidationError(HomexError):
    """Raised when input reaching the core is malformed.

    Carries field-level detail so the API layer can surface every problem at
    once rather than one per round-trip.

    Args:
        errors: List of ``{"field": ..., "message": ...}`` mappings.
    """

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        self.errors = errors
        fields = ", ".join(str(e.get("field", "?")) for e in errors) or "(none)"
        super().__init__(f"Validation failed for: {fields}")


class InvalidIdError(HomexError):
    """Raised when a listing identifier is not a well-formed id.

    Args:
        listing_id: The offending identifier, as received.
    """

    def __init__(self, listing_id: object) -> None:
        self.listing_id = listing_id
        super().__init__(f"Invalid listing ID: {listing_id!r}")


class NotFoundError(HomexError):
    """Raised when a well-formed listing id refers to no stored listing.

    Args:
        listing_id: The identifier that was looked up.
    """

    def __init__(self, listing_id: str) -> None:
        self.listing_id = listing_id
        super().__init__(f"Listing not found: {listing_id!r}")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class PersistenceError(HomexError):
    """Raised when a store operation fails.

    Covers connectivity, lock timeouts and constraint violations.  Never
    swallowed for CRUD operations; the API reports it as a generic server
    error and logs the full detail.
    """


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------


class NotificationError(HomexError):
    """Base class for notification delivery errors."""


class NotificationFailure(NotificationError):
    """Raised by the email transport when one message could not be delivered.

    The notifier converts this into a ``False`` return value; it never
    escapes a notification sweep.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code from the email API, if available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Email delivery failed{detail}: {message}")


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class SchedulerError(HomexError):
    """Raised for errors originating in the scheduling layer.

    Examples:
        - A job is registered with an unparseable cron expression.
        - :meth:`~homex.orchestrator.scheduler.ExpiryScheduler.start` is
          called twice.
    """
