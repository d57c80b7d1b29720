"""Core domain models, settings, logging configuration, and shared utilities."""

from homex.core.exceptions import (
    ConfigError,
    HomexError,
    InvalidIdError,
    NotFoundError,
    NotificationError,
    NotificationFailure,
    PersistenceError,
    SchedulerError,
    ValidationError,
)
from homex.core.logging_config import JsonFormatter, configure_logging
from homex.core.models import Listing, ListingInput, ListingPage, SearchQuery
from homex.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "Listing",
    "ListingInput",
    "ListingPage",
    "SearchQuery",
    # Settings
    "Settings",
    # Exceptions
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
