"""Listing lifecycle: expiry rules, queries and sweeps."""

from homex.lifecycle.service import ListingService, NotificationSweepResult
from homex.lifecycle.states import ListingState, classify, in_notice_window

__all__ = [
    "ListingService",
    "NotificationSweepResult",
    "ListingState",
    "classify",
    "in_notice_window",
]
