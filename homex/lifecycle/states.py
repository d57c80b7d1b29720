"""Derived lifecycle state of a listing.

The state is never stored; it is computed from ``expirationDate`` and the
current time::

    FRESH -> EXPIRING_SOON -> EXPIRED -> DELETED

Renewal moves any non-deleted listing back to ``FRESH``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum

from homex.core.models import Listing

__all__ = ["ListingState", "classify", "in_notice_window"]


class ListingState(StrEnum):
    FRESH = "fresh"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    DELETED = "deleted"


def classify(
    listing: Listing | None,
    now: datetime,
    *,
    notice_start_days: int = 7,
) -> ListingState:
    """Return the state of *listing* at *now*.

    ``None`` (a listing no longer in the store) is ``DELETED``.
    """
    if listing is None:
        return ListingState.DELETED
    remaining = listing.expiration_date - now
    if remaining <= timedelta(0):
        return ListingState.EXPIRED
    if remaining > timedelta(days=notice_start_days):
        return ListingState.FRESH
    return ListingState.EXPIRING_SOON


def in_notice_window(
    listing: Listing,
    now: datetime,
    *,
    start_days: int = 7,
    end_days: int = 8,
) -> bool:
    """``True`` if the notification sweep at *now* would select *listing*."""
    return (
        now + timedelta(days=start_days)
        <= listing.expiration_date
        < now + timedelta(days=end_days)
    )
