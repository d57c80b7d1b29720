"""Listing lifecycle: creation, renewal, queries and the two expiry sweeps.

:class:`ListingService` owns every rule about *when* a listing lives and
dies.  It is shared by the HTTP layer (CRUD) and the scheduler (sweeps) and
talks only to a :class:`~homex.storage.repository.ListingStore` and an
optional :class:`~homex.notifiers.notifier.ExpiryNotifier`.

Expiry horizon
--------------
``expirationDate`` is always *now + TTL* at the moment of the last creation
or renewal and is never derived from anything else.  The TTL defaults to 60
days.

Sweeps
------
* :meth:`ListingService.delete_expired` hard-deletes every listing whose
  ``expirationDate`` is strictly before now.  Re-running it immediately
  deletes nothing.
* :meth:`ListingService.notify_expiring` selects listings whose
  ``expirationDate`` falls in ``[now + 7d, now + 8d)`` and sends one notice
  per listing, sequentially.  One failed send never aborts the rest.  If
  the notifier is not ready the sweep is skipped with a single warning.

Typical usage::

    service = ListingService(store, notifier)
    listing = await service.create(validate_listing_input(body))
    page = await service.list(page="2", limit="20")
    result = await service.notify_expiring()
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from homex.core import events
from homex.core.exceptions import NotFoundError
from homex.core.ids import normalise_listing_id
from homex.core.models import Listing, ListingInput, ListingPage
from homex.lifecycle.states import classify, in_notice_window
from homex.notifiers.notifier import ExpiryNotifier
from homex.storage.filters import AllOf, AnyOf, Gte, Lt, Regex
from homex.storage.repository import ListingStore

__all__ = [
    "ListingService",
    "NotificationSweepResult",
    "DEFAULT_TTL_DAYS",
    "DEFAULT_PAGE_LIMIT",
    "MAX_PAGE_LIMIT",
    "SEARCH_RESULT_CAP",
    "SEARCH_FIELDS",
]

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS: int = 60
DEFAULT_PAGE_LIMIT: int = 50
MAX_PAGE_LIMIT: int = 100
SEARCH_RESULT_CAP: int = 100

#: Largest row offset SQLite accepts (signed 64-bit INTEGER).
MAX_ROW_OFFSET: int = 2**63 - 1

#: Document fields a search query is matched against (logical OR).
SEARCH_FIELDS: tuple[str, ...] = ("name", "address", "location", "keywords")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _coerce_int(value: object, default: int) -> int:
    """Parse a page/limit parameter; anything unparseable yields *default*."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Sweep result
# ---------------------------------------------------------------------------


@dataclass
class NotificationSweepResult:
    """Counters for one notification sweep.

    Attributes:
        selected: Listings found in the notice window.
        sent: Notices accepted by the transport.
        failed: Notices that were rejected or raised.
        skipped: ``True`` when the sweep did nothing because the notifier
            was not ready.
    """

    selected: int = 0
    sent: int = 0
    failed: int = 0
    skipped: bool = False

    def __str__(self) -> str:
        if self.skipped:
            return "NotificationSweepResult(skipped)"
        return (
            f"NotificationSweepResult(selected={self.selected}, "
            f"sent={self.sent}, failed={self.failed})"
        )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ListingService:
    """Lifecycle rules for listings.

    Args:
        store: Listing persistence.
        notifier: Expiry-notice sender.  ``None`` means notices are
            disabled and :meth:`notify_expiring` always skips.
        clock: Returns the current aware UTC time.  Injected by tests.
        ttl_days: Days between creation/renewal and expiry.
        notice_start_days: Inclusive lower bound of the notice window.
        notice_end_days: Exclusive upper bound of the notice window.
    """

    def __init__(
        self,
        store: ListingStore,
        notifier: ExpiryNotifier | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        ttl_days: int = DEFAULT_TTL_DAYS,
        notice_start_days: int = 7,
        notice_end_days: int = 8,
    ) -> None:
        if notice_start_days >= notice_end_days:
            raise ValueError(
                f"notice window is empty: start={notice_start_days} end={notice_end_days}"
            )
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self._ttl = timedelta(days=ttl_days)
        self._notice_start = timedelta(days=notice_start_days)
        self._notice_end = timedelta(days=notice_end_days)

    @property
    def store(self) -> ListingStore:
        return self._store

    @property
    def notifier(self) -> ExpiryNotifier | None:
        return self._notifier

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, data: ListingInput) -> Listing:
        """Persist a validated listing with ``expirationDate = now + TTL``.

        Raises:
            PersistenceError: If the store write fails.
        """
        now = self._clock()
        listing = await self._store.insert_one(
            data.to_document(),
            created_at=now,
            expiration_date=now + self._ttl,
        )
        logger.info(
            "Listing %s created (expires %s)",
            listing.id,
            listing.expiration_date.isoformat(),
            extra={"event": events.LISTING_CREATED},
        )
        return listing

    async def renew(self, listing_id: str) -> Listing:
        """Reset the listing's ``expirationDate`` to now + TTL.

        Raises:
            InvalidIdError: If *listing_id* is malformed.
            NotFoundError: If no listing has that id.
            PersistenceError: If the store update fails.
        """
        lid = normalise_listing_id(listing_id)
        expires = self._clock() + self._ttl
        listing = await self._store.update_one(lid, {"expirationDate": expires})
        if listing is None:
            raise NotFoundError(lid)
        logger.info(
            "Listing %s renewed until %s",
            lid,
            listing.expiration_date.isoformat(),
            extra={"event": events.LISTING_RENEWED},
        )
        return listing

    async def get_by_id(self, listing_id: str) -> Listing:
        """Return one listing.

        Raises:
            InvalidIdError: If *listing_id* is malformed.
            NotFoundError: If no listing has that id.
        """
        lid = normalise_listing_id(listing_id)
        listing = await self._store.find_by_id(lid)
        if listing is None:
            raise NotFoundError(lid)
        return listing

    async def list(self, page: object = None, limit: object = None) -> ListingPage:
        """Return one page of listings, newest first.

        *page* is clamped to ``>= 1`` and *limit* to ``[1, 100]``; values
        that do not parse as integers fall back to the defaults (1 and 50).
        Out-of-range parameters are never rejected; a page past the largest
        offset the store can express is clamped to that last page.
        """
        limit_n = min(max(_coerce_int(limit, DEFAULT_PAGE_LIMIT), 1), MAX_PAGE_LIMIT)
        page_n = min(max(_coerce_int(page, 1), 1), MAX_ROW_OFFSET // limit_n + 1)

        listings = await self._store.find_many(
            None,
            sort=[("createdAt", -1)],
            skip=(page_n - 1) * limit_n,
            limit=limit_n,
        )
        total = await self._store.count()
        return ListingPage(listings=listings, page=page_n, limit=limit_n, total=total)

    async def search(self, query: str) -> list[Listing]:
        """Case-insensitive literal substring search.

        Matches *query* against ``name``, ``address``, ``location`` and each
        element of ``keywords``; a listing matches if any field does.
        Regex metacharacters in *query* are escaped.  A blank query returns
        ``[]``.  At most 100 results, in store order.
        """
        text = (query or "").strip()
        if not text:
            return []
        pattern = re.escape(text)
        predicate = AnyOf(*(Regex(f, pattern, ignore_case=True) for f in SEARCH_FIELDS))
        results = await self._store.find_many(predicate, limit=SEARCH_RESULT_CAP)
        logger.debug("Search %r matched %d listing(s)", text, len(results))
        return results

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def delete_expired(self) -> int:
        """Hard-delete every listing with ``expirationDate < now``.

        Returns:
            Number of listings deleted (zero is normal).
        """
        t0 = time.monotonic()
        now = self._clock()
        logger.info("Expiry sweep started", extra={"event": events.SWEEP_START})
        deleted = await self._store.delete_many(Lt("expirationDate", now))
        logger.info(
            "Expiry sweep complete: %d expired listing(s) deleted in %.2fs",
            deleted,
            time.monotonic() - t0,
            extra={"event": events.SWEEP_COMPLETE},
        )
        return deleted

    async def find_expiring(self) -> list[Listing]:
        """Listings whose ``expirationDate`` is in ``[now + 7d, now + 8d)``.

        Rows returned by the store are re-checked against the same *now*;
        any that fall outside the window are dropped with a warning.
        """
        now = self._clock()
        window = AllOf(
            Gte("expirationDate", now + self._notice_start),
            Lt("expirationDate", now + self._notice_end),
        )
        found = await self._store.find_many(window, sort=[("expirationDate", 1)])
        start_days = self._notice_start.days
        end_days = self._notice_end.days
        selected = []
        for listing in found:
            if in_notice_window(listing, now, start_days=start_days, end_days=end_days):
                selected.append(listing)
                continue
            logger.warning(
                "Listing %s expiring %s is outside the notice window; not notified (%s)",
                listing.id,
                listing.expiration_date.isoformat(),
                classify(listing, now, notice_start_days=start_days),
            )
        return selected

    async def notify_expiring(self) -> NotificationSweepResult:
        """Send an expiry notice for every listing in the notice window.

        Sends are sequential.  A failure for one listing (returned ``False``
        or raised) is logged and counted; the sweep continues with the next.

        Raises:
            PersistenceError: If the window query itself fails.
        """
        result = NotificationSweepResult()
        notifier = self._notifier
        if notifier is None or not notifier.is_ready():
            logger.warning(
                "Notification sweep skipped: email transport not ready.",
                extra={"event": events.SWEEP_SKIPPED},
            )
            result.skipped = True
            return result

        t0 = time.monotonic()
        logger.info("Notification sweep started", extra={"event": events.SWEEP_START})
        listings = await self.find_expiring()
        result.selected = len(listings)

        for listing in listings:
            try:
                delivered = await notifier.send_expiry_notice(listing)
            except Exception:
                logger.exception(
                    "Unexpected error notifying listing %s",
                    listing.id,
                    extra={"event": events.LISTING_NOTIFY_ERROR},
                )
                delivered = False
            if delivered:
                result.sent += 1
            else:
                result.failed += 1

        logger.info(
            "Notification sweep complete: %d selected, %d sent, %d failed in %.2fs",
            result.selected,
            result.sent,
            result.failed,
            time.monotonic() - t0,
            extra={"event": events.SWEEP_COMPLETE},
        )
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def purge_created_before(self, days: int) -> int:
        """Delete listings created more than *days* days ago."""
        if days < 0:
            raise ValueError(f"days must be >= 0, got {days!r}")
        cutoff = self._clock() - timedelta(days=days)
        deleted = await self._store.delete_many(Lt("createdAt", cutoff))
        logger.info("Purged %d listing(s) created before %s", deleted, cutoff.isoformat())
        return deleted

    async def purge_matching_name(self, text: str) -> int:
        """Delete listings whose name contains *text* (case-insensitive, literal)."""
        needle = (text or "").strip()
        if not needle:
            raise ValueError("refusing to purge with an empty name pattern")
        deleted = await self._store.delete_many(
            Regex("name", re.escape(needle), ignore_case=True)
        )
        logger.info("Purged %d listing(s) with name containing %r", deleted, needle)
        return deleted
