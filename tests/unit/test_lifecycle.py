"""Unit tests for the listing lifecycle service and derived states.

Runs :class:`~homex.lifecycle.service.ListingService` against a real
SQLite store with a settable clock, and a mocked
:class:`~homex.notifiers.notifier.ExpiryNotifier`.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from homex.core.exceptions import InvalidIdError, NotFoundError, PersistenceError
from homex.core.models import Listing, ListingInput
from homex.lifecycle.service import MAX_ROW_OFFSET, ListingService
from homex.lifecycle.states import ListingState, classify, in_notice_window
from homex.notifiers.notifier import ExpiryNotifier
from homex.storage.repository import ListingStore

TTL = timedelta(days=60)


def _input(**overrides: Any) -> ListingInput:
    body: dict[str, Any] = {"name": "Cedar cottage", "email": "owner@example.com"}
    body.update(overrides)
    return ListingInput.model_validate(body)


def _notifier(*, ready: bool = True, side_effect: Any = None) -> MagicMock:
    notifier = MagicMock(spec=ExpiryNotifier)
    notifier.is_ready.return_value = ready
    notifier.send_expiry_notice = AsyncMock(return_value=True, side_effect=side_effect)
    return notifier


async def _seed(store: ListingStore, clock: Any, name: str, expires_in: timedelta) -> Listing:
    """Insert a listing that expires *expires_in* after the clock's now."""
    now = clock()
    return await store.insert_one(
        {"name": name, "email": f"{name.replace(' ', '')}@example.com"},
        created_at=now - TTL + expires_in,
        expiration_date=now + expires_in,
    )


@pytest.fixture()
def service(store: ListingStore, clock: Any) -> ListingService:
    return ListingService(store, _notifier(), clock=clock)


# ---------------------------------------------------------------------------
# Create / renew / get
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_creation_sets_sixty_day_expiry(self, service: ListingService, clock: Any) -> None:
        listing = await service.create(_input())
        assert listing.created_at == clock.now
        assert listing.expiration_date - listing.created_at == TTL

    async def test_payload_persisted(self, service: ListingService) -> None:
        listing = await service.create(_input(keywords=["garden"], lotArea="1 acre"))
        stored = await service.get_by_id(listing.id)
        assert stored.keywords == ["garden"]
        assert stored.lot_area == "1 acre"

    async def test_store_failure_is_persistence_error(self, clock: Any) -> None:
        store = MagicMock(spec=ListingStore)
        store.insert_one = AsyncMock(side_effect=PersistenceError("disk full"))
        svc = ListingService(store, clock=clock)
        with pytest.raises(PersistenceError):
            await svc.create(_input())

    async def test_custom_ttl(self, store: ListingStore, clock: Any) -> None:
        svc = ListingService(store, clock=clock, ttl_days=30)
        listing = await svc.create(_input())
        assert listing.expiration_date - listing.created_at == timedelta(days=30)


class TestRenew:
    async def test_renewal_resets_expiry_from_now(
        self, service: ListingService, store: ListingStore, clock: Any
    ) -> None:
        listing = await _seed(store, clock, "soon", timedelta(days=2))
        clock.now += timedelta(hours=5)
        renewed = await service.renew(listing.id)
        assert renewed.expiration_date == clock.now + TTL
        assert renewed.created_at == listing.created_at

    async def test_renewal_of_already_expired_listing(
        self, service: ListingService, store: ListingStore, clock: Any
    ) -> None:
        listing = await _seed(store, clock, "late", timedelta(days=-3))
        renewed = await service.renew(listing.id)
        assert renewed.expiration_date == clock.now + TTL
        assert classify(renewed, clock.now) is ListingState.FRESH

    async def test_renew_accepts_uppercase_id(
        self, service: ListingService, store: ListingStore, clock: Any
    ) -> None:
        listing = await _seed(store, clock, "x", timedelta(days=2))
        renewed = await service.renew(listing.id.upper())
        assert renewed.id == listing.id

    async def test_renew_missing(self, service: ListingService) -> None:
        with pytest.raises(NotFoundError):
            await service.renew("000000000000000000000000")

    async def test_renew_malformed(self, service: ListingService) -> None:
        with pytest.raises(InvalidIdError):
            await service.renew("not-an-id")


class TestGetById:
    async def test_found(self, service: ListingService) -> None:
        created = await service.create(_input())
        assert (await service.get_by_id(created.id)).id == created.id

    async def test_well_formed_but_missing_is_not_found(self, service: ListingService) -> None:
        with pytest.raises(NotFoundError):
            await service.get_by_id("000000000000000000000000")

    async def test_malformed_is_invalid_id(self, service: ListingService) -> None:
        with pytest.raises(InvalidIdError):
            await service.get_by_id("not-an-id")


# ---------------------------------------------------------------------------
# List / search
# ---------------------------------------------------------------------------


class TestList:
    async def _fill(self, service: ListingService, clock: Any, n: int) -> None:
        for i in range(n):
            await service.create(_input(name=f"listing {i}"))
            clock.now += timedelta(minutes=1)

    async def test_newest_first_with_total(self, service: ListingService, clock: Any) -> None:
        await self._fill(service, clock, 3)
        page = await service.list()
        assert [listing.name for listing in page.listings] == [
            "listing 2",
            "listing 1",
            "listing 0",
        ]
        assert (page.page, page.limit, page.total) == (1, 50, 3)

    async def test_window(self, service: ListingService, clock: Any) -> None:
        await self._fill(service, clock, 5)
        page = await service.list(page=2, limit=2)
        assert [listing.name for listing in page.listings] == ["listing 2", "listing 1"]
        assert page.total_pages == 3

    async def test_out_of_bounds_clamped(self, service: ListingService, clock: Any) -> None:
        await self._fill(service, clock, 3)
        clamped = await service.list(page=0, limit=500)
        reference = await service.list(page=1, limit=100)
        assert (clamped.page, clamped.limit) == (1, 100)
        assert [x.id for x in clamped.listings] == [x.id for x in reference.listings]
        assert clamped.total == reference.total

    @pytest.mark.parametrize(
        "page, limit, expected",
        [
            (None, None, (1, 50)),
            ("3", "10", (3, 10)),
            ("abc", "xyz", (1, 50)),
            (-5, 0, (1, 1)),
            ("1", "0", (1, 1)),
            (None, "-3", (1, 1)),
            ("2.5", "", (1, 50)),
        ],
    )
    async def test_parameter_coercion(
        self, service: ListingService, page: Any, limit: Any, expected: tuple[int, int]
    ) -> None:
        result = await service.list(page, limit)
        assert (result.page, result.limit) == expected

    async def test_page_past_end_is_empty(self, service: ListingService, clock: Any) -> None:
        await self._fill(service, clock, 2)
        page = await service.list(page=5, limit=10)
        assert page.listings == []
        assert page.total == 2

    @pytest.mark.parametrize("limit", ["1", "10", "100"])
    async def test_huge_page_clamped_to_last_addressable(
        self, service: ListingService, clock: Any, limit: str
    ) -> None:
        await self._fill(service, clock, 2)
        page = await service.list(page="99999999999999999999", limit=limit)
        assert page.listings == []
        assert page.total == 2
        assert (page.page - 1) * page.limit <= MAX_ROW_OFFSET


class TestSearch:
    async def test_literal_metacharacters(self, service: ListingService) -> None:
        await service.create(_input(name="a", address="Unit 4, 3BR (updated) kitchen"))
        await service.create(_input(name="b", address="3BR updated"))
        results = await service.search("3BR (updated)")
        assert [listing.name for listing in results] == ["a"]

    @pytest.mark.parametrize("query", [".*", "a+b", "x?", "[1]", "{2}", "a|b", "^$", "\\"])
    async def test_metacharacters_never_raise(self, service: ListingService, query: str) -> None:
        await service.create(_input(name="plain"))
        assert await service.search(query) == []

    async def test_matches_any_field_case_insensitive(self, service: ListingService) -> None:
        await service.create(_input(name="CEDAR cottage"))
        await service.create(_input(name="x", address="1 Cedar Lane"))
        await service.create(_input(name="y", location="Cedarville"))
        await service.create(_input(name="z", keywords=["pool", "cedar deck"]))
        await service.create(_input(name="none", address="Oak St"))
        names = sorted(listing.name for listing in await service.search("cedar"))
        assert names == ["CEDAR cottage", "x", "y", "z"]

    async def test_fields_outside_search_set_ignored(self, service: ListingService) -> None:
        await service.create(_input(name="x", notes="cedar everywhere"))
        assert await service.search("cedar") == []

    @pytest.mark.parametrize("query", ["", "   "])
    async def test_blank_query_returns_empty(self, service: ListingService, query: str) -> None:
        await service.create(_input())
        assert await service.search(query) == []

    async def test_result_cap(self, service: ListingService) -> None:
        for i in range(105):
            await service.create(_input(name=f"match {i}"))
        assert len(await service.search("match")) == 100


# ---------------------------------------------------------------------------
# Expiry sweep
# ---------------------------------------------------------------------------


class TestDeleteExpired:
    async def test_deletes_only_past_expiry(
        self, service: ListingService, store: ListingStore, clock: Any
    ) -> None:
        await _seed(store, clock, "gone", timedelta(seconds=-1))
        await _seed(store, clock, "gone too", timedelta(days=-30))
        kept = await _seed(store, clock, "kept", timedelta(seconds=1))
        assert await service.delete_expired() == 2
        remaining = await store.find_many()
        assert [listing.id for listing in remaining] == [kept.id]

    async def test_listing_expiring_exactly_now_is_kept(
        self, service: ListingService, store: ListingStore, clock: Any
    ) -> None:
        await _seed(store, clock, "edge", timedelta(0))
        assert await service.delete_expired() == 0

    async def test_idempotent(
        self, service: ListingService, store: ListingStore, clock: Any
    ) -> None:
        await _seed(store, clock, "gone", timedelta(days=-1))
        await _seed(store, clock, "kept", timedelta(days=10))
        assert await service.delete_expired() == 1
        assert await service.delete_expired() == 0
        assert await store.count() == 1

    async def test_empty_store(self, service: ListingService) -> None:
        assert await service.delete_expired() == 0


# ---------------------------------------------------------------------------
# Notification sweep
# ---------------------------------------------------------------------------


class TestNotifyExpiring:
    async def test_window_selection(self, store: ListingStore, clock: Any) -> None:
        notifier = _notifier()
        svc = ListingService(store, notifier, clock=clock)
        inside = await _seed(store, clock, "inside", timedelta(days=7.5))
        await _seed(store, clock, "too soon", timedelta(days=6.9))
        await _seed(store, clock, "too late", timedelta(days=8.1))

        result = await svc.notify_expiring()

        assert (result.selected, result.sent, result.failed) == (1, 1, 0)
        notifier.send_expiry_notice.assert_awaited_once()
        sent_listing = notifier.send_expiry_notice.await_args.args[0]
        assert sent_listing.id == inside.id

    async def test_window_is_half_open(self, store: ListingStore, clock: Any) -> None:
        notifier = _notifier()
        svc = ListingService(store, notifier, clock=clock)
        await _seed(store, clock, "start", timedelta(days=7))
        await _seed(store, clock, "end", timedelta(days=8))
        result = await svc.notify_expiring()
        assert result.selected == 1
        assert notifier.send_expiry_notice.await_args.args[0].name == "start"

    async def test_partial_failure_isolated(self, store: ListingStore, clock: Any) -> None:
        notifier = _notifier(side_effect=[False, True])
        svc = ListingService(store, notifier, clock=clock)
        await _seed(store, clock, "a", timedelta(days=7, hours=1))
        await _seed(store, clock, "b", timedelta(days=7, hours=2))

        result = await svc.notify_expiring()

        assert (result.selected, result.sent, result.failed) == (2, 1, 1)
        assert notifier.send_expiry_notice.await_count == 2

    async def test_raising_send_does_not_abort_sweep(
        self, store: ListingStore, clock: Any, caplog: pytest.LogCaptureFixture
    ) -> None:
        notifier = _notifier(side_effect=[RuntimeError("boom"), True])
        svc = ListingService(store, notifier, clock=clock)
        await _seed(store, clock, "a", timedelta(days=7, hours=1))
        await _seed(store, clock, "b", timedelta(days=7, hours=2))

        with caplog.at_level(logging.ERROR, logger="homex.lifecycle.service"):
            result = await svc.notify_expiring()

        assert (result.sent, result.failed) == (1, 1)
        assert any("Unexpected error notifying" in r.message for r in caplog.records)

    async def test_sends_are_sequential_in_expiry_order(
        self, store: ListingStore, clock: Any
    ) -> None:
        notifier = _notifier()
        svc = ListingService(store, notifier, clock=clock)
        await _seed(store, clock, "later", timedelta(days=7, hours=20))
        await _seed(store, clock, "earlier", timedelta(days=7, hours=1))
        await svc.notify_expiring()
        names = [c.args[0].name for c in notifier.send_expiry_notice.await_args_list]
        assert names == ["earlier", "later"]

    async def test_not_ready_skips_whole_sweep(
        self, store: ListingStore, clock: Any, caplog: pytest.LogCaptureFixture
    ) -> None:
        notifier = _notifier(ready=False)
        svc = ListingService(store, notifier, clock=clock)
        await _seed(store, clock, "a", timedelta(days=7.5))

        with caplog.at_level(logging.WARNING, logger="homex.lifecycle.service"):
            result = await svc.notify_expiring()

        assert result.skipped is True
        notifier.send_expiry_notice.assert_not_awaited()
        assert sum(r.levelno == logging.WARNING for r in caplog.records) == 1

    async def test_no_notifier_skips(self, store: ListingStore, clock: Any) -> None:
        svc = ListingService(store, None, clock=clock)
        assert (await svc.notify_expiring()).skipped is True

    async def test_renewed_listing_leaves_window(
        self, store: ListingStore, clock: Any
    ) -> None:
        notifier = _notifier()
        svc = ListingService(store, notifier, clock=clock)
        listing = await _seed(store, clock, "a", timedelta(days=7.5))
        await svc.renew(listing.id)
        result = await svc.notify_expiring()
        assert result.selected == 0

    async def test_row_outside_window_from_store_not_notified(
        self, clock: Any, caplog: pytest.LogCaptureFixture
    ) -> None:
        inside = Listing(
            id="a" * 24,
            name="inside",
            created_at=clock.now,
            expiration_date=clock.now + timedelta(days=7.5),
        )
        stray = Listing(
            id="b" * 24,
            name="stray",
            created_at=clock.now,
            expiration_date=clock.now + timedelta(days=30),
        )
        store = MagicMock(spec=ListingStore)
        store.find_many = AsyncMock(return_value=[inside, stray])
        notifier = _notifier()
        svc = ListingService(store, notifier, clock=clock)

        with caplog.at_level(logging.WARNING, logger="homex.lifecycle.service"):
            result = await svc.notify_expiring()

        assert (result.selected, result.sent) == (1, 1)
        assert notifier.send_expiry_notice.await_args.args[0].name == "inside"
        assert any(
            "outside the notice window" in r.getMessage() and "fresh" in r.getMessage()
            for r in caplog.records
        )

    def test_empty_window_rejected(self, store: ListingStore) -> None:
        with pytest.raises(ValueError):
            ListingService(store, notice_start_days=8, notice_end_days=8)


# ---------------------------------------------------------------------------
# Maintenance purges
# ---------------------------------------------------------------------------


class TestPurges:
    async def test_purge_created_before(
        self, service: ListingService, clock: Any, store: ListingStore
    ) -> None:
        await service.create(_input(name="old"))
        clock.now += timedelta(days=61)
        await service.create(_input(name="new"))
        assert await service.purge_created_before(60) == 1
        assert [listing.name for listing in await store.find_many()] == ["new"]

    async def test_purge_matching_name_is_literal(
        self, service: ListingService, store: ListingStore
    ) -> None:
        await service.create(_input(name="Smoke Test (ci) listing"))
        await service.create(_input(name="Smoke Test ci listing"))
        await service.create(_input(name="Real home"))
        assert await service.purge_matching_name("test (CI)") == 1
        assert await store.count() == 2

    async def test_purge_matching_empty_refused(self, service: ListingService) -> None:
        with pytest.raises(ValueError):
            await service.purge_matching_name("  ")


# ---------------------------------------------------------------------------
# Derived states
# ---------------------------------------------------------------------------


class TestStates:
    def _listing(self, clock: Any, expires_in: timedelta) -> Listing:
        return Listing(
            id="a" * 24,
            name="x",
            created_at=clock.now,
            expiration_date=clock.now + expires_in,
        )

    @pytest.mark.parametrize(
        "expires_in, state",
        [
            (timedelta(days=30), ListingState.FRESH),
            (timedelta(days=7, seconds=1), ListingState.FRESH),
            (timedelta(days=7), ListingState.EXPIRING_SOON),
            (timedelta(hours=1), ListingState.EXPIRING_SOON),
            (timedelta(0), ListingState.EXPIRED),
            (timedelta(days=-2), ListingState.EXPIRED),
        ],
    )
    def test_classify(self, clock: Any, expires_in: timedelta, state: ListingState) -> None:
        assert classify(self._listing(clock, expires_in), clock.now) is state

    def test_missing_listing_is_deleted(self, clock: Any) -> None:
        assert classify(None, clock.now) is ListingState.DELETED

    @pytest.mark.parametrize(
        "days, expected",
        [(7.5, True), (7.0, True), (6.9, False), (8.0, False), (8.1, False)],
    )
    def test_in_notice_window(self, clock: Any, days: float, expected: bool) -> None:
        listing = self._listing(clock, timedelta(days=days))
        assert in_notice_window(listing, clock.now) is expected
