"""Listing store: document persistence over the ``listings`` SQLite table.

Provides :class:`ListingStore`, the single data-access object for listings.
Every method is one statement plus a commit; there are no multi-step
transactions.  Driver errors are wrapped in
:class:`~homex.core.exceptions.PersistenceError` so callers never see
``aiosqlite`` types.

Typical usage::

    from homex.storage.database import open_db
    from homex.storage.filters import Lt
    from homex.storage.repository import ListingStore

    async def run() -> None:
        conn = await open_db()
        store = ListingStore(conn)

        listing = await store.insert_one(doc, created_at=now, expiration_date=later)
        deleted = await store.delete_many(Lt("expirationDate", now))
        await conn.close()
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import aiosqlite

from homex.core.exceptions import PersistenceError
from homex.core.ids import new_listing_id
from homex.core.models import Listing
from homex.storage.database import format_timestamp, parse_timestamp
from homex.storage.filters import Filter, compile_filter, compile_sort

__all__ = ["ListingStore"]

logger = logging.getLogger(__name__)

#: Driver errors, the ValueError aiosqlite raises on a closed connection, and
#: the OverflowError sqlite3 raises for integers beyond 64 bits.
_DB_ERRORS = (aiosqlite.Error, ValueError, OverflowError)

#: Patch keys that live in real columns instead of the JSON document.
_COLUMN_PATCH_KEYS: dict[str, str] = {
    "createdAt": "created_at",
    "expirationDate": "expiration_date",
}


class ListingStore:
    """Data-access object for the ``listings`` table.

    Owns no connection lifecycle: the caller supplies an open
    :class:`aiosqlite.Connection` (see :func:`~homex.storage.database.open_db`)
    and closes it on shutdown.  One instance is shared process-wide by the
    API and the scheduled sweeps.

    Args:
        conn: Open, configured connection with the ``REGEXP`` function
            registered.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_one(
        self,
        doc: Mapping[str, Any],
        *,
        created_at: datetime,
        expiration_date: datetime,
    ) -> Listing:
        """Insert a new listing document and return it with its new id.

        Args:
            doc: camelCase payload (as produced by
                :meth:`~homex.core.models.ListingInput.to_document`).
            created_at: Creation instant.
            expiration_date: Expiry horizon.

        Raises:
            PersistenceError: If the insert fails.
        """
        listing_id = new_listing_id(created_at)
        payload = _strip_reserved(doc)
        try:
            await self._conn.execute(
                """
                INSERT INTO listings (id, created_at, expiration_date, doc)
                VALUES (?, ?, ?, ?)
                """,
                (
                    listing_id,
                    format_timestamp(created_at),
                    format_timestamp(expiration_date),
                    json.dumps(payload),
                ),
            )
            await self._conn.commit()
        except _DB_ERRORS as exc:
            raise PersistenceError(f"insert_one failed: {exc}") from exc

        logger.debug("Inserted listing %s (expires %s)", listing_id, expiration_date.isoformat())
        return _to_listing(listing_id, created_at, expiration_date, payload)

    async def update_one(self, listing_id: str, patch: Mapping[str, Any]) -> Listing | None:
        """Apply *patch* to one listing and return the updated record.

        ``createdAt``/``expirationDate`` keys update their columns; every
        other key is merged into the JSON document (a ``None`` value removes
        the key).

        Returns:
            The updated :class:`Listing`, or ``None`` if no row has that id.

        Raises:
            PersistenceError: If the update fails.
        """
        assignments: list[str] = []
        params: list[object] = []
        doc_patch: dict[str, Any] = {}
        for key, value in patch.items():
            column = _COLUMN_PATCH_KEYS.get(key)
            if column is not None:
                assignments.append(f"{column} = ?")
                params.append(format_timestamp(value))
            elif key not in ("id", "_id"):
                doc_patch[key] = value

        if doc_patch:
            assignments.append("doc = json_patch(doc, ?)")
            params.append(json.dumps(doc_patch))

        if not assignments:
            return await self.find_by_id(listing_id)

        try:
            cursor = await self._conn.execute(
                f"UPDATE listings SET {', '.join(assignments)} WHERE id = ?",
                (*params, listing_id),
            )
            await self._conn.commit()
        except _DB_ERRORS as exc:
            raise PersistenceError(f"update_one failed for {listing_id}: {exc}") from exc

        if cursor.rowcount == 0:
            return None
        logger.debug("Updated listing %s (%s)", listing_id, ", ".join(patch))
        return await self.find_by_id(listing_id)

    async def delete_many(self, predicate: Filter | None) -> int:
        """Delete every listing matching *predicate* and return the count.

        Raises:
            PersistenceError: If the delete fails.
        """
        where, params = compile_filter(predicate)
        try:
            cursor = await self._conn.execute(f"DELETE FROM listings WHERE {where}", params)
            await self._conn.commit()
        except _DB_ERRORS as exc:
            raise PersistenceError(f"delete_many failed: {exc}") from exc
        deleted = max(cursor.rowcount, 0)
        logger.debug("delete_many removed %d row(s)", deleted)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_id(self, listing_id: str) -> Listing | None:
        """Return the listing with *listing_id*, or ``None``."""
        rows = await self._select("SELECT * FROM listings WHERE id = ?", (listing_id,))
        return _row_to_listing(rows[0]) if rows else None

    async def find_many(
        self,
        predicate: Filter | None = None,
        *,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Listing]:
        """Return listings matching *predicate*.

        Args:
            predicate: Filter from :mod:`homex.storage.filters`; ``None``
                matches everything.
            sort: ``[(field, 1 | -1), ...]``; omitted means natural order.
            skip: Number of matching rows to skip.
            limit: Maximum number of rows to return; ``None`` is unbounded.
        """
        where, params = compile_filter(predicate)
        order, order_params = compile_sort(sort)
        sql = f"SELECT * FROM listings WHERE {where}"
        if order:
            sql += f" ORDER BY {order}, id"
        sql += " LIMIT ? OFFSET ?"
        rows = await self._select(
            sql,
            (*params, *order_params, -1 if limit is None else limit, max(skip, 0)),
        )
        return [_row_to_listing(row) for row in rows]

    async def count(self, predicate: Filter | None = None) -> int:
        """Return the number of listings matching *predicate*."""
        where, params = compile_filter(predicate)
        rows = await self._select(f"SELECT COUNT(*) FROM listings WHERE {where}", params)
        return int(rows[0][0]) if rows else 0

    async def ping(self) -> bool:
        """Return ``True`` if the connection answers a trivial query."""
        try:
            cursor = await self._conn.execute("SELECT 1")
            row = await cursor.fetchone()
        except _DB_ERRORS:
            logger.warning("Database ping failed.", exc_info=True)
            return False
        return row is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _select(self, sql: str, params: tuple[object, ...] | list[object]) -> list[Any]:
        try:
            cursor = await self._conn.execute(sql, params)
            return list(await cursor.fetchall())
        except _DB_ERRORS as exc:
            raise PersistenceError(f"query failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _strip_reserved(doc: Mapping[str, Any]) -> dict[str, Any]:
    reserved = {"id", "_id", *_COLUMN_PATCH_KEYS}
    return {k: v for k, v in doc.items() if k not in reserved and v is not None}


def _to_listing(
    listing_id: str,
    created_at: datetime,
    expiration_date: datetime,
    payload: Mapping[str, Any],
) -> Listing:
    return Listing.model_validate(
        {
            **payload,
            "id": listing_id,
            "createdAt": _as_utc(created_at),
            "expirationDate": _as_utc(expiration_date),
        }
    )


def _row_to_listing(row: aiosqlite.Row) -> Listing:
    return _to_listing(
        row["id"],
        parse_timestamp(row["created_at"]),
        parse_timestamp(row["expiration_date"]),
        json.loads(row["doc"] or "{}"),
    )


def _as_utc(value: datetime) -> datetime:
    # Same value a later read returns.
    return parse_timestamp(format_timestamp(value))
