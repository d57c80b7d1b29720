"""SQLite database initialisation for Homex.

This module is responsible for:

* Opening (or creating) the SQLite file with a busy timeout.
* Configuring PRAGMA settings (WAL journal mode, foreign keys).
* Registering the ``REGEXP`` SQL function used by regex filters.
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS``; safe to call
  on every startup.

Call :func:`open_db` once at process startup and share the returned
connection with :class:`~homex.storage.repository.ListingStore`.  The
connection is closed by the application lifespan on shutdown.

Typical usage::

    from homex.storage.database import open_db

    async def main() -> None:
        conn = await open_db(Path("data/homex.db"))
        # ... pass conn to ListingStore ...
        await conn.close()
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path

import aiosqlite

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "sql_regexp",
    "format_timestamp",
    "parse_timestamp",
]

logger = logging.getLogger(__name__)

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("homex.db")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: ``listings`` holds one row per listing document.
#:
#: Column notes
#: ------------
#: id               24-char hex listing id (see :mod:`homex.core.ids`).
#: created_at       UTC timestamp, fixed-width ISO text so that string
#:                  comparison orders chronologically.
#: expiration_date  Same encoding; drives both sweeps.
#: doc              camelCase JSON payload (name, email, keywords, ...).
_DDL_LISTINGS = """\
CREATE TABLE IF NOT EXISTS listings (
    id               TEXT  NOT NULL PRIMARY KEY,
    created_at       TEXT  NOT NULL,
    expiration_date  TEXT  NOT NULL,
    doc              TEXT  NOT NULL DEFAULT '{}'
)"""

_DDL_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_listings_created_at ON listings (created_at)",
    "CREATE INDEX IF NOT EXISTS idx_listings_expiration_date ON listings (expiration_date)",
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None, *, timeout: float = 5.0) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and configure it.

    Steps performed on every call:

    1. Create parent directories for the DB file if they do not exist.
    2. Open the ``aiosqlite`` connection with *timeout* as busy timeout.
    3. Set ``row_factory = aiosqlite.Row``.
    4. Enable WAL journal mode and foreign-key enforcement.
    5. Register the ``REGEXP`` function.
    6. Call :func:`create_schema` (idempotent).

    Args:
        path: Filesystem path for the SQLite file, or ``":memory:"``.
            Defaults to :data:`DEFAULT_DB_PATH`.
        timeout: Seconds to wait on a locked database before failing.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.

    Raises:
        aiosqlite.OperationalError: If the database file cannot be opened.
    """
    db_path = path or DEFAULT_DB_PATH
    if str(db_path) != ":memory:":
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    conn: aiosqlite.Connection = await aiosqlite.connect(db_path, timeout=timeout)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn)
    await conn.create_function("regexp", 2, sql_regexp, deterministic=True)
    await create_schema(conn)

    logger.info("SQLite database ready at %s (schema verified)", db_path)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create the ``listings`` table and its indexes if missing.

    Idempotent; existing data is untouched.
    """
    await conn.execute(_DDL_LISTINGS)
    for ddl in _DDL_INDEXES:
        await conn.execute(ddl)
    await conn.commit()
    logger.debug("Schema bootstrap complete (listings table verified)")


def sql_regexp(pattern: str | None, value: object) -> bool:
    """Implementation of SQLite's ``X REGEXP Y`` operator.

    SQLite calls ``regexp(Y, X)``, so the pattern comes first.  ``NULL``
    values never match; non-string values are matched on their text form.
    """
    if pattern is None or value is None:
        return False
    return _compiled(pattern).search(str(value)) is not None


@lru_cache(maxsize=128)
def _compiled(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def format_timestamp(value: datetime) -> str:
    """Encode *value* as fixed-width UTC text (``2026-10-18T01:00:00.000000Z``).

    Naive datetimes are taken to be UTC.  The fixed width (microseconds
    always present) keeps lexical order equal to chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(_TS_FORMAT)


def parse_timestamp(text: str) -> datetime:
    """Decode text written by :func:`format_timestamp` into an aware datetime."""
    return datetime.strptime(text, _TS_FORMAT).replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Apply PRAGMA settings that must be set immediately after opening."""
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.debug("SQLite journal_mode is %r (expected for in-memory databases).", mode)
    await conn.execute("PRAGMA foreign_keys=ON")
