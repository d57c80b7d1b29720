"""SQLite-backed document store for listings."""

from homex.storage.database import DEFAULT_DB_PATH, create_schema, open_db
from homex.storage.filters import AllOf, AnyOf, Eq, Gte, Lt, MatchAll, Regex
from homex.storage.repository import ListingStore

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "ListingStore",
    # Filter predicates
    "MatchAll",
    "Eq",
    "Lt",
    "Gte",
    "Regex",
    "AnyOf",
    "AllOf",
]
