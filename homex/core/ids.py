"""Listing identifier strategy for Homex.

Listing ids are opaque to clients but have a fixed shape: 24 lowercase
hexadecimal characters, the same shape as a MongoDB ObjectId so that ids
issued by the original deployment stay valid.

Layout of a freshly issued id
-----------------------------
+---------+---------------------------------------------+
| Bytes   | Content                                     |
+=========+=============================================+
| 0 - 3   | creation time, seconds since epoch (BE)     |
+---------+---------------------------------------------+
| 4 - 11  | random bytes from :func:`secrets.token_bytes`|
+---------+---------------------------------------------+

Only the *shape* is checked when an id comes back from a client
(:func:`is_valid_listing_id`); the embedded timestamp is never trusted.

Typical usage::

    from homex.core.ids import new_listing_id, normalise_listing_id

    lid = new_listing_id()
    lid = normalise_listing_id(raw)   # raises InvalidIdError
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import UTC, datetime

from homex.core.exceptions import InvalidIdError

__all__ = [
    "LISTING_ID_LENGTH",
    "new_listing_id",
    "is_valid_listing_id",
    "normalise_listing_id",
]

logger = logging.getLogger(__name__)

#: Number of hex characters in a listing id (12 bytes).
LISTING_ID_LENGTH: int = 24

_ID_RE = re.compile(r"[0-9a-fA-F]{24}")


def new_listing_id(now: datetime | None = None) -> str:
    """Return a new 24-character hex listing id.

    Args:
        now: Creation instant embedded in the first four bytes.  Defaults
            to the current UTC time.

    Returns:
        A lowercase hex string such as ``"6710a2c05f1e4b9d0c3a7e21"``.
    """
    ts = int((now or datetime.now(UTC)).timestamp()) & 0xFFFFFFFF
    return ts.to_bytes(4, "big").hex() + secrets.token_bytes(8).hex()


def is_valid_listing_id(value: object) -> bool:
    """Return ``True`` if *value* is a string shaped like a listing id."""
    return isinstance(value, str) and _ID_RE.fullmatch(value) is not None


def normalise_listing_id(value: object) -> str:
    """Validate *value* and return it in canonical (lowercase) form.

    Raises:
        InvalidIdError: If *value* is not a 24-character hex string.
    """
    if not is_valid_listing_id(value):
        raise InvalidIdError(value)
    return str(value).lower()
