"""Expiry-notice wording.

Pure functions: no I/O, safe to test without a transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from homex.core.models import Listing

__all__ = ["EmailMessage", "EXPIRY_SUBJECT", "SIGNATURE", "format_expiry_notice"]

EXPIRY_SUBJECT: Final[str] = "Your listing is expiring soon"
SIGNATURE: Final[str] = "Healthy Home Exchange"

#: Name used when a listing somehow has none.
_UNNAMED: Final[str] = "your property"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str


def format_expiry_notice(listing: Listing) -> EmailMessage:
    """Build the "expiring soon" email for *listing*.

    Raises:
        ValueError: If the listing has no email address.
    """
    if not listing.email:
        raise ValueError(f"Listing {listing.id} has no email address.")

    name = listing.name or _UNNAMED
    expires = listing.expiration_date.strftime("%B %d, %Y").replace(" 0", " ")
    text = (
        "Hello,\n\n"
        f'Your listing "{name}" will expire soon, on {expires}.\n\n'
        f"Best regards,\n{SIGNATURE}"
    )
    return EmailMessage(to=listing.email, subject=EXPIRY_SUBJECT, text=text)
