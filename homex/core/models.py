"""Homex core domain models.

Defines the persisted :class:`Listing`, the validated creation payload
:class:`ListingInput`, and the :class:`ListingPage` returned by paginated
listing queries.

Field names are snake_case in Python and camelCase on the wire and in the
stored document (``lot_area`` ↔ ``lotArea``), matching the JSON shape the
service has always exposed.  Both spellings are accepted on input.

Typical usage::

    from homex.core.models import ListingInput

    data = ListingInput(name="Cedar cottage", email="owner@example.com")
    data.model_dump(by_alias=True, exclude_none=True)
    # {'name': 'Cedar cottage', 'email': 'owner@example.com'}
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import AnyUrl, BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "ListingInput",
    "Listing",
    "ListingPage",
    "SearchQuery",
]

logger = logging.getLogger(__name__)

_URL_ADAPTER: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)

_TextList = list[str]


# ---------------------------------------------------------------------------
# Shared payload fields
# ---------------------------------------------------------------------------


class _ListingFields(BaseModel):
    """Descriptive payload shared by :class:`ListingInput` and :class:`Listing`.

    The core treats everything here as opaque except ``name`` and ``email``
    (expiry notices) and ``name``/``address``/``location``/``keywords``
    (search).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    name: str | None = None
    email: str | None = None
    address: str | None = None
    price: float | None = None
    location: str | None = None
    size: str | None = None
    lot_area: str | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    year_built: str | None = None
    taxes: float | None = None
    flood_zone: str | None = None
    other_fees: str | None = None
    mls_link: str | None = None
    location_design: str | None = None
    foundation: str | None = None
    roof: str | None = None
    envelope: str | None = None
    interior_materials: str | None = None
    mechanicals: str | None = None
    finishes: str | None = None
    green_features: str | None = None
    notes: str | None = None
    healthy_criteria: _TextList | None = None
    keywords: _TextList | None = None
    comment: str | None = None


# ---------------------------------------------------------------------------
# Creation payload
# ---------------------------------------------------------------------------


class ListingInput(_ListingFields):
    """Validated payload for creating a listing.

    Bounds mirror what the public form has always enforced: a name of 1 to
    200 characters, a syntactically valid email address, a price between 0 and
    100,000,000, at most 20 keywords and 20 healthy-criteria tags of up to
    100 characters each.  Strings are trimmed and unknown keys dropped.
    """

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    address: str | None = Field(None, max_length=500)
    price: float | None = Field(None, ge=0, le=100_000_000)
    location: str | None = Field(None, max_length=500)
    size: str | None = Field(None, max_length=100)
    lot_area: str | None = Field(None, max_length=100)
    bedrooms: int | None = Field(None, ge=0, le=50)
    bathrooms: float | None = Field(None, ge=0, le=50)
    year_built: str | None = Field(None, max_length=4)
    taxes: float | None = Field(None, ge=0)
    flood_zone: str | None = Field(None, max_length=100)
    other_fees: str | None = Field(None, max_length=500)
    mls_link: str | None = Field(None, max_length=2000)
    location_design: str | None = Field(None, max_length=1000)
    foundation: str | None = Field(None, max_length=500)
    roof: str | None = Field(None, max_length=500)
    envelope: str | None = Field(None, max_length=500)
    interior_materials: str | None = Field(None, max_length=1000)
    mechanicals: str | None = Field(None, max_length=1000)
    finishes: str | None = Field(None, max_length=1000)
    green_features: str | None = Field(None, max_length=1000)
    notes: str | None = Field(None, max_length=2000)
    healthy_criteria: _TextList | None = Field(None, max_length=20)
    keywords: _TextList | None = Field(None, max_length=20)
    comment: str | None = Field(None, max_length=2000)

    @field_validator("mls_link")
    @classmethod
    def _mls_link_is_uri(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            _URL_ADAPTER.validate_python(v)
        except ValueError:
            raise ValueError("must be a valid uri") from None
        return v

    @field_validator("healthy_criteria", "keywords")
    @classmethod
    def _tags_bounded(cls, v: list[str] | None) -> list[str] | None:
        """Trim each tag and cap it at 100 characters."""
        if v is None:
            return v
        tags = [tag.strip() for tag in v]
        for tag in tags:
            if len(tag) > 100:
                raise ValueError("each item must be at most 100 characters")
        return tags

    def to_document(self) -> dict[str, object]:
        """Return the camelCase payload persisted for this listing."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Persisted listing
# ---------------------------------------------------------------------------


class Listing(_ListingFields):
    """A stored listing: payload plus identity and expiry horizon.

    The model is **frozen**; renewals produce a new instance from the store.

    Attributes:
        id: 24-character hex identifier assigned by the store.
        created_at: UTC instant of creation; never changes.
        expiration_date: UTC instant after which the listing is deleted by
            the expiry sweep.  Reset to now + TTL on renewal.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    id: str = Field(..., min_length=1)
    created_at: datetime
    expiration_date: datetime

    def to_public(self) -> dict[str, object]:
        """JSON-ready camelCase representation used by the API."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


class SearchQuery(BaseModel):
    """Validated search request body: ``{"q": "<text>"}``."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    q: str = Field(..., min_length=1, max_length=200)


@dataclass(frozen=True)
class ListingPage:
    """One page of listings, newest first, plus the total across all pages."""

    listings: list[Listing] = field(default_factory=list)
    page: int = 1
    limit: int = 50
    total: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPages": self.total_pages,
        }
