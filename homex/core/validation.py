"""Input validation for raw create and search payloads.

Thin functions over the typed models in :mod:`homex.core.models`.  They run
every rule (no abort-early), drop unknown keys, trim strings, and convert
pydantic's error list into :class:`~homex.core.exceptions.ValidationError`
with one ``{"field", "message"}`` entry per problem, e.g.::

    ValidationError([
        {"field": "name", "message": "Field required"},
        {"field": "keywords", "message": "List should have at most 20 items after validation, not 21"},
    ])

The lifecycle service only ever receives the typed records returned here.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import pydantic

from homex.core.exceptions import ValidationError
from homex.core.models import ListingInput, SearchQuery

__all__ = [
    "validate_listing_input",
    "validate_search_query",
    "format_errors",
]

logger = logging.getLogger(__name__)


def format_errors(exc: pydantic.ValidationError) -> list[dict[str, Any]]:
    """Flatten a pydantic error into ``[{"field": "a.b", "message": ...}]``."""
    errors: list[dict[str, Any]] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        message = err.get("msg", "Invalid value")
        # "Value error, must be a valid uri" -> "must be a valid uri"
        message = message.removeprefix("Value error, ")
        errors.append({"field": loc or "body", "message": message})
    return errors


def validate_listing_input(raw: object) -> ListingInput:
    """Validate a raw create-listing body.

    Args:
        raw: Decoded JSON body.

    Returns:
        The sanitised :class:`ListingInput`.

    Raises:
        ValidationError: With every field-level problem found.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError([{"field": "body", "message": "must be a JSON object"}])
    try:
        return ListingInput.model_validate(dict(raw))
    except pydantic.ValidationError as exc:
        errors = format_errors(exc)
        logger.debug("Listing input rejected: %s", errors)
        raise ValidationError(errors) from exc


def validate_search_query(raw: object) -> str:
    """Validate a raw search body and return the trimmed query string.

    Raises:
        ValidationError: If ``q`` is missing, blank, or longer than 200 chars.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError([{"field": "body", "message": "must be a JSON object"}])
    try:
        return SearchQuery.model_validate(dict(raw)).q
    except pydantic.ValidationError as exc:
        raise ValidationError(format_errors(exc)) from exc
