"""Filter predicates for :class:`~homex.storage.repository.ListingStore`.

Callers describe *which* listings they want with small predicate objects;
this module compiles them into a parameterised SQL ``WHERE`` clause over the
``listings`` table.  Field names use the document's camelCase spelling:

* ``id``, ``createdAt``, ``expirationDate`` map to real columns.
* Every other name is looked up inside the JSON ``doc`` column.

Regex predicates on a JSON field match if the field is a string that
matches **or** an array with at least one matching element, so
``Regex("keywords", "garden")`` finds ``{"keywords": ["Garden", "pool"]}``
when ``ignore_case`` is set.

Example::

    from homex.storage.filters import AnyOf, Gte, Lt, Regex

    window = AllOf(Gte("expirationDate", start), Lt("expirationDate", end))
    search = AnyOf(Regex("name", "cedar", ignore_case=True),
                   Regex("keywords", "cedar", ignore_case=True))
    sql, params = compile_filter(search)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from homex.storage.database import format_timestamp

__all__ = [
    "Filter",
    "MatchAll",
    "Eq",
    "Lt",
    "Gte",
    "Regex",
    "AnyOf",
    "AllOf",
    "compile_filter",
    "compile_sort",
]

logger = logging.getLogger(__name__)

#: Document fields stored as real columns rather than inside ``doc``.
_COLUMNS: dict[str, str] = {
    "id": "id",
    "createdAt": "created_at",
    "expirationDate": "expiration_date",
}

_FIELD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchAll:
    """Matches every listing."""


@dataclass(frozen=True)
class Eq:
    field: str
    value: object


@dataclass(frozen=True)
class Lt:
    field: str
    value: object


@dataclass(frozen=True)
class Gte:
    field: str
    value: object


@dataclass(frozen=True)
class Regex:
    """``field`` matches the regular expression ``pattern``.

    The pattern is used as given; escape user input with :func:`re.escape`
    before building one.
    """

    field: str
    pattern: str
    ignore_case: bool = False


class AnyOf:
    """Logical OR of predicates.  An empty ``AnyOf`` matches nothing."""

    __slots__ = ("predicates",)

    def __init__(self, *predicates: Filter) -> None:
        self.predicates: tuple[Filter, ...] = predicates

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AnyOf) and self.predicates == other.predicates

    def __repr__(self) -> str:
        return f"AnyOf{self.predicates!r}"


class AllOf:
    """Logical AND of predicates.  An empty ``AllOf`` matches everything."""

    __slots__ = ("predicates",)

    def __init__(self, *predicates: Filter) -> None:
        self.predicates: tuple[Filter, ...] = predicates

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AllOf) and self.predicates == other.predicates

    def __repr__(self) -> str:
        return f"AllOf{self.predicates!r}"


Filter = Union[MatchAll, Eq, Lt, Gte, Regex, AnyOf, AllOf]


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def compile_filter(predicate: Filter | None) -> tuple[str, list[object]]:
    """Compile *predicate* into ``(where_sql, params)``.

    ``None`` is treated as :class:`MatchAll`.

    Raises:
        ValueError: For an unknown predicate type or an unsafe field name.
    """
    if predicate is None or isinstance(predicate, MatchAll):
        return "1", []

    if isinstance(predicate, AnyOf | AllOf):
        if not predicate.predicates:
            return ("0" if isinstance(predicate, AnyOf) else "1"), []
        joiner = " OR " if isinstance(predicate, AnyOf) else " AND "
        parts: list[str] = []
        params: list[object] = []
        for child in predicate.predicates:
            sql, child_params = compile_filter(child)
            parts.append(f"({sql})")
            params.extend(child_params)
        return joiner.join(parts), params

    if isinstance(predicate, Regex):
        pattern = f"(?i){predicate.pattern}" if predicate.ignore_case else predicate.pattern
        column = _COLUMNS.get(predicate.field)
        if column is not None:
            return f"{column} REGEXP ?", [pattern]
        return (
            "EXISTS (SELECT 1 FROM json_each(listings.doc, ?) AS el "
            "WHERE el.value REGEXP ?)",
            [_json_path(predicate.field), pattern],
        )

    if isinstance(predicate, Eq | Lt | Gte):
        op = {Eq: "=", Lt: "<", Gte: ">="}[type(predicate)]
        lhs, lhs_params = _operand(predicate.field)
        return f"{lhs} {op} ?", [*lhs_params, _encode(predicate.value)]

    raise ValueError(f"Unsupported filter predicate: {predicate!r}")


def compile_sort(sort: list[tuple[str, int]] | None) -> tuple[str, list[object]]:
    """Compile ``[("createdAt", -1), ...]`` into an ``ORDER BY`` body.

    ``1`` sorts ascending, ``-1`` descending.  Returns ``("", [])`` for no
    sort so the store's natural order applies.
    """
    if not sort:
        return "", []
    parts: list[str] = []
    params: list[object] = []
    for field, direction in sort:
        if direction not in (1, -1):
            raise ValueError(f"Sort direction must be 1 or -1, got {direction!r}")
        expr, expr_params = _operand(field)
        parts.append(f"{expr} {'ASC' if direction == 1 else 'DESC'}")
        params.extend(expr_params)
    return ", ".join(parts), params


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _operand(field: str) -> tuple[str, list[object]]:
    column = _COLUMNS.get(field)
    if column is not None:
        return column, []
    return "json_extract(listings.doc, ?)", [_json_path(field)]


def _json_path(field: str) -> str:
    if not _FIELD_RE.fullmatch(field):
        raise ValueError(f"Unsafe field name in filter: {field!r}")
    return f"$.{field}"


def _encode(value: object) -> object:
    if isinstance(value, datetime):
        return format_timestamp(value)
    return value
