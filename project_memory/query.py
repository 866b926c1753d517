"""
Query functions for Project Memory MCP Server.

Evaluates the filter mini-language against raw document dicts and applies
sorting and pagination in memory.

A filter maps field names to a literal (equality) or to an operator object
such as ``{"$regex": "^Foo", "$options": "i"}`` or ``{"$in": [...]}``.
Top-level operators work on fields designated by each collection:

- ``$regex``: pattern search on the collection's text field
- ``$in``: membership of the collection's identity field(s) in a list
- ``$or`` / ``$and``: lists of sub-filters against the same document

Every top-level key must match. Unknown operators raise InvalidFilterError.
"""

import math
import re
from dataclasses import dataclass
from functools import cmp_to_key, lru_cache
from typing import Any

from .config import settings
from .models import FilterQuery, Pagination, SortOptions
from .utils import InvalidFilterError

REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


@dataclass(frozen=True)
class FilterFields:
    """Fields a collection designates for the top-level $regex and $in operators."""

    regex_field: str | None = None
    in_fields: tuple[str, ...] = ()


# ============== Helpers ==============

def get_field(document: dict[str, Any], path: str) -> Any:
    """Return a possibly dotted field of a document, or None when absent."""
    current: Any = document
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


@lru_cache(maxsize=256)
def _compile_regex(pattern: str, options: str) -> re.Pattern:
    flags = 0
    for option in options:
        if option not in REGEX_FLAGS:
            raise InvalidFilterError(f"Unsupported $options flag: '{option}'")
        flags |= REGEX_FLAGS[option]
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise InvalidFilterError(f"Invalid $regex pattern '{pattern}': {e}")


def _regex_matches(pattern: Any, value: Any, options: Any = "") -> bool:
    if not isinstance(pattern, str):
        raise InvalidFilterError("$regex expects a string pattern")
    if not isinstance(options, str):
        raise InvalidFilterError("$options expects a string of flags")
    if not isinstance(value, str):
        return False
    return _compile_regex(pattern, options).search(value) is not None


def _as_list(operator: str, value: Any) -> list:
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise InvalidFilterError(f"{operator} expects a list")
    return list(value)


# ============== Filter evaluation ==============

def _match_field_operators(actual: Any, operators: dict[str, Any]) -> bool:
    """Apply an operator object such as {"$regex": ..., "$options": ...} to one field."""
    if "$options" in operators and "$regex" not in operators:
        raise InvalidFilterError("$options is only valid together with $regex")

    for operator, argument in operators.items():
        if operator == "$regex":
            if not _regex_matches(argument, actual, operators.get("$options", "")):
                return False
        elif operator == "$options":
            continue
        elif operator == "$in":
            if actual not in _as_list(operator, argument):
                return False
        elif operator == "$eq":
            if actual != argument:
                return False
        elif operator == "$ne":
            if actual == argument:
                return False
        else:
            raise InvalidFilterError(f"Unknown filter operator: {operator}")
    return True


def _match_field(document: dict[str, Any], field: str, expected: Any) -> bool:
    actual = get_field(document, field)

    if isinstance(expected, dict) and any(k.startswith("$") for k in expected):
        if not all(k.startswith("$") for k in expected):
            raise InvalidFilterError(f"Cannot mix operators and fields in filter for '{field}'")
        return _match_field_operators(actual, expected)

    return actual == expected


def _match_operator(document: dict[str, Any], operator: str, value: Any, fields: FilterFields) -> bool:
    if operator == "$regex":
        if fields.regex_field is None:
            raise InvalidFilterError("$regex is not supported on this collection")
        return _regex_matches(value, get_field(document, fields.regex_field))

    if operator == "$in":
        if not fields.in_fields:
            raise InvalidFilterError("$in is not supported on this collection")
        candidates = _as_list(operator, value)
        return any(get_field(document, f) in candidates for f in fields.in_fields)

    if operator in ("$or", "$and"):
        sub_filters = _as_list(operator, value)
        results = (matches_filter(document, f, fields) for f in sub_filters)
        return any(results) if operator == "$or" else all(results)

    raise InvalidFilterError(f"Unknown filter operator: {operator}")


def matches_filter(document: dict[str, Any], filter: FilterQuery, fields: FilterFields) -> bool:
    """Return True when a document satisfies every top-level key of the filter."""
    if not isinstance(filter, dict):
        raise InvalidFilterError("A filter must be a mapping")

    for key, value in filter.items():
        if key.startswith("$"):
            matched = _match_operator(document, key, value, fields)
        else:
            matched = _match_field(document, key, value)
        if not matched:
            return False
    return True


def apply_filter(documents: list[dict[str, Any]], filter: FilterQuery | None, fields: FilterFields) -> list[dict[str, Any]]:
    """Return the documents matching a filter. An empty filter matches everything."""
    if not filter:
        return list(documents)
    return [doc for doc in documents if matches_filter(doc, filter, fields)]


# ============== Sort and pagination ==============

def _compare_values(a: Any, b: Any) -> int:
    # Absent values are equal to each other and sort before present ones
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    try:
        if a < b:
            return -1
        if a > b:
            return 1
    except TypeError:
        return _compare_values(type(a).__name__, type(b).__name__)
    return 0


def apply_sort(documents: list[dict[str, Any]], sort: SortOptions | None) -> list[dict[str, Any]]:
    """Sort documents by several keys; the first differing key decides. Stable."""
    if not sort:
        return list(documents)

    for field, direction in sort.items():
        if direction not in (1, -1):
            raise InvalidFilterError(f"Sort direction for '{field}' must be 1 or -1")

    def compare(a: dict[str, Any], b: dict[str, Any]) -> int:
        for field, direction in sort.items():
            result = _compare_values(get_field(a, field), get_field(b, field))
            if result:
                return result * direction
        return 0

    return sorted(documents, key=cmp_to_key(compare))


def apply_pagination(documents: list, limit: int | None = None, skip: int = 0) -> tuple[list, Pagination]:
    """Slice one page out of documents.

    Returns:
        (page data, Pagination) where page is derived from skip and limit
    """
    limit = limit or settings.default_page_size
    total = len(documents)

    pagination = Pagination(
        page=skip // limit + 1,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
    )
    return documents[skip:skip + limit], pagination
