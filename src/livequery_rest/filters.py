"""Filter encoding - query options to flat HTTP query parameters.

The REST backend takes filters as plain query parameters. Equality uses the
bare field name; every other operator appends a bracketed code:

    ("status", "==", "draft")       -> status=draft
    ("views", ">=", 10)             -> views[gte]=10
    ("tags", "in-array", ["a"])     -> tags[in-array]=["a"]

Reserved parameters (``_limit``, ``_cursor``, ``_order_by``, ``_sort``) carry
paging and ordering.
"""

from __future__ import annotations

import json
from typing import Any

from .errors import EncodingError
from .types import FilterOperator, QueryOptions

# Operator -> bracket code. Equality has no code: it is encoded as the bare field.
OPERATOR_CODES: dict[FilterOperator, str | None] = {
    FilterOperator.EQUAL: None,
    FilterOperator.NOT_EQUAL: "ne",
    FilterOperator.LESS_THAN: "lt",
    FilterOperator.LESS_OR_EQUAL: "lte",
    FilterOperator.GREATER_THAN: "gt",
    FilterOperator.GREATER_OR_EQUAL: "gte",
    FilterOperator.IN_ARRAY: "in-array",
    FilterOperator.NOT_IN_ARRAY: "not-in-array",
    FilterOperator.CONTAINS: "contains",
    FilterOperator.LIKE: "like",
}

LIMIT_PARAM = "_limit"
CURSOR_PARAM = "_cursor"
ORDER_BY_PARAM = "_order_by"
SORT_PARAM = "_sort"


def parse_operator(operator: FilterOperator | str) -> FilterOperator:
    """Resolve a symbolic operator (``"<="``) or enum member.

    Raises:
        EncodingError: operator is not supported
    """
    if isinstance(operator, FilterOperator):
        return operator
    try:
        return FilterOperator(operator)
    except ValueError:
        raise EncodingError(f"Unsupported filter operator: {operator!r}") from None


def encode_key(field: str, operator: FilterOperator | str) -> str:
    """Parameter name for a filter on ``field``."""
    if not field:
        raise EncodingError("Filter field name must not be empty")
    code = OPERATOR_CODES[parse_operator(operator)]
    return field if code is None else f"{field}[{code}]"


def encode_value(value: Any) -> str:
    """Render a filter value as text.

    Objects and arrays become JSON; scalars keep their plain text form
    (booleans and null in JSON spelling).
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple, bool)) or value is None:
        try:
            return json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise EncodingError(f"Filter value is not JSON serializable: {e}") from e
    if isinstance(value, (int, float)):
        return json.dumps(value)
    raise EncodingError(f"Unsupported filter value type: {type(value).__name__}")


def encode_filters(filters: list[tuple[str, FilterOperator | str, Any]]) -> dict[str, str]:
    """Encode filter triples. A later filter on the same key wins."""
    params: dict[str, str] = {}
    for field, operator, value in filters:
        params[encode_key(field, operator)] = encode_value(value)
    return params


def encode_query(options: QueryOptions) -> dict[str, str]:
    """Build the full parameter mapping for a baseline pull.

    Raises:
        EncodingError: on a malformed filter or limit, before any I/O happens
    """
    if options.limit < 1:
        raise EncodingError(f"Limit must be positive, got {options.limit}")

    params = encode_filters(options.filters)
    params[LIMIT_PARAM] = str(options.limit)
    if options.cursor:
        params[CURSOR_PARAM] = options.cursor
    if options.order_by:
        params[ORDER_BY_PARAM] = options.order_by
        params[SORT_PARAM] = options.sort
    return params
