"""Payload filter → SQL WHERE clause.

Filters are ``{key: value}`` mappings over payload fields. A scalar value
means equality, a list/tuple/set means "value in set"; clauses are ANDed.
``None`` values are ignored. Keys are validated as identifiers because they
are interpolated into the JSON path.
"""

from __future__ import annotations

import re
from typing import Any

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _sql_value(value: Any) -> Any:
    # json_extract() yields 1/0 for JSON booleans.
    if isinstance(value, bool):
        return int(value)
    return value


def active_filters(filters: dict[str, Any] | None) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in (filters or {}).items() if v is not None}


def build_where(filters: dict[str, Any] | None) -> tuple[str, list[Any]]:
    """Return ``(where_sql, params)`` for *filters*; ``1 = 1`` when empty.

    Raises:
        ValueError: If a key is not a plain identifier.
    """
    clauses: list[str] = []
    params: list[Any] = []

    for key, value in active_filters(filters).items():
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid filter key '{key}'")
        expr = f"json_extract(payload, '$.{key}')"
        if isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                clauses.append("0 = 1")
                continue
            placeholders = ", ".join("?" for _ in values)
            clauses.append(f"{expr} IN ({placeholders})")
            params.extend(_sql_value(v) for v in values)
        else:
            clauses.append(f"{expr} = ?")
            params.append(_sql_value(value))

    return (" AND ".join(clauses) if clauses else "1 = 1"), params
