"""
Export rows — flat projections of vendor API objects for tabular output.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

LIST_SEPARATOR = "; "


def flatten_record(
    record: dict[str, Any],
    columns: Optional[list[str]] = None,
    prefix: str = "",
) -> dict[str, Any]:
    """
    Flatten a nested API object into scalar columns.
    Nested dicts become `parent.child` keys; lists of scalars are joined,
    lists of dicts are joined by their displayName/id (or counted).
    OData annotations (`@odata.*`) are dropped.
    When `columns` is given, only those top-level keys are projected,
    in that order.
    """
    row: dict[str, Any] = {}
    keys = columns if columns is not None else list(record.keys())
    for key in keys:
        if "@odata" in key:
            continue
        value = record.get(key)
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            if value:
                row.update(flatten_record(value, prefix=f"{name}."))
            else:
                row[name] = ""
        elif isinstance(value, list):
            row[name] = _join_list(value)
        elif value is None:
            row[name] = ""
        else:
            row[name] = value
    return row


def _join_list(values: list) -> str:
    parts = []
    for v in values:
        if isinstance(v, dict):
            label = v.get("displayName") or v.get("name") or v.get("id")
            if label is None:
                continue
            parts.append(str(label))
        elif v is not None:
            parts.append(str(v))
    if not parts and values:
        return f"{len(values)} item(s)"
    return LIST_SEPARATOR.join(parts)


def collect_headers(rows: Iterable[dict[str, Any]]) -> list[str]:
    """Union of row keys in first-seen order."""
    headers: dict[str, None] = {}
    for row in rows:
        for key in row:
            headers.setdefault(key, None)
    return list(headers)


def normalize_rows(rows: list[dict[str, Any]]) -> tuple[list[str], list[dict[str, Any]]]:
    """
    Back-fill missing columns so every row has the same header set.
    Returns (headers, aligned rows).
    """
    headers = collect_headers(rows)
    aligned = [{h: row.get(h, "") for h in headers} for row in rows]
    return headers, aligned
