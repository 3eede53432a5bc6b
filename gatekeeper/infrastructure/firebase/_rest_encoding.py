"""Firestore REST wire format: typed values, commit writes and structured queries."""

from datetime import UTC, datetime
from typing import Any

_FILTER_OPS = {
    "==": "EQUAL",
    "!=": "NOT_EQUAL",
    "<": "LESS_THAN",
    "<=": "LESS_THAN_OR_EQUAL",
    ">": "GREATER_THAN",
    ">=": "GREATER_THAN_OR_EQUAL",
    "in": "IN",
    "not-in": "NOT_IN",
    "array-contains": "ARRAY_CONTAINS",
}


def encode_value(value: Any) -> dict:
    """One Python value as a Firestore Value. Only the types our documents hold."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        instant = value.astimezone(UTC) if value.tzinfo else value
        return {"timestampValue": instant.strftime("%Y-%m-%dT%H:%M:%S.%fZ")}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": {k: encode_value(v) for k, v in value.items()}}}
    raise TypeError(f"Cannot store {type(value).__name__} in a document")


def encode_write(kind: str, name: str, data: dict[str, Any] | None = None) -> dict:
    """A commit Write: 'set' replaces, 'update' merges top-level fields of an existing doc, 'delete' removes."""
    if kind == "delete":
        return {"delete": name}
    fields = data or {}
    write: dict[str, Any] = {
        "update": {"name": name, "fields": {k: encode_value(v) for k, v in fields.items()}}
    }
    if kind == "update":
        write["updateMask"] = {"fieldPaths": [f"`{k}`" for k in fields]}
        write["currentDocument"] = {"exists": True}
    elif kind != "set":
        raise ValueError(f"Unsupported write kind: {kind!r}")
    return write


def structured_query(
    collection: str,
    filters: list[tuple[str, str, Any]],
    limit: int | None = None,
    order_by: str | None = None,
) -> dict[str, Any]:
    """runQuery body for AND-ed field filters over a single collection."""
    clauses = [
        {
            "fieldFilter": {
                "field": {"fieldPath": path},
                "op": _FILTER_OPS[op],
                "value": encode_value(value),
            }
        }
        for path, op, value in filters
    ]
    query: dict[str, Any] = {"from": [{"collectionId": collection}]}
    if len(clauses) == 1:
        query["where"] = clauses[0]
    elif clauses:
        query["where"] = {"compositeFilter": {"op": "AND", "filters": clauses}}
    if order_by:
        query["orderBy"] = [{"field": {"fieldPath": order_by}, "direction": "ASCENDING"}]
    if limit:
        query["limit"] = limit
    return query


def _parse_timestamp(raw: str) -> datetime:
    # The API sends up to nanoseconds; fromisoformat takes at most six digits.
    stamp, _, fraction = raw.rstrip("Z").partition(".")
    micros = (fraction[:6] or "0").ljust(6, "0")
    return datetime.fromisoformat(f"{stamp}.{micros}+00:00")


def decode_value(wire: dict) -> Any:
    kind, payload = next(iter(wire.items()), ("nullValue", None))
    if kind == "integerValue":
        return int(payload)
    if kind == "timestampValue":
        return _parse_timestamp(payload)
    if kind == "arrayValue":
        return [decode_value(v) for v in payload.get("values") or []]
    if kind == "mapValue":
        return {k: decode_value(v) for k, v in (payload.get("fields") or {}).items()}
    if kind in ("booleanValue", "doubleValue", "stringValue"):
        return payload
    return None


def decode_document(document: dict | None) -> dict[str, Any]:
    """Field map of a Document resource as plain Python values."""
    return {k: decode_value(v) for k, v in ((document or {}).get("fields") or {}).items()}
