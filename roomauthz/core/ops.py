"""Merge-write markers and their JSON codec.

A proposed write is a (possibly nested) dict using merge semantics:
- absent fields are untouched
- `DELETE_FIELD` removes a field, or a `users` key
- `ArrayUnion` / `ArrayRemove` mutate set fields element-wise
- `Increment` adds a delta to a numeric field

JSON form (for request files / the CLI):
    {"$op": "delete"}
    {"$op": "arrayUnion", "values": ["a", "b"]}
    {"$op": "arrayRemove", "values": ["a"]}
    {"$op": "increment", "by": 1}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

from roomauthz.core.fields import USERS


class _DeleteField:
    _instance: "_DeleteField | None" = None

    def __new__(cls) -> "_DeleteField":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


@dataclass(frozen=True)
class ArrayUnion:
    values: Tuple[Any, ...]

    def __init__(self, *values: Any) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class ArrayRemove:
    values: Tuple[Any, ...]

    def __init__(self, *values: Any) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Increment:
    by: Union[int, float]


Marker = Union[_DeleteField, ArrayUnion, ArrayRemove, Increment]

OP_KEY = "$op"


class MarkerDecodeError(ValueError):
    pass


def is_delete(v: Any) -> bool:
    return isinstance(v, _DeleteField)


def is_marker(v: Any) -> bool:
    return isinstance(v, _DeleteField) or isinstance(v, (ArrayUnion, ArrayRemove, Increment))


def _decode_one(d: Dict[str, Any]) -> Marker:
    op = str(d.get(OP_KEY) or "").strip()
    if op == "delete":
        return DELETE_FIELD
    if op in ("arrayUnion", "arrayRemove"):
        values = d.get("values")
        if not isinstance(values, list):
            raise MarkerDecodeError(f"{op} marker needs a 'values' list")
        return ArrayUnion(*values) if op == "arrayUnion" else ArrayRemove(*values)
    if op == "increment":
        by = d.get("by")
        if isinstance(by, bool) or not isinstance(by, (int, float)):
            raise MarkerDecodeError("increment marker needs a numeric 'by'")
        return Increment(by)
    raise MarkerDecodeError(f"unknown marker op: {op!r}")


def decode_markers(payload: Any) -> Any:
    """Replace `{"$op": ...}` objects with marker instances, recursively."""
    if isinstance(payload, dict):
        if OP_KEY in payload:
            return _decode_one(payload)
        return {k: decode_markers(v) for k, v in payload.items()}
    if isinstance(payload, list):
        return [decode_markers(v) for v in payload]
    return payload


def encode_markers(payload: Any) -> Any:
    """Inverse of `decode_markers`; the CLI uses it to echo writes in `--dump-json` output."""
    if is_delete(payload):
        return {OP_KEY: "delete"}
    if isinstance(payload, ArrayUnion):
        return {OP_KEY: "arrayUnion", "values": list(payload.values)}
    if isinstance(payload, ArrayRemove):
        return {OP_KEY: "arrayRemove", "values": list(payload.values)}
    if isinstance(payload, Increment):
        return {OP_KEY: "increment", "by": payload.by}
    if isinstance(payload, dict):
        return {k: encode_markers(v) for k, v in payload.items()}
    if isinstance(payload, list):
        return [encode_markers(v) for v in payload]
    return payload


def expand_dotted_paths(write: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalise update-style dotted paths into nested merge form.

    `{"users.apple.nMC": Increment(1)}` -> `{"users": {"apple": {"nMC": Increment(1)}}}`

    Only `users.<uid>` and `users.<uid>.<field>` are meaningful; any other dotted
    key is kept as-is so field validation can reject it.
    """
    out: Dict[str, Any] = {}
    for key, value in write.items():
        if key == USERS and isinstance(value, dict):
            users = out.setdefault(USERS, {})
            if not isinstance(users, dict):
                raise MarkerDecodeError("'users' written both as a whole and by path")
            for uid, entry in value.items():
                if uid in users:
                    raise MarkerDecodeError(f"users.{uid} written twice")
                users[uid] = dict(entry) if isinstance(entry, dict) else entry
            continue
        parts = key.split(".") if isinstance(key, str) else [key]
        if len(parts) == 1 or parts[0] != USERS or len(parts) > 3 or not all(parts):
            out[key] = value
            continue
        users = out.setdefault(USERS, {})
        if not isinstance(users, dict):
            raise MarkerDecodeError("'users' written both as a whole and by path")
        uid = parts[1]
        if len(parts) == 2:
            if uid in users:
                raise MarkerDecodeError(f"users.{uid} written twice")
            users[uid] = value
            continue
        entry = users.setdefault(uid, {})
        if not isinstance(entry, dict):
            raise MarkerDecodeError(f"users.{uid} written both as a whole and by path")
        entry[parts[2]] = value
    return out
