"""Diff Analyzer.

Applies a merge-write to the prior snapshot and reports what structurally
changed. Total and side-effect free: the caller's dicts are never mutated and
the same inputs always produce the same `RoomDiff`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

from pydantic import ValidationError

from roomauthz.core.fields import (
    KNOWN_FIELDS,
    SET_FIELDS,
    USER_ENTRY_FIELDS,
    USERS,
    UNREAD_COUNT,
)
from roomauthz.core.models import Room
from roomauthz.core.ops import ArrayRemove, ArrayUnion, Increment, MarkerDecodeError, expand_dotted_paths, is_delete
from roomauthz.engine.errors import DenialCode, InvalidDiff


@dataclass(frozen=True)
class ScalarChange:
    field: str
    old: Any
    new: Any


@dataclass(frozen=True)
class SetDelta:
    added: FrozenSet[str] = frozenset()
    removed: FrozenSet[str] = frozenset()

    def __bool__(self) -> bool:
        return bool(self.added or self.removed)


@dataclass(frozen=True)
class UsersDelta:
    added: FrozenSet[str] = frozenset()
    removed: FrozenSet[str] = frozenset()
    # DELETE_FIELD aimed at a key that was never there.
    removed_missing: FrozenSet[str] = frozenset()
    # Existing keys whose only change is the unread counter.
    counter_only: FrozenSet[str] = frozenset()
    # Existing keys whose ordering fields changed (counter may have changed too).
    entry_changed: FrozenSet[str] = frozenset()

    @property
    def structural(self) -> bool:
        return bool(self.added or self.removed or self.removed_missing)

    @property
    def entries_touched(self) -> FrozenSet[str]:
        return self.counter_only | self.entry_changed


@dataclass(frozen=True)
class RoomDiff:
    scalars: Dict[str, ScalarChange] = field(default_factory=dict)
    kind_change: Optional[Tuple[str, str]] = None
    sets: Dict[str, SetDelta] = field(default_factory=dict)
    users: UsersDelta = field(default_factory=UsersDelta)

    def set_delta(self, name: str) -> SetDelta:
        return self.sets.get(name) or SetDelta()

    @property
    def is_empty(self) -> bool:
        return not (
            self.scalars
            or self.kind_change
            or any(self.sets.values())
            or self.users.structural
            or self.users.entries_touched
        )


@dataclass
class _Applied:
    doc: Dict[str, Any]
    removed_missing: Set[str] = field(default_factory=set)


def count_write_keys(write: Dict[str, Any]) -> int:
    n = 0
    for k, v in write.items():
        n += 1
        if k == USERS and isinstance(v, dict):
            n += len(v)
    return n


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _increment(current: Any, marker: Increment, path: str) -> Any:
    if current is None:
        current = 0
    if not _is_number(current):
        raise InvalidDiff(DenialCode.INVALID_MARKER, f"increment on non-numeric {path}")
    return current + marker.by


def _set_values(values: Any, path: str) -> List[str]:
    out: List[str] = []
    for v in values:
        if not isinstance(v, str) or not v:
            raise InvalidDiff(DenialCode.INVALID_FIELD_VALUE, f"{path} holds user ids, got {v!r}")
        out.append(v)
    return out


def _apply_set(doc: Dict[str, Any], name: str, value: Any) -> None:
    current = list(doc.get(name) or [])
    if is_delete(value):
        doc.pop(name, None)
    elif isinstance(value, ArrayUnion):
        for v in _set_values(value.values, name):
            if v not in current:
                current.append(v)
        doc[name] = current
    elif isinstance(value, ArrayRemove):
        drop = set(_set_values(value.values, name))
        doc[name] = [v for v in current if v not in drop]
    elif isinstance(value, (list, tuple, set, frozenset)):
        doc[name] = _set_values(value, name)
    elif isinstance(value, Increment):
        raise InvalidDiff(DenialCode.INVALID_MARKER, f"increment on set field {name}")
    else:
        raise InvalidDiff(DenialCode.INVALID_FIELD_VALUE, f"{name} must be a list of user ids")


def _apply_entry(entry: Dict[str, Any], uid: str, value: Dict[str, Any]) -> None:
    for f, v in value.items():
        path = f"users.{uid}.{f}"
        if f not in USER_ENTRY_FIELDS:
            raise InvalidDiff(DenialCode.UNKNOWN_FIELD, path)
        if is_delete(v):
            entry.pop(f, None)
        elif isinstance(v, Increment):
            entry[f] = _increment(entry.get(f), v, path)
        elif isinstance(v, (ArrayUnion, ArrayRemove)):
            raise InvalidDiff(DenialCode.INVALID_MARKER, f"array marker on {path}")
        else:
            entry[f] = v


def _apply_users(doc: Dict[str, Any], value: Any, applied: _Applied) -> None:
    if not isinstance(value, dict):
        raise InvalidDiff(DenialCode.INVALID_FIELD_VALUE, "users must be written as a map of user id -> entry")
    users = doc.setdefault(USERS, {})
    if not isinstance(users, dict):
        raise InvalidDiff(DenialCode.INVALID_DOCUMENT, "stored users is not a map")
    for uid, v in value.items():
        if not isinstance(uid, str) or not uid:
            raise InvalidDiff(DenialCode.INVALID_FIELD_VALUE, f"bad user id {uid!r}")
        if is_delete(v):
            if uid in users:
                del users[uid]
            else:
                applied.removed_missing.add(uid)
        elif isinstance(v, dict):
            entry = dict(users.get(uid) or {})
            _apply_entry(entry, uid, v)
            users[uid] = entry
        else:
            raise InvalidDiff(DenialCode.INVALID_FIELD_VALUE, f"users.{uid} must be a map")


def _apply_scalar(doc: Dict[str, Any], name: str, value: Any) -> None:
    if is_delete(value):
        doc.pop(name, None)
    elif isinstance(value, Increment):
        doc[name] = _increment(doc.get(name), value, name)
    elif isinstance(value, (ArrayUnion, ArrayRemove)):
        raise InvalidDiff(DenialCode.INVALID_MARKER, f"array marker on scalar {name}")
    elif isinstance(value, (dict, list, tuple, set)):
        raise InvalidDiff(DenialCode.INVALID_FIELD_VALUE, f"{name} must be a scalar")
    else:
        doc[name] = value


def apply_write(prior_doc: Optional[Dict[str, Any]], write: Dict[str, Any]) -> _Applied:
    """Return the post-write document (merge semantics). Raises `InvalidDiff`."""
    if not isinstance(write, dict):
        raise InvalidDiff(DenialCode.INVALID_FIELD_VALUE, "proposed write must be a map")
    try:
        write = expand_dotted_paths(write)
    except MarkerDecodeError as e:
        raise InvalidDiff(DenialCode.INVALID_MARKER, str(e)) from e

    applied = _Applied(doc=copy.deepcopy(prior_doc) if prior_doc else {})
    for name, value in write.items():
        if name not in KNOWN_FIELDS:
            raise InvalidDiff(DenialCode.UNKNOWN_FIELD, str(name))
        if name == USERS:
            _apply_users(applied.doc, value, applied)
        elif name in SET_FIELDS:
            _apply_set(applied.doc, name, value)
        else:
            _apply_scalar(applied.doc, name, value)
    return applied


def parse_room(doc: Dict[str, Any], *, code: DenialCode = DenialCode.INVALID_FIELD_VALUE) -> Room:
    """Validate a document into a `Room`, reporting failures as `InvalidDiff`."""
    try:
        return Room.from_document(doc)
    except ValidationError as e:
        err = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(p) for p in err.get("loc", ()))
        raise InvalidDiff(code, f"{loc or 'document'}: {err.get('msg', 'invalid')}") from e


def _users_delta(prior: Optional[Room], after: Room, removed_missing: Set[str]) -> UsersDelta:
    before = prior.users if prior else {}
    added = frozenset(set(after.users) - set(before))
    removed = frozenset(set(before) - set(after.users))
    counter_only: Set[str] = set()
    entry_changed: Set[str] = set()
    for uid in set(before) & set(after.users):
        old = before[uid].model_dump(by_alias=True)
        new = after.users[uid].model_dump(by_alias=True)
        changed = {f for f in old if old[f] != new[f]}
        if not changed:
            continue
        if changed == {UNREAD_COUNT}:
            counter_only.add(uid)
        else:
            entry_changed.add(uid)
    return UsersDelta(
        added=added,
        removed=removed,
        removed_missing=frozenset(removed_missing),
        counter_only=frozenset(counter_only),
        entry_changed=frozenset(entry_changed),
    )


def compute_diff(prior: Optional[Room], after: Room, *, removed_missing: Optional[Set[str]] = None) -> RoomDiff:
    base = prior or Room()
    old_scalars = base.scalar_values()
    scalars = {
        name: ScalarChange(field=name, old=old_scalars.get(name), new=new)
        for name, new in after.scalar_values().items()
        if old_scalars.get(name) != new or type(old_scalars.get(name)) is not type(new)
    }

    kind_change = None
    if prior is not None and prior.kind != after.kind:
        kind_change = (prior.kind, after.kind)

    sets: Dict[str, SetDelta] = {}
    for name in SET_FIELDS:
        old = _set_attr(base, name)
        new = _set_attr(after, name)
        if old != new:
            sets[name] = SetDelta(added=frozenset(new - old), removed=frozenset(old - new))

    return RoomDiff(
        scalars=scalars,
        kind_change=kind_change,
        sets=sets,
        users=_users_delta(prior, after, removed_missing or set()),
    )


_SET_ATTRS = {
    "masterUsers": "master_users",
    "invitedUsers": "invited_users",
    "rejectedUsers": "rejected_users",
    "blockedUsers": "blocked_users",
}


def _set_attr(room: Room, name: str) -> FrozenSet[str]:
    return getattr(room, _SET_ATTRS[name])


def analyze(
    prior_doc: Optional[Dict[str, Any]],
    prior: Optional[Room],
    write: Dict[str, Any],
    *,
    max_keys: Optional[int] = None,
) -> Tuple[Room, RoomDiff]:
    """Apply `write` on top of `prior_doc` and diff. Returns (after_room, diff)."""
    if isinstance(write, dict) and max_keys is not None and count_write_keys(write) > max_keys:
        raise InvalidDiff(DenialCode.DIFF_TOO_LARGE, f"more than {max_keys} keys in one write")
    applied = apply_write(prior_doc, write)
    after = parse_room(applied.doc)
    return after, compute_diff(prior, after, removed_missing=applied.removed_missing)

