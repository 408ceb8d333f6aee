"""Query Scope Checker for list-style reads.

A list query may only reach rooms the requester is entitled to see, so every
filter must be keyed to the requester's own data (their `users` subtree, their
own id in `invitedUsers`/`rejectedUsers`) or to the public `open` flag, and at
least one filter has to actually scope the result set.

Sorting is not scope-checked: ordering cannot widen the result set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from roomauthz.core.fields import INVITED_USERS, REJECTED_USERS, USER_ENTRY_FIELDS, USERS
from roomauthz.core.models import QueryFilter, QueryPredicate
from roomauthz.engine.errors import DenialCode, InvalidDiff, ScopeViolation

OPEN_FIELD = "open"
_MEMBERSHIP_SET_FIELDS = (INVITED_USERS, REJECTED_USERS)
# Only equality and range tests on the requester's own subtree narrow the result set.
_SUBTREE_SCOPING_OPS = frozenset({"==", "<", "<=", ">", ">="})


@dataclass(frozen=True)
class FieldPath:
    root: str
    uid: Optional[str] = None
    leaf: Optional[str] = None

    @classmethod
    def parse(cls, raw: str) -> "FieldPath":
        parts = (raw or "").split(".")
        if not all(parts):
            raise InvalidDiff(DenialCode.INVALID_QUERY, f"bad field path {raw!r}")
        if parts[0] != USERS:
            if len(parts) > 1:
                raise InvalidDiff(DenialCode.INVALID_QUERY, f"nested path on non-map field {raw!r}")
            return cls(root=parts[0])
        if len(parts) == 1 or len(parts) > 3:
            raise InvalidDiff(DenialCode.INVALID_QUERY, f"users filters must name users.<uid>[.<field>]: {raw!r}")
        leaf = parts[2] if len(parts) == 3 else None
        if leaf is not None and leaf not in USER_ENTRY_FIELDS:
            raise InvalidDiff(DenialCode.INVALID_QUERY, f"unknown per-user field {leaf!r}")
        return cls(root=USERS, uid=parts[1], leaf=leaf)


def _check_filter(f: QueryFilter, requester_id: str) -> bool:
    """Validate one filter; return True when it restricts results to the requester's rooms."""
    path = FieldPath.parse(f.field)

    if path.root == USERS:
        if path.uid != requester_id:
            raise ScopeViolation(DenialCode.FOREIGN_USER_SUBTREE, f.field)
        return f.op in _SUBTREE_SCOPING_OPS

    if path.root in _MEMBERSHIP_SET_FIELDS:
        if f.op != "array-contains" or f.value != requester_id:
            raise ScopeViolation(DenialCode.FOREIGN_MEMBERSHIP_TEST, f"{f.field} {f.op} {f.value!r}")
        return True

    if path.root == OPEN_FIELD:
        return f.op == "==" and f.value is True

    raise ScopeViolation(DenialCode.UNSCOPED_FIELD, f.field)


def check_query_scope(query: QueryPredicate, requester_id: str) -> None:
    """Raise `ScopeViolation` (or `InvalidDiff` for malformed paths) when the query is not scoped."""
    scoping: List[str] = []
    for f in query.filters:
        if _check_filter(f, requester_id):
            scoping.append(f.field)
    for order in query.order_by:
        FieldPath.parse(order.field)
    if not scoping:
        raise ScopeViolation(DenialCode.UNSCOPED_QUERY, "no filter scopes the result to the requester")
