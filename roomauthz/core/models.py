"""Canonical wire models (single source of truth).

Room documents arrive as plain dicts with camelCase keys; these models are the
typed view the engine reasons over. All models forbid unknown fields: a field
the catalog does not know is a malformed request, never silently ignored.
"""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Literal, Optional, Union

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, field_validator, model_validator
from pydantic.alias_generators import to_camel

from roomauthz.core.fields import LEGACY_GROUP, LEGACY_SINGLE, SCALAR_FIELDS

RoomKind = Literal["single", "group"]
Visibility = Literal["open", "closed"]
Operation = Literal["create", "read", "query", "update", "delete"]
QueryOp = Literal["==", "!=", "<", "<=", ">", ">=", "array-contains", "in", "array-contains-any"]

Number = Union[StrictInt, StrictFloat]
Timestamp = Union[StrictInt, StrictFloat, StrictStr]


class BaseModelStrict(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class UserEntry(BaseModelStrict):
    """Per-member record inside `users` (unread counter + ordering numbers)."""

    unread_count: StrictInt = Field(default=0, alias="nMC")
    order: Optional[Number] = Field(default=None, alias="o")
    time_order: Optional[Number] = Field(default=None, alias="tO")
    single_order: Optional[Number] = Field(default=None, alias="sO")
    single_time_order: Optional[Number] = Field(default=None, alias="sTO")
    group_order: Optional[Number] = Field(default=None, alias="gO")
    group_time_order: Optional[Number] = Field(default=None, alias="gTO")


def _check_timestamp(v: Any) -> Any:
    # Epoch numbers or ISO-8601 strings; reject anything dateutil can't read.
    if isinstance(v, str):
        try:
            date_parser.isoparse(v)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"not an ISO-8601 timestamp: {v!r}") from e
    return v


class Room(BaseModelStrict):
    """
    Typed view of a stored (or post-write) room document.

    The legacy schema carries two booleans (`single`, `group`); they are folded
    into one `kind` tag so the single+group combination cannot be represented.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)

    kind: RoomKind = "group"

    # Administrative
    name: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    icon_url: Optional[StrictStr] = None
    open: Optional[StrictBool] = None
    all_members_can_invite: Optional[StrictBool] = None
    verified_user_only: Optional[StrictBool] = None
    url_for_verified_user_only: Optional[StrictBool] = None
    upload_for_verified_user_only: Optional[StrictBool] = None
    gender: Optional[StrictStr] = None
    domain: Optional[StrictStr] = None
    has_password: Optional[StrictBool] = None

    # Last message
    last_message_text: Optional[StrictStr] = None
    last_message_uid: Optional[StrictStr] = None
    last_message_url: Optional[StrictStr] = None
    last_message_id: Optional[StrictStr] = None
    last_message_deleted: Optional[StrictBool] = None
    last_message_at: Optional[Timestamp] = None

    updated_at: Optional[Timestamp] = None
    created_at: Optional[Timestamp] = None

    # Membership
    master_users: FrozenSet[StrictStr] = Field(default_factory=frozenset)
    invited_users: FrozenSet[StrictStr] = Field(default_factory=frozenset)
    rejected_users: FrozenSet[StrictStr] = Field(default_factory=frozenset)
    blocked_users: FrozenSet[StrictStr] = Field(default_factory=frozenset)
    users: Dict[StrictStr, UserEntry] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_kind(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if LEGACY_SINGLE not in data and LEGACY_GROUP not in data:
            return data
        out = dict(data)
        single = out.pop(LEGACY_SINGLE, None)
        group = out.pop(LEGACY_GROUP, None)
        for name, flag in ((LEGACY_SINGLE, single), (LEGACY_GROUP, group)):
            if flag is not None and not isinstance(flag, bool):
                raise ValueError(f"{name} must be a boolean")
        if single and group:
            raise ValueError("a room cannot be both single and group")
        legacy_kind = "single" if single else ("group" if group else None)
        explicit = out.get("kind")
        if legacy_kind and explicit and explicit != legacy_kind:
            raise ValueError(f"kind={explicit!r} contradicts legacy {legacy_kind} flag")
        if legacy_kind:
            out["kind"] = legacy_kind
        return out

    @field_validator("created_at", "updated_at", "last_message_at")
    @classmethod
    def _timestamp(cls, v: Any) -> Any:
        return _check_timestamp(v)

    @property
    def visibility(self) -> Visibility:
        return "open" if self.open else "closed"

    @property
    def is_single(self) -> bool:
        return self.kind == "single"

    @property
    def members(self) -> FrozenSet[str]:
        return frozenset(self.users)

    def scalar_values(self) -> Dict[str, Any]:
        """Wire-name -> value for every scalar field (None when absent)."""
        dumped = self.model_dump(by_alias=True)
        return {name: dumped.get(name) for name in SCALAR_FIELDS}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Room":
        return cls.model_validate(doc)


class QueryFilter(BaseModelStrict):
    field: str
    op: QueryOp
    value: Any = None


class QueryOrder(BaseModelStrict):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class QueryPredicate(BaseModelStrict):
    """List-style read: `where` filters plus `orderBy` clauses."""

    filters: List[QueryFilter] = Field(default_factory=list)
    order_by: List[QueryOrder] = Field(default_factory=list)


class OperationRequest(BaseModelStrict):
    """
    One authorization question.

    `proposed_diff` uses merge semantics and may contain the markers from
    `roomauthz.core.ops` (DELETE_FIELD, ArrayUnion, ArrayRemove, Increment).
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    operation: Operation
    requester_id: str
    prior_document: Optional[Dict[str, Any]] = None
    proposed_diff: Optional[Dict[str, Any]] = None
    query: Optional[QueryPredicate] = None

    @field_validator("operation", mode="before")
    @classmethod
    def _lower_operation(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v
