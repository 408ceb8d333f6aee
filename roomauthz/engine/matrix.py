"""Permission Matrix.

A total, side-effect free function of (role, room facts, changed item). Default
is deny: every `ChangeKind` has an explicit rule in `_RULES`, and anything not
granted there is refused.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from roomauthz.core.models import Room, RoomKind, Visibility
from roomauthz.engine.errors import DenialCode, PermissionDenied
from roomauthz.engine.invariants import ChangedItem, ChangeKind, Subject
from roomauthz.engine.roles import MEMBER_ROLES, READER_ROLES, Role


@dataclass(frozen=True)
class RoomFacts:
    """The room-level inputs the matrix depends on (taken from the prior snapshot)."""

    kind: RoomKind
    visibility: Visibility
    members_can_invite: bool = False

    @classmethod
    def from_room(cls, room: Room) -> "RoomFacts":
        return cls(
            kind=room.kind,
            visibility=room.visibility,
            members_can_invite=bool(room.all_members_can_invite),
        )


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    code: Optional[DenialCode] = None

    @classmethod
    def allow(cls) -> "Verdict":
        return cls(True)

    @classmethod
    def deny(cls, code: DenialCode) -> "Verdict":
        return cls(False, code)


Rule = Callable[[Role, RoomFacts, ChangedItem], Verdict]


def _outside_or(code: DenialCode, role: Role) -> Verdict:
    # Non-members get the more basic reason.
    if role not in MEMBER_ROLES:
        return Verdict.deny(DenialCode.NOT_A_MEMBER)
    return Verdict.deny(code)


def _master_only(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
    if role == Role.MASTER:
        return Verdict.allow()
    return _outside_or(DenialCode.MASTER_ONLY, role)


def _any_member(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
    if role in MEMBER_ROLES:
        return Verdict.allow()
    return Verdict.deny(DenialCode.NOT_A_MEMBER)


def _self_as(*roles: Role) -> Rule:
    """Transition only the affected user may trigger, from one of `roles`."""
    allowed = frozenset(roles)

    def rule(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
        if item.subject != Subject.SELF:
            return Verdict.deny(DenialCode.SELF_ONLY)
        if role not in allowed:
            return Verdict.deny(DenialCode.ROLE_NOT_ALLOWED)
        return Verdict.allow()

    return rule


def _master_or_self_as(*roles: Role) -> Rule:
    self_rule = _self_as(*roles)

    def rule(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
        if role == Role.MASTER:
            return Verdict.allow()
        if item.subject == Subject.SELF:
            return self_rule(role, facts, item)
        return _outside_or(DenialCode.MASTER_ONLY, role)

    return rule


def _master_on_other(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
    if item.subject == Subject.SELF and role == Role.MASTER:
        return Verdict.deny(DenialCode.ROLE_NOT_ALLOWED)
    return _master_only(role, facts, item)


def _never(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
    return Verdict.deny(DenialCode.ROLE_NOT_ALLOWED)


def _invite(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
    if item.subject == Subject.SELF:
        return Verdict.deny(DenialCode.SELF_ONLY)
    if role == Role.MASTER:
        return Verdict.allow()
    if role != Role.MEMBER:
        return Verdict.deny(DenialCode.NOT_A_MEMBER)
    # 1:1 rooms never take member invitations, whatever the toggles say.
    if facts.kind == "single":
        return Verdict.deny(DenialCode.MEMBERS_CANNOT_INVITE)
    if facts.members_can_invite or facts.visibility == "open":
        return Verdict.allow()
    return Verdict.deny(DenialCode.MEMBERS_CANNOT_INVITE)


def _remove_member(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
    if item.subject == Subject.SELF and role in MEMBER_ROLES:
        return Verdict.allow()
    # Masters may remove anyone, including while leaving themselves.
    return _master_only(role, facts, item)


_RULES: Dict[ChangeKind, Rule] = {
    ChangeKind.ADMIN_FIELD: _master_only,
    ChangeKind.LAST_MESSAGE: _master_only,
    ChangeKind.CREATED_AT: _master_only,
    ChangeKind.ACTIVITY: _any_member,
    ChangeKind.USER_ENTRY: _any_member,
    ChangeKind.INVITE: _invite,
    ChangeKind.CANCEL_INVITE: _master_or_self_as(Role.INVITED),
    ChangeKind.ACCEPT_INVITE: _self_as(Role.INVITED),
    ChangeKind.OPEN_JOIN: _self_as(Role.OUTSIDER, Role.INVITED),
    ChangeKind.REJECT_INVITE: _self_as(Role.INVITED),
    ChangeKind.REJECTED_JOIN: _self_as(Role.REJECTED),
    ChangeKind.CLEAR_REJECTION: _master_or_self_as(Role.REJECTED),
    ChangeKind.REJECTION_WITHOUT_INVITE: _never,
    ChangeKind.REMOVE_MEMBER: _remove_member,
    ChangeKind.BLOCK: _master_on_other,
    ChangeKind.UNBLOCK: _master_only,
    ChangeKind.PROMOTE: _master_on_other,
    ChangeKind.DEMOTE: _master_only,
}


def decide_item(role: Role, facts: RoomFacts, item: ChangedItem) -> Verdict:
    if role == Role.BLOCKED:
        return Verdict.deny(DenialCode.REQUESTER_BLOCKED)
    rule = _RULES.get(item.kind)
    if rule is None:
        return Verdict.deny(DenialCode.ROLE_NOT_ALLOWED)
    return rule(role, facts, item)


def check_items(role: Role, facts: RoomFacts, items: Iterable[ChangedItem]) -> None:
    """Raise `PermissionDenied` for the first item the role may not write."""
    for item in items:
        verdict = decide_item(role, facts, item)
        if not verdict.allowed:
            raise PermissionDenied(verdict.code or DenialCode.ROLE_NOT_ALLOWED, item.describe())


def check_noop_write(role: Role) -> None:
    if role not in MEMBER_ROLES:
        raise PermissionDenied(DenialCode.NOT_A_MEMBER, "empty write")


def check_creation(after: Room, requester_id: str) -> None:
    """The creator must be the sole master and the sole member of the new room."""
    if after.master_users != frozenset({requester_id}):
        raise PermissionDenied(DenialCode.CREATOR_NOT_SOLE_MASTER, ",".join(sorted(after.master_users)) or "none")
    if frozenset(after.users) != after.master_users:
        raise PermissionDenied(DenialCode.CREATOR_NOT_SOLE_MEMBER, ",".join(sorted(after.users)) or "none")


def check_read(role: Role, room: Room) -> None:
    if role in READER_ROLES or room.visibility == "open":
        return
    raise PermissionDenied(DenialCode.NOT_A_MEMBER, "read")


def check_delete(role: Role) -> None:
    if role == Role.MASTER:
        return
    raise PermissionDenied(_outside_or(DenialCode.MASTER_ONLY, role).code or DenialCode.MASTER_ONLY, "delete")
