"""Invariant Checker: room lifecycle state machine.

Two steps:
1. `classify_changes` turns a `RoomDiff` into the lifecycle transitions and
   field writes it represents (who is affected, self or other).
2. `check_invariants` / `check_creation_invariants` enforce the role-independent
   preconditions of those transitions and the room-kind invariants of the
   post-write state. Failures raise `StructuralViolation`.

Whether the *requester* may trigger a legal transition is the permission
matrix's job, not this module's.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import FrozenSet, List, Set

from roomauthz.core.fields import (
    ADMIN_FIELDS,
    BLOCKED_USERS,
    CREATED_AT,
    INVITED_USERS,
    LAST_MESSAGE_AT,
    LAST_MESSAGE_FIELDS,
    MASTER_USERS,
    REJECTED_USERS,
    UPDATED_AT,
)
from roomauthz.core.models import Room
from roomauthz.engine.diff import RoomDiff
from roomauthz.engine.errors import DenialCode, StructuralViolation

# Single rooms are 1:1: one member slot for the creator, one for the peer.
SINGLE_ROOM_CAPACITY = 2
SINGLE_ROOM_MAX_INVITES = 1


class ChangeKind(str, enum.Enum):
    # Field writes
    ADMIN_FIELD = "admin_field"
    LAST_MESSAGE = "last_message"
    ACTIVITY = "activity_timestamp"
    CREATED_AT = "created_at"
    USER_ENTRY = "user_entry"  # unread counter / ordering numbers of an existing member

    # Lifecycle transitions
    INVITE = "invite"
    CANCEL_INVITE = "cancel_invite"
    ACCEPT_INVITE = "accept_invite"
    OPEN_JOIN = "open_join"
    REJECT_INVITE = "reject_invite"
    REJECTED_JOIN = "rejected_join"
    CLEAR_REJECTION = "clear_rejection"
    REJECTION_WITHOUT_INVITE = "rejection_without_invite"
    REMOVE_MEMBER = "remove_member"
    BLOCK = "block"
    UNBLOCK = "unblock"
    PROMOTE = "promote"
    DEMOTE = "demote"


JOIN_KINDS = frozenset({ChangeKind.ACCEPT_INVITE, ChangeKind.OPEN_JOIN, ChangeKind.REJECTED_JOIN})


class Subject(str, enum.Enum):
    ROOM = "room"  # a field of the room itself
    SELF = "self"
    OTHER = "other"


@dataclass(frozen=True)
class ChangedItem:
    kind: ChangeKind
    subject: Subject
    target: str  # field name (ROOM) or user id

    def describe(self) -> str:
        if self.subject == Subject.ROOM:
            return f"{self.kind.value}({self.target})"
        return f"{self.kind.value}({self.subject.value}:{self.target})"


def _subject(uid: str, requester_id: str) -> Subject:
    return Subject.SELF if uid == requester_id else Subject.OTHER


def _field_items(diff: RoomDiff) -> List[ChangedItem]:
    changed = set(diff.scalars)
    items: List[ChangedItem] = []
    for name in sorted(changed & ADMIN_FIELDS):
        items.append(ChangedItem(ChangeKind.ADMIN_FIELD, Subject.ROOM, name))

    last_message = changed & LAST_MESSAGE_FIELDS
    if last_message - {LAST_MESSAGE_AT}:
        # The group moves together; the timestamp rides along with it.
        items.append(ChangedItem(ChangeKind.LAST_MESSAGE, Subject.ROOM, ",".join(sorted(last_message))))
    elif LAST_MESSAGE_AT in changed:
        items.append(ChangedItem(ChangeKind.ACTIVITY, Subject.ROOM, LAST_MESSAGE_AT))

    if UPDATED_AT in changed:
        items.append(ChangedItem(ChangeKind.ACTIVITY, Subject.ROOM, UPDATED_AT))
    if CREATED_AT in changed:
        items.append(ChangedItem(ChangeKind.CREATED_AT, Subject.ROOM, CREATED_AT))
    return items


def classify_changes(prior: Room, diff: RoomDiff, requester_id: str) -> List[ChangedItem]:
    """Map a diff onto field writes and lifecycle transitions, deterministically ordered."""
    items = _field_items(diff)

    invited = diff.set_delta(INVITED_USERS)
    rejected = diff.set_delta(REJECTED_USERS)
    blocked = diff.set_delta(BLOCKED_USERS)
    masters = diff.set_delta(MASTER_USERS)

    consumed_invites: Set[str] = set()
    consumed_rejections: Set[str] = set()

    def add(kind: ChangeKind, uid: str) -> None:
        items.append(ChangedItem(kind, _subject(uid, requester_id), uid))

    for uid in sorted(diff.users.added):
        if uid in prior.invited_users and uid in invited.removed:
            consumed_invites.add(uid)
            add(ChangeKind.ACCEPT_INVITE, uid)
        elif uid in prior.rejected_users and uid in rejected.removed:
            consumed_rejections.add(uid)
            add(ChangeKind.REJECTED_JOIN, uid)
        else:
            add(ChangeKind.OPEN_JOIN, uid)

    for uid in sorted(diff.users.removed | diff.users.removed_missing):
        add(ChangeKind.REMOVE_MEMBER, uid)

    for uid in sorted(diff.users.entries_touched):
        add(ChangeKind.USER_ENTRY, uid)

    for uid in sorted(invited.added):
        add(ChangeKind.INVITE, uid)

    for uid in sorted(invited.removed - consumed_invites):
        if uid in rejected.added:
            consumed_rejections.add(uid)
            add(ChangeKind.REJECT_INVITE, uid)
        else:
            add(ChangeKind.CANCEL_INVITE, uid)

    for uid in sorted(rejected.added - consumed_rejections):
        add(ChangeKind.REJECTION_WITHOUT_INVITE, uid)

    for uid in sorted(rejected.removed - consumed_rejections):
        add(ChangeKind.CLEAR_REJECTION, uid)

    for uid in sorted(blocked.added):
        add(ChangeKind.BLOCK, uid)
    for uid in sorted(blocked.removed):
        add(ChangeKind.UNBLOCK, uid)

    for uid in sorted(masters.added):
        add(ChangeKind.PROMOTE, uid)
    for uid in sorted(masters.removed):
        add(ChangeKind.DEMOTE, uid)

    return items


def _check_counters(after: Room, diff: RoomDiff) -> None:
    if diff.users.structural and diff.users.entries_touched:
        raise StructuralViolation(
            DenialCode.COUNTERS_WITH_MEMBERSHIP_CHANGE,
            ",".join(sorted(diff.users.entries_touched)),
        )
    for uid in sorted(diff.users.added | diff.users.entries_touched):
        if after.users[uid].unread_count < 0:
            raise StructuralViolation(DenialCode.NEGATIVE_UNREAD_COUNT, uid)


def _check_join(item: ChangedItem, prior: Room, after: Room, unblocked: FrozenSet[str]) -> None:
    uid = item.target
    if uid in unblocked:
        # Lifting a block and re-entering are separate writes.
        raise StructuralViolation(DenialCode.BLOCK_LIFT_WITH_ENTRY, uid)
    if uid in prior.blocked_users or uid in after.blocked_users:
        raise StructuralViolation(DenialCode.JOIN_BLOCKED_USER, uid)
    if item.kind == ChangeKind.OPEN_JOIN:
        if prior.is_single:
            raise StructuralViolation(DenialCode.JOIN_SINGLE_ROOM, uid)
        if prior.visibility != "open":
            raise StructuralViolation(DenialCode.JOIN_CLOSED_ROOM, uid)


def _check_single_room(after: Room) -> None:
    if not after.is_single:
        return
    if len(after.invited_users) > SINGLE_ROOM_MAX_INVITES:
        raise StructuralViolation(DenialCode.SINGLE_INVITE_LIMIT, f"{len(after.invited_users)} invitations")
    seats = after.members | after.invited_users
    if len(seats) > SINGLE_ROOM_CAPACITY:
        raise StructuralViolation(DenialCode.SINGLE_ROOM_FULL, f"{len(seats)} seats")


def check_invariants(prior: Room, after: Room, diff: RoomDiff, items: List[ChangedItem]) -> None:
    """Structural legality of an update, independent of who asked."""
    if CREATED_AT in diff.scalars and prior.created_at is not None:
        raise StructuralViolation(DenialCode.CREATED_AT_IMMUTABLE, CREATED_AT)
    if diff.kind_change:
        raise StructuralViolation(DenialCode.KIND_IMMUTABLE, "->".join(diff.kind_change))
    if diff.users.removed_missing:
        raise StructuralViolation(DenialCode.REMOVE_NON_MEMBER, ",".join(sorted(diff.users.removed_missing)))

    _check_counters(after, diff)

    unblocked = diff.set_delta(BLOCKED_USERS).removed
    for item in items:
        if item.kind in JOIN_KINDS:
            _check_join(item, prior, after, unblocked)
        elif item.kind == ChangeKind.INVITE:
            if item.subject == Subject.SELF:
                raise StructuralViolation(DenialCode.SELF_INVITE, item.target)
            if item.target in prior.blocked_users:
                raise StructuralViolation(DenialCode.INVITE_BLOCKED_USER, item.target)
            if item.target in prior.members:
                raise StructuralViolation(DenialCode.INVITE_EXISTING_MEMBER, item.target)
        elif item.kind == ChangeKind.REJECTION_WITHOUT_INVITE:
            raise StructuralViolation(DenialCode.REJECT_WITHOUT_INVITE, item.target)
        elif item.kind == ChangeKind.PROMOTE and item.target not in after.members:
            raise StructuralViolation(DenialCode.PROMOTE_NON_MEMBER, item.target)

    touched = diff.set_delta(INVITED_USERS).added | diff.set_delta(REJECTED_USERS).added
    overlap = touched & after.invited_users & after.rejected_users
    if overlap:
        raise StructuralViolation(DenialCode.INVITE_REJECT_OVERLAP, ",".join(sorted(overlap)))

    if not after.master_users:
        raise StructuralViolation(DenialCode.NO_MASTERS)

    if prior.is_single and prior.invited_users and diff.set_delta(INVITED_USERS).added:
        # The pending invitation has to be resolved in its own write first.
        raise StructuralViolation(DenialCode.SINGLE_INVITE_LIMIT, "pending: " + ",".join(sorted(prior.invited_users)))
    if INVITED_USERS in diff.sets or diff.users.structural:
        _check_single_room(after)


def check_creation_invariants(after: Room, requester_id: str) -> None:
    """Shape rules for a brand-new room that hold whoever the creator is."""
    if not after.master_users:
        raise StructuralViolation(DenialCode.NO_MASTERS)
    if requester_id in after.blocked_users:
        raise StructuralViolation(DenialCode.CREATOR_BLOCKED, requester_id)
    if after.rejected_users:
        raise StructuralViolation(DenialCode.CREATE_WITH_REJECTIONS, ",".join(sorted(after.rejected_users)))
    if requester_id in after.invited_users:
        raise StructuralViolation(DenialCode.SELF_INVITE, requester_id)
    blocked_invites = after.invited_users & after.blocked_users
    if blocked_invites:
        raise StructuralViolation(DenialCode.INVITE_BLOCKED_USER, ",".join(sorted(blocked_invites)))
    for uid in sorted(after.users):
        if after.users[uid].unread_count < 0:
            raise StructuralViolation(DenialCode.NEGATIVE_UNREAD_COUNT, uid)
    _check_single_room(after)
