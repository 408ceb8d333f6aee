"""Closed field catalog for room documents (wire names).

The engine has a fixed rule set for one entity kind, so every field it will
accept is listed here. Anything else in a proposed write is malformed.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Tuple

# Master-only scalar settings.
ADMIN_FIELDS: FrozenSet[str] = frozenset(
    {
        "name",
        "description",
        "iconUrl",
        "open",
        "allMembersCanInvite",
        "verifiedUserOnly",
        "urlForVerifiedUserOnly",
        "uploadForVerifiedUserOnly",
        "gender",
        "domain",
        "hasPassword",
    }
)

LAST_MESSAGE_AT = "lastMessageAt"

# Written together by masters; `lastMessageAt` alone is an activity bump.
LAST_MESSAGE_FIELDS: FrozenSet[str] = frozenset(
    {
        "lastMessageText",
        "lastMessageUid",
        "lastMessageUrl",
        "lastMessageId",
        "lastMessageDeleted",
        LAST_MESSAGE_AT,
    }
)

# lastActivityTimestamp
UPDATED_AT = "updatedAt"
CREATED_AT = "createdAt"

KIND = "kind"
LEGACY_SINGLE = "single"
LEGACY_GROUP = "group"
KIND_FIELDS: FrozenSet[str] = frozenset({KIND, LEGACY_SINGLE, LEGACY_GROUP})

MASTER_USERS = "masterUsers"
INVITED_USERS = "invitedUsers"
REJECTED_USERS = "rejectedUsers"
BLOCKED_USERS = "blockedUsers"
SET_FIELDS: Tuple[str, ...] = (MASTER_USERS, INVITED_USERS, REJECTED_USERS, BLOCKED_USERS)

USERS = "users"

SCALAR_FIELDS: FrozenSet[str] = ADMIN_FIELDS | LAST_MESSAGE_FIELDS | {UPDATED_AT, CREATED_AT}
# Everything a write may name at the top level.
KNOWN_FIELDS: FrozenSet[str] = SCALAR_FIELDS | KIND_FIELDS | frozenset(SET_FIELDS) | {USERS}

# Per-user record inside `users`.
UNREAD_COUNT = "nMC"
ORDER_FIELDS: Dict[str, str] = {
    "o": "order (affected by reads)",
    "tO": "time order (set when a message is sent)",
    "sO": "single-chat order",
    "sTO": "single-chat time order",
    "gO": "group-chat order",
    "gTO": "group-chat time order",
}
USER_ENTRY_FIELDS: FrozenSet[str] = frozenset(ORDER_FIELDS) | {UNREAD_COUNT}
